"""
DynamoDB key-value store implementation.

This module provides the production backend: one DynamoDB table with a
string partition key "PK" and a string sort key "SK" (single-table design).
It uses aiobotocore for async operations and boto3's type (de)serializers
for attribute-value marshalling.

Invariants:
    - Conditional puts map to ConditionExpression; a failed check writes nothing
    - BatchWriteItem requests hold at most 25 items; unprocessed items are resent
    - Numbers come back as int when integral, float otherwise (never Decimal)

How to change safely:
    - Test with DynamoDB Local or LocalStack before deploying to AWS
    - Throttling is surfaced as StoreUnavailableError, not retried per put
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from decimal import Decimal
from typing import Any

from aiobotocore.session import get_session
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from ..config import DYNAMODB_MAX_BATCH, DynamoDBConfig
from ..errors import ConditionFailedError, StoreUnavailableError
from .base import PK, SK, Item, PutCondition, item_key

logger = logging.getLogger(__name__)

_CONDITION_FAILED = "ConditionalCheckFailedException"
_MAX_UNPROCESSED_RETRIES = 5

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _to_dynamo_value(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_dynamo_value(v) for v in value]
    return value


def _from_dynamo_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [_from_dynamo_value(v) for v in value]
    return value


def serialize_item(item: Item) -> dict[str, Any]:
    """Convert a plain item into DynamoDB attribute values."""
    return {k: _serializer.serialize(_to_dynamo_value(v)) for k, v in item.items()}


def deserialize_item(raw: dict[str, Any]) -> Item:
    """Convert DynamoDB attribute values into a plain item."""
    return {k: _from_dynamo_value(_deserializer.deserialize(v)) for k, v in raw.items()}


def build_condition(condition: PutCondition) -> dict[str, Any]:
    """Translate a PutCondition into PutItem condition arguments."""
    if condition.must_not_exist:
        return {"ConditionExpression": f"attribute_not_exists({PK})"}

    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    clauses = []
    for i, (name, value) in enumerate(condition.expected):
        names[f"#c{i}"] = name
        values[f":c{i}"] = _serializer.serialize(_to_dynamo_value(value))
        clauses.append(f"#c{i} = :c{i}")

    return {
        "ConditionExpression": " AND ".join(clauses),
        "ExpressionAttributeNames": names,
        "ExpressionAttributeValues": values,
    }


class DynamoDBKeyValueStore:
    """DynamoDB implementation of the KeyValueStore protocol.

    Attributes:
        config: DynamoDB configuration
        client: DynamoDB client (created on connect)

    Example:
        >>> store = DynamoDBKeyValueStore(DynamoDBConfig(table_name="plangraph"))
        >>> await store.connect()
        >>> await store.put({"PK": "U#1", "SK": "HEAD#VALUES", "headRevId": "r1"})
    """

    def __init__(self, config: DynamoDBConfig, client: Any = None) -> None:
        """Initialize DynamoDB store.

        Args:
            config: DynamoDBConfig instance
            client: Pre-built client (tests); created on connect() otherwise
        """
        self.config = config
        self._session = None
        self._client_ctx = None
        self._client = client
        self._connected = client is not None

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Create the client and verify the table exists.

        Raises:
            StoreUnavailableError: If connection fails or table is missing
        """
        if self._connected:
            return

        try:
            self._session = get_session()

            client_config: dict[str, Any] = {"region_name": self.config.region}
            if self.config.endpoint_url:
                client_config["endpoint_url"] = self.config.endpoint_url
            if self.config.access_key_id:
                client_config["aws_access_key_id"] = self.config.access_key_id
                client_config["aws_secret_access_key"] = self.config.secret_access_key

            self._client_ctx = self._session.create_client("dynamodb", **client_config)
            self._client = await self._client_ctx.__aenter__()

            await self._client.describe_table(TableName=self.config.table_name)

            self._connected = True
            logger.info(
                "Connected to DynamoDB",
                extra={
                    "table": self.config.table_name,
                    "region": self.config.region,
                    "endpoint": self.config.endpoint_url or "AWS",
                },
            )

        except EndpointConnectionError as e:
            raise StoreUnavailableError(f"Failed to connect to DynamoDB endpoint: {e}") from e
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "ResourceNotFoundException":
                raise StoreUnavailableError(
                    f"DynamoDB table '{self.config.table_name}' not found"
                ) from e
            raise StoreUnavailableError(f"DynamoDB error: {e}") from e

    async def close(self) -> None:
        """Close the DynamoDB client."""
        if self._client_ctx is not None:
            try:
                await self._client_ctx.__aexit__(None, None, None)
            except (BotoCoreError, ClientError) as e:
                logger.warning(f"Error closing DynamoDB client: {e}")

        self._client = None
        self._client_ctx = None
        self._session = None
        self._connected = False
        logger.info("DynamoDB connection closed")

    def _require_client(self) -> Any:
        if not self._client:
            raise StoreUnavailableError("Not connected to DynamoDB")
        return self._client

    async def get(self, pk: str, sk: str) -> Item | None:
        client = self._require_client()
        try:
            response = await client.get_item(
                TableName=self.config.table_name,
                Key={PK: {"S": pk}, SK: {"S": sk}},
                ConsistentRead=True,
            )
        except (BotoCoreError, ClientError) as e:
            raise StoreUnavailableError(f"DynamoDB GetItem failed: {e}") from e

        raw = response.get("Item")
        return deserialize_item(raw) if raw else None

    async def put(self, item: Item, condition: PutCondition | None = None) -> None:
        client = self._require_client()
        pk, sk = item_key(item)

        request: dict[str, Any] = {
            "TableName": self.config.table_name,
            "Item": serialize_item(item),
        }
        if condition is not None:
            request.update(build_condition(condition))

        try:
            await client.put_item(**request)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == _CONDITION_FAILED:
                raise ConditionFailedError(
                    f"Condition {condition} failed for {pk}/{sk}", pk=pk, sk=sk
                ) from e
            raise StoreUnavailableError(f"DynamoDB PutItem failed: {e}") from e
        except BotoCoreError as e:
            raise StoreUnavailableError(f"DynamoDB PutItem failed: {e}") from e

    async def batch_put(self, items: Iterable[Item]) -> None:
        client = self._require_client()
        requests = [{"PutRequest": {"Item": serialize_item(item)}} for item in items]

        for start in range(0, len(requests), DYNAMODB_MAX_BATCH):
            pending = {self.config.table_name: requests[start : start + DYNAMODB_MAX_BATCH]}

            for attempt in range(_MAX_UNPROCESSED_RETRIES + 1):
                try:
                    response = await client.batch_write_item(RequestItems=pending)
                except (BotoCoreError, ClientError) as e:
                    raise StoreUnavailableError(f"DynamoDB BatchWriteItem failed: {e}") from e

                pending = response.get("UnprocessedItems") or {}
                if not pending:
                    break

                delay = 0.05 * (2**attempt)
                logger.warning(
                    "DynamoDB returned unprocessed items, retrying",
                    extra={
                        "count": len(pending.get(self.config.table_name, [])),
                        "attempt": attempt + 1,
                        "delay_s": delay,
                    },
                )
                await asyncio.sleep(delay)
            else:
                raise StoreUnavailableError(
                    f"DynamoDB left items unprocessed after {_MAX_UNPROCESSED_RETRIES} retries"
                )

    async def query(
        self,
        pk: str,
        sk_prefix: str = "",
        ascending: bool = True,
        limit: int | None = None,
    ) -> AsyncIterator[Item]:
        client = self._require_client()

        request: dict[str, Any] = {
            "TableName": self.config.table_name,
            "ScanIndexForward": ascending,
            "ConsistentRead": True,
            "ExpressionAttributeNames": {"#pk": PK},
            "ExpressionAttributeValues": {":pk": {"S": pk}},
            "KeyConditionExpression": "#pk = :pk",
        }
        if sk_prefix:
            request["ExpressionAttributeNames"]["#sk"] = SK
            request["ExpressionAttributeValues"][":prefix"] = {"S": sk_prefix}
            request["KeyConditionExpression"] = "#pk = :pk AND begins_with(#sk, :prefix)"

        yielded = 0
        while True:
            page = self.config.page_size
            if limit is not None:
                page = min(page, limit - yielded)
                if page <= 0:
                    return
            request["Limit"] = page

            try:
                response = await client.query(**request)
            except (BotoCoreError, ClientError) as e:
                raise StoreUnavailableError(f"DynamoDB Query failed: {e}") from e

            for raw in response.get("Items", []):
                yield deserialize_item(raw)
                yielded += 1

            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return
            request["ExclusiveStartKey"] = last_key
