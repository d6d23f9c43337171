"""
SQLite key-value store for PlanGraph.

Stores every item of the single-table design in one SQLite table, keyed by
(pk, sk). Suitable for a single-process deployment and for integration
tests that want real persistence without AWS.

Invariants:
    - One SQLite file per store
    - Conditional puts run inside BEGIN IMMEDIATE (check and write are atomic)
    - Items are stored as JSON; keys are duplicated into indexed columns

How to change safely:
    - Schema migrations must be backward compatible
    - Keep ORDER BY sk (binary collation) so scans match DynamoDB ordering

Table schema:
    kv_items:
        - pk TEXT
        - sk TEXT
        - body_json TEXT
        - written_at INTEGER (Unix ms)
        - PRIMARY KEY (pk, sk)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import AsyncIterator, Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from ..config import SqliteConfig
from ..errors import ConditionFailedError, StoreUnavailableError
from .base import Item, PutCondition, item_key

logger = logging.getLogger(__name__)


class SqliteKeyValueStore:
    """SQLite-backed KeyValueStore.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = SqliteKeyValueStore(SqliteConfig(path="/tmp/plangraph.db"))
        >>> await store.connect()
        >>> await store.put({"PK": "U#1", "SK": "HEAD#VALUES", "headRevId": "r1"})
    """

    SCHEMA_VERSION = 1

    def __init__(self, config: SqliteConfig, page_size: int = 100) -> None:
        """Initialize the store.

        Args:
            config: SQLite configuration
            page_size: Rows fetched per query page
        """
        self.config = config
        self.page_size = page_size
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Yields:
            SQLite connection

        Raises:
            StoreUnavailableError: If the database cannot be opened
        """
        db_path = Path(self.config.path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                str(db_path),
                timeout=self.config.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open SQLite database {db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.config.busy_timeout_ms}")
            if self.config.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(f"SQLite operation failed: {e}") from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS kv_items (
                pk TEXT NOT NULL,
                sk TEXT NOT NULL,
                body_json TEXT NOT NULL,
                written_at INTEGER NOT NULL,
                PRIMARY KEY (pk, sk)
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def connect(self) -> None:
        """Create the database file and schema if needed."""
        with self._get_connection() as conn:
            self._create_schema(conn)
        self._connected = True
        logger.info("SQLite store ready", extra={"path": self.config.path})

    async def close(self) -> None:
        self._connected = False

    def _require_connected(self) -> None:
        if not self._connected:
            raise StoreUnavailableError("Not connected")

    async def get(self, pk: str, sk: str) -> Item | None:
        self._require_connected()
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT body_json FROM kv_items WHERE pk = ? AND sk = ?",
                (pk, sk),
            ).fetchone()
            return json.loads(row["body_json"]) if row else None

    async def put(self, item: Item, condition: PutCondition | None = None) -> None:
        self._require_connected()
        pk, sk = item_key(item)
        body = json.dumps(item)
        now = int(time.time() * 1000)

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if condition is not None:
                    row = conn.execute(
                        "SELECT body_json FROM kv_items WHERE pk = ? AND sk = ?",
                        (pk, sk),
                    ).fetchone()
                    current = json.loads(row["body_json"]) if row else None
                    if not condition.is_satisfied_by(current):
                        raise ConditionFailedError(
                            f"Condition {condition} failed for {pk}/{sk}", pk=pk, sk=sk
                        )

                conn.execute(
                    """
                    INSERT OR REPLACE INTO kv_items (pk, sk, body_json, written_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (pk, sk, body, now),
                )
                conn.execute("COMMIT")

            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def batch_put(self, items: Iterable[Item]) -> None:
        self._require_connected()
        now = int(time.time() * 1000)
        rows = []
        for item in items:
            pk, sk = item_key(item)
            rows.append((pk, sk, json.dumps(item), now))

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO kv_items (pk, sk, body_json, written_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    rows,
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def query(
        self,
        pk: str,
        sk_prefix: str = "",
        ascending: bool = True,
        limit: int | None = None,
    ) -> AsyncIterator[Item]:
        self._require_connected()
        direction = "ASC" if ascending else "DESC"
        cursor_op = ">" if ascending else "<"
        last_sk: str | None = None
        yielded = 0

        while True:
            page = self.page_size
            if limit is not None:
                page = min(page, limit - yielded)
                if page <= 0:
                    return

            query = (
                "SELECT sk, body_json FROM kv_items"
                " WHERE pk = ? AND substr(sk, 1, ?) = ?"
            )
            params: list = [pk, len(sk_prefix), sk_prefix]
            if last_sk is not None:
                query += f" AND sk {cursor_op} ?"
                params.append(last_sk)
            query += f" ORDER BY sk {direction} LIMIT ?"
            params.append(page)

            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()

            for row in rows:
                yield json.loads(row["body_json"])
            yielded += len(rows)

            if len(rows) < page:
                return
            last_sk = rows[-1]["sk"]

    def get_db_path(self) -> Path:
        return Path(self.config.path)
