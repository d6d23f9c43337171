"""
Daily plan operations.

Each (user, date) pair is its own versioned scope with its own HEAD and
commit log. Entries reference actions of the user's values graph, which is
read at mutation time; the two scopes are never written together.

Invariants:
    - An action appears at most once in a day's todo list
    - Todo order is dense and follows creation order
    - Blocks end after they start and start on the plan's date
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional, Union

from ..errors import ReferenceNotFoundError, ValidationError
from ..keys import RepositoryScope, is_valid_date
from ..values.models import ActionNode
from ..values.service import ValuesGraphService
from ..values.validation import clean_notes, require_id
from ..versioning import Mutation, Revision, RevisionSource, ScopeState, VersionedRepository
from ..versioning.revision_ids import format_timestamp
from .models import BlockType, Classification, DailyPlan, TimeBlock, TodoItem

logger = logging.getLogger(__name__)


def _scope(user_id: str, date: str) -> RepositoryScope:
    require_id(user_id, "userId")
    if not isinstance(date, str) or not is_valid_date(date):
        raise ValidationError(f"Date must be YYYY-MM-DD, got {date!r}", field_name="date")
    try:
        datetime.strptime(date, "%Y-%m-%d")
    except ValueError as e:
        raise ValidationError(f"Not a calendar date: {date}", field_name="date") from e
    return RepositoryScope.daily_plan(user_id, date)


def _parse_instant(value: str, field_name: str) -> datetime:
    """Parse an ISO-8601 instant; a timezone (or 'Z') is required."""
    if not isinstance(value, str):
        raise ValidationError(f"Field '{field_name}' must be a string", field_name=field_name)
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValidationError(
            f"Field '{field_name}' is not an ISO-8601 time: {value}", field_name=field_name
        ) from e
    if parsed.tzinfo is None:
        raise ValidationError(
            f"Field '{field_name}' must include a timezone", field_name=field_name
        )
    return parsed


def _positive_int(value: Optional[int], field_name: str, allow_zero: bool = False) -> Optional[int]:
    if value is None:
        return None
    floor = 0 if allow_zero else 1
    if not isinstance(value, int) or isinstance(value, bool) or value < floor:
        raise ValidationError(
            f"Field '{field_name}' must be an integer >= {floor}", field_name=field_name
        )
    return value


class DailyPlanService:
    """To-do lists and time blocks per user and date.

    Example:
        >>> plans = DailyPlanService(repository, values_service)
        >>> await plans.add_todo("u1", "2024-05-01", action.id, "urgent")
        >>> plan = await plans.get_daily_plan("u1", "2024-05-01")
    """

    def __init__(self, repository: VersionedRepository, values: ValuesGraphService) -> None:
        self.repository = repository
        self.values = values

    async def _require_action(self, user_id: str, action_id: str) -> ActionNode:
        snapshot = await self.values.get_current_snapshot(user_id)
        node = snapshot.get(action_id)
        if not isinstance(node, ActionNode) or node.archived:
            raise ReferenceNotFoundError(
                f"Action not found: {action_id}", node_id=action_id, expected_kind="ACTION"
            )
        return node

    @staticmethod
    def _plan(state: ScopeState) -> DailyPlan:
        return DailyPlan.from_items(
            state.scope.date or "",
            state.records,
            rev_id=state.head.head_rev_id if state.head else None,
        )

    async def add_todo(
        self,
        user_id: str,
        date: str,
        action_id: str,
        classification: Union[Classification, str] = Classification.OTHER,
        estimated_pomodoros: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> TodoItem:
        """Schedule an action for a day.

        Raises:
            ValidationError: On bad fields or if the action is already scheduled
            ReferenceNotFoundError: If the action is missing or archived
        """
        scope = _scope(user_id, date)
        require_id(action_id, "actionId")
        try:
            kind = Classification(classification)
        except ValueError as e:
            raise ValidationError(
                f"Unknown classification '{classification}'", field_name="classification"
            ) from e
        pomodoros = _positive_int(estimated_pomodoros, "estimatedPomodoros")
        notes = clean_notes(notes)

        async def mutate(state: ScopeState) -> Mutation[TodoItem]:
            action = await self._require_action(user_id, action_id)
            plan = self._plan(state)
            if plan.find_todo(action_id) is not None:
                raise ValidationError(
                    f"Action {action_id} is already on the plan for {date}", field_name="actionId"
                )
            todo = TodoItem(
                action_id=action_id,
                order=len(plan.todos),
                classification=kind,
                estimated_pomodoros=pomodoros,
                notes=notes,
            )
            plan.todos.append(todo)
            return Mutation(
                records=plan.to_items(),
                message=f"Added todo: {action.title}",
                source=RevisionSource.DAILY_UPDATE,
                result=todo,
            )

        committed = await self.repository.commit(scope, mutate)
        logger.info(
            "Todo added",
            extra={"user_id": user_id, "date": date, "action_id": action_id, "order": committed.result.order},
        )
        return committed.result

    async def complete_todo(self, user_id: str, date: str, action_id: str) -> TodoItem:
        """Mark a scheduled action done for the day.

        Raises:
            ReferenceNotFoundError: If the action is not on the day's list
            ValidationError: If the todo is already completed
        """
        scope = _scope(user_id, date)

        async def mutate(state: ScopeState) -> Mutation[TodoItem]:
            plan = self._plan(state)
            todo = plan.find_todo(action_id)
            if todo is None:
                raise ReferenceNotFoundError(
                    f"No todo for action {action_id} on {date}",
                    node_id=action_id,
                    expected_kind="TODO",
                )
            if todo.completed_at is not None:
                raise ValidationError(
                    f"Todo for action {action_id} is already completed", field_name="completedAt"
                )
            todo.completed_at = state.now
            return Mutation(
                records=plan.to_items(),
                message=f"Completed todo: {action_id}",
                source=RevisionSource.COMPLETION,
                result=todo,
            )

        committed = await self.repository.commit(scope, mutate)
        return committed.result

    async def add_time_block(
        self,
        user_id: str,
        date: str,
        block_type: Union[BlockType, str],
        start_time_iso: str,
        end_time_iso: str,
        action_id: Optional[str] = None,
        pomodoro_index: Optional[int] = None,
    ) -> TimeBlock:
        """Add a calendar block. Times are stored normalized to UTC.

        Raises:
            ValidationError: On bad times, a block not starting on date, or
                pomodoro fields on a non-POMODORO block
            ReferenceNotFoundError: If a POMODORO block's action is missing
        """
        scope = _scope(user_id, date)
        try:
            kind = BlockType(block_type)
        except ValueError as e:
            raise ValidationError(f"Unknown block type '{block_type}'", field_name="blockType") from e

        start = _parse_instant(start_time_iso, "startTimeIso")
        end = _parse_instant(end_time_iso, "endTimeIso")
        if end <= start:
            raise ValidationError("Block must end after it starts", field_name="endTimeIso")
        if start.date().isoformat() != date:
            raise ValidationError(
                f"Block starts on {start.date().isoformat()}, not {date}", field_name="startTimeIso"
            )

        index = _positive_int(pomodoro_index, "pomodoroIndex", allow_zero=True)
        if kind is BlockType.POMODORO:
            if action_id is None:
                raise ValidationError("POMODORO blocks need an actionId", field_name="actionId")
        elif index is not None:
            raise ValidationError(
                "pomodoroIndex only applies to POMODORO blocks", field_name="pomodoroIndex"
            )
        if action_id is not None:
            require_id(action_id, "actionId")

        block_id = str(uuid.uuid4())
        start_utc = format_timestamp(start.astimezone(timezone.utc))
        end_utc = format_timestamp(end.astimezone(timezone.utc))

        async def mutate(state: ScopeState) -> Mutation[TimeBlock]:
            if action_id is not None:
                await self._require_action(user_id, action_id)
            plan = self._plan(state)
            block = TimeBlock(
                block_id=block_id,
                block_type=kind,
                start_time_iso=start_utc,
                end_time_iso=end_utc,
                action_id=action_id,
                pomodoro_index=index,
            )
            plan.blocks.append(block)
            return Mutation(
                records=plan.to_items(),
                message=f"Added {kind.value} block at {start_utc}",
                source=RevisionSource.DAILY_UPDATE,
                result=block,
            )

        committed = await self.repository.commit(scope, mutate)
        return committed.result

    async def get_daily_plan(self, user_id: str, date: str) -> DailyPlan:
        """The HEAD plan of a day; empty if nothing was planned yet."""
        state = await self.repository.read_state(_scope(user_id, date))
        return self._plan(state)

    def list_history(self, user_id: str, date: str, ascending: bool = False) -> AsyncIterator[Revision]:
        return self.repository.history(_scope(user_id, date), ascending=ascending)

    async def orphans(self, user_id: str, date: str) -> List[Revision]:
        return await self.repository.orphans(_scope(user_id, date))
