"""
Daily plan records: the day's to-do list and its time blocks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..keys import BLOCK_PREFIX, TODO_PREFIX, block_sk, todo_sk
from ..store.base import SK, Item


class Classification(str, Enum):
    URGENT = "urgent"
    IMPORTANT = "important"
    OTHER = "other"


class BlockType(str, Enum):
    MEETING = "MEETING"
    POMODORO = "POMODORO"
    BREAK = "BREAK"
    BUFFER = "BUFFER"


@dataclass
class TodoItem:
    """An action scheduled for the day.

    Attributes:
        action_id: Action in the user's values graph
        order: Position in the list (0-based, creation order)
        classification: urgent, important or other
        estimated_pomodoros: Planned pomodoro count
        notes: Free text
        completed_at: Set once the todo is done
    """

    action_id: str
    order: int
    classification: Classification = Classification.OTHER
    estimated_pomodoros: Optional[int] = None
    notes: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "actionId": self.action_id,
            "order": self.order,
            "classification": self.classification.value,
        }
        optional = {
            "estimatedPomodoros": self.estimated_pomodoros,
            "notes": self.notes,
            "completedAt": self.completed_at,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    def to_item(self) -> Item:
        return {SK: todo_sk(self.order, self.action_id), **self.to_dict()}

    @classmethod
    def from_item(cls, item: Item) -> TodoItem:
        pomodoros = item.get("estimatedPomodoros")
        return cls(
            action_id=item["actionId"],
            order=int(item["order"]),
            classification=Classification(item.get("classification", "other")),
            estimated_pomodoros=int(pomodoros) if pomodoros is not None else None,
            notes=item.get("notes"),
            completed_at=item.get("completedAt"),
        )


@dataclass
class TimeBlock:
    """A slot of the day's calendar."""

    block_id: str
    block_type: BlockType
    start_time_iso: str
    end_time_iso: str
    action_id: Optional[str] = None
    pomodoro_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "blockId": self.block_id,
            "blockType": self.block_type.value,
            "startTimeIso": self.start_time_iso,
            "endTimeIso": self.end_time_iso,
        }
        if self.action_id is not None:
            data["actionId"] = self.action_id
        if self.pomodoro_index is not None:
            data["pomodoroIndex"] = self.pomodoro_index
        return data

    def to_item(self) -> Item:
        return {SK: block_sk(self.start_time_iso, self.block_id), **self.to_dict()}

    @classmethod
    def from_item(cls, item: Item) -> TimeBlock:
        index = item.get("pomodoroIndex")
        return cls(
            block_id=item["blockId"],
            block_type=BlockType(item["blockType"]),
            start_time_iso=item["startTimeIso"],
            end_time_iso=item["endTimeIso"],
            action_id=item.get("actionId"),
            pomodoro_index=int(index) if index is not None else None,
        )


@dataclass
class DailyPlan:
    """Todos (by order) and blocks (by start time) of one date."""

    date: str
    todos: List[TodoItem] = field(default_factory=list)
    blocks: List[TimeBlock] = field(default_factory=list)
    rev_id: Optional[str] = None

    @classmethod
    def from_items(cls, date: str, items: Iterable[Item], rev_id: Optional[str] = None) -> DailyPlan:
        plan = cls(date=date, rev_id=rev_id)
        for item in items:
            sk = item.get(SK, "")
            if sk.startswith(TODO_PREFIX):
                plan.todos.append(TodoItem.from_item(item))
            elif sk.startswith(BLOCK_PREFIX):
                plan.blocks.append(TimeBlock.from_item(item))
        plan.todos.sort(key=lambda t: t.order)
        plan.blocks.sort(key=lambda b: (b.start_time_iso, b.block_id))
        return plan

    def to_items(self) -> List[Item]:
        return [t.to_item() for t in self.todos] + [b.to_item() for b in self.blocks]

    def find_todo(self, action_id: str) -> Optional[TodoItem]:
        return next((t for t in self.todos if t.action_id == action_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "revId": self.rev_id,
            "todos": [t.to_dict() for t in self.todos],
            "blocks": [b.to_dict() for b in self.blocks],
        }
