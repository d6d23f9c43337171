"""
Daily plans: one versioned to-do list and calendar per user and date.

Invariants:
    - Plans only reference actions that exist in the user's values graph
    - Each date has its own HEAD; dates never share revisions
"""

from .models import BlockType, Classification, DailyPlan, TimeBlock, TodoItem
from .service import DailyPlanService

__all__ = [
    "BlockType",
    "Classification",
    "DailyPlan",
    "DailyPlanService",
    "TimeBlock",
    "TodoItem",
]
