# workflow/resolver.py
"""
Which pending subtasks may be started right now.

Sequential tasks run their subtasks in levels (``sequence_order``). A level
is complete once every subtask in it is approved; the first incomplete
level is the *active* one and only its pending subtasks are available.
Subtasks sharing a level run in parallel. Non-sequential tasks have no
gating at all.

This is the single implementation used by the status machine, the
metrics and the views.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Set

from models import Status, Subtask, Task

from workflow.index import WorkItemIndex, group_by_level


def active_level(task: Task, subtasks: Iterable[Subtask]) -> Optional[int]:
    """First level with a non-approved subtask, or None when all levels are done."""
    for level, members in group_by_level(subtasks).items():
        if any(s.status != Status.APPROVED for s in members):
            return level
    return None


def available_subtasks(task: Task, subtasks: Iterable[Subtask], user_id: Optional[int] = None) -> List[Subtask]:
    """
    Pending subtasks of ``task`` that may move to in_progress.

    With ``user_id`` the result is limited to that user's subtasks;
    without it every assignee is considered.
    """
    subtasks = list(subtasks)
    if not subtasks:
        return []

    def _eligible(s: Subtask) -> bool:
        if s.status != Status.PENDING:
            return False
        return user_id is None or s.assigned_to == user_id

    if not task.is_sequential:
        return [s for s in subtasks if _eligible(s)]

    level = active_level(task, subtasks)
    if level is None:
        return []
    return [s for s in subtasks if (s.sequence_order or 0) == level and _eligible(s)]


def available_ids(task: Task, subtasks: Iterable[Subtask]) -> Set[int]:
    return {s.id for s in available_subtasks(task, subtasks)}


def is_available(subtask: Subtask, task: Task, siblings: Iterable[Subtask]) -> bool:
    """``siblings`` is the full subtask list of ``task``, ``subtask`` included."""
    return any(s.id == subtask.id for s in available_subtasks(task, siblings, subtask.assigned_to))


def available_backlog(index: WorkItemIndex, user_id: int) -> int:
    """
    Number of items the user could start right now.

    Sums the resolver over every task where the user holds a subtask, plus
    pending leaf tasks assigned to the user directly.
    """
    total = 0
    for task in index.tasks_for_user(user_id):
        subs = index.subtasks_of(task.id)
        if subs:
            total += len(available_subtasks(task, subs, user_id))
        elif task.status == Status.PENDING:
            total += 1
    return total
