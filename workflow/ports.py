# workflow/ports.py
"""
Interfaces the engine depends on.

The engine talks to storage and notification delivery through these
Protocols, so the SQL store, the webhook sender and the test fakes are
interchangeable.
"""
from __future__ import annotations

from datetime import date
from typing import Any, ContextManager, Iterable, Optional, Protocol

from models import StatusHistory, Subtask, Task, TaskWorkAssignment, User


class WorkItemStore(Protocol):
    # reads
    def list_tasks(self, project_id: Optional[int] = None, user_id: Optional[int] = None) -> list[Task]: ...
    def get_task(self, task_id: int) -> Optional[Task]: ...
    def get_subtask(self, subtask_id: int) -> Optional[Subtask]: ...
    def list_subtasks(self, task_id: int) -> list[Subtask]: ...
    def list_all_subtasks(self) -> list[Subtask]: ...
    def list_work_assignments(
            self,
            start: Optional[date] = None,
            end: Optional[date] = None,
            user_id: Optional[int] = None,
    ) -> list[TaskWorkAssignment]: ...
    def list_users(self) -> list[User]: ...
    def get_project_name(self, project_id: Optional[int]) -> Optional[str]: ...
    def list_status_history(self, task_id: Optional[int] = None,
                            subtask_id: Optional[int] = None) -> list[StatusHistory]: ...

    # writes, each atomic on its own
    def add_task(self, task: Task) -> Task: ...
    def add_subtask(self, subtask: Subtask) -> Subtask: ...
    def write_task_status(
            self,
            task_id: int,
            status: str,
            *,
            expected_status: Optional[str] = None,
            expected_version: Optional[int] = None,
            feedback: Any = None,
    ) -> None: ...
    def write_subtask_status(
            self,
            subtask_id: int,
            status: str,
            *,
            expected_status: Optional[str] = None,
            expected_version: Optional[int] = None,
            feedback: Any = None,
    ) -> None: ...
    def write_subtask_order(self, subtask_id: int, order: Optional[int], *,
                            expected_version: Optional[int] = None) -> None: ...
    def write_subtask_assignee(self, subtask_id: int, user_id: int, *, expected_version: Optional[int] = None) -> None: ...
    def write_task_assignees(self, task_id: int, user_ids: Iterable[int]) -> None: ...
    def record_status_change(
            self,
            *,
            new_status: str,
            previous_status: Optional[str],
            task_id: Optional[int] = None,
            subtask_id: Optional[int] = None,
            changed_by: Optional[int] = None,
            details: Any = None,
    ) -> None: ...
    def delete_task(self, task_id: int) -> bool: ...
    def delete_subtask(self, subtask_id: int) -> bool: ...
    def add_work_assignment(self, assignment: TaskWorkAssignment) -> TaskWorkAssignment: ...
    def delete_work_assignments(self, *, subtask_id: int, user_id: int) -> None: ...

    # groups writes into one commit
    def transaction(self) -> ContextManager[Any]: ...


class NotificationDispatcher(Protocol):
    """
    Outward port for "tell these users about this item".

    notify() must not block on delivery and must not raise.
    """

    def notify(self, intent: Any) -> None: ...
