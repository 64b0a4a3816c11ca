# workflow/errors.py
"""Recoverable engine errors. Callers surface them to the user; none are fatal."""
from typing import Optional


class WorkflowError(Exception):
    """Base class for every error the engine raises on purpose."""


class IllegalTransition(WorkflowError):
    """Status change not present in the transition table"""
    def __init__(self, current: str, target: str, kind: str = "subtask"):
        self.current = current
        self.target = target
        self.kind = kind
        super().__init__(f"Cannot move {kind} from '{current}' to '{target}'")


class NotAvailable(WorkflowError):
    """Worker tried to start a subtask gated by an earlier level"""
    def __init__(self, subtask_id: int, active_level: Optional[int] = None):
        self.subtask_id = subtask_id
        self.active_level = active_level
        detail = f" (active level is {active_level})" if active_level is not None else ""
        super().__init__(f"Subtask {subtask_id} is not available yet{detail}")


class DerivedStatus(WorkflowError):
    """Direct status write on a task whose status is projected from its subtasks"""
    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task {task_id} has subtasks; change the subtasks instead")


class ConcurrentModification(WorkflowError):
    """A conditional write lost a race"""
    def __init__(self, kind: str, item_id: int):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind.capitalize()} {item_id} was changed by someone else; reload and retry")


class MissingParent(WorkflowError):
    """Subtask references a task that does not exist"""
    def __init__(self, task_id):
        self.task_id = task_id
        super().__init__(f"Task {task_id} does not exist")


class InvalidAssignment(WorkflowError):
    """Wrong number of assignees for the shape of the task"""


class NotFound(WorkflowError):
    def __init__(self, kind: str, item_id):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind.capitalize()} {item_id} not found")


class InvalidSchedule(WorkflowError):
    """start_date after deadline, or a non-positive level"""


class InvalidReorder(WorkflowError):
    pass
