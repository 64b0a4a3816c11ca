# models/status.py
from enum import Enum


class Status(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"      # delivered, awaiting review
    IN_REVIEW = "in_review"      # alias of COMPLETED; stored only as a task projection
    APPROVED = "approved"
    RETURNED = "returned"
    BLOCKED = "blocked"          # leaf tasks only


TASK_STATUSES = tuple(s.value for s in Status)
SUBTASK_STATUSES = (
    Status.PENDING.value,
    Status.IN_PROGRESS.value,
    Status.COMPLETED.value,
    Status.APPROVED.value,
    Status.RETURNED.value,
)
DONE_STATUSES = (Status.COMPLETED.value, Status.APPROVED.value)


def normalize_status(value) -> str:
    """Map user/view input onto a stored status value ("in_review" -> "completed")."""
    if isinstance(value, Status):
        value = value.value
    s = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    if s == Status.IN_REVIEW.value:
        return Status.COMPLETED.value
    return s
