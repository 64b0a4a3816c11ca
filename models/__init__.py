# models/__init__.py
from .status import Status, TASK_STATUSES, SUBTASK_STATUSES, DONE_STATUSES, normalize_status
from .project import Project
from .user import User
from .task import Task
from .subtask import Subtask
from .work_assignment import TaskWorkAssignment
from .status_history import StatusHistory
