# utils/progress.py
from typing import Sequence

from models import Status
from models.subtask import Subtask
from models.task import Task


def compute_task_progress(task: Task, subtasks: Sequence[Subtask]) -> float:
    """Share of approved subtasks, in percent. A leaf task is 0 or 100."""
    if subtasks:
        done = sum(1 for sub in subtasks if sub.status == Status.APPROVED)
        return round(100.0 * done / len(subtasks), 1)
    return 100.0 if task.status == Status.APPROVED else 0.0


def compute_project_progress(store, project_id: int) -> float:
    tasks = store.list_tasks(project_id=project_id)
    if not tasks:
        return 0.0
    vals = [compute_task_progress(t, store.list_subtasks(t.id)) for t in tasks]
    return round(float(sum(vals) / len(vals)), 1)
