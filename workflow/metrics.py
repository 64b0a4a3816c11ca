# workflow/metrics.py
"""
Per-user workload counters.

Everything is folded from collections fetched once up front; no query is
issued per user or per item.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd
from dateutil import parser as date_parser
from loguru import logger

from models import DONE_STATUSES, Status, Subtask, Task, TaskWorkAssignment, normalize_status
from models.clock import to_utc, utcnow
from workflow.index import WorkItemIndex
from workflow.ports import WorkItemStore
from workflow.resolver import available_backlog

METRIC_FIELDS = ("tasksPending", "todaysLoad", "tasksInReview", "tasksReturned",
                 "overdueTasks", "tasksApprovedThisMonth")


@dataclass(frozen=True)
class UserMetrics:
    userId: int
    tasksPending: int = 0
    todaysLoad: int = 0
    tasksInReview: int = 0
    tasksReturned: int = 0
    overdueTasks: int = 0
    tasksApprovedThisMonth: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def parse_approval_timestamp(feedback: Any) -> Optional[datetime]:
    """
    ``approved_at`` from an approval feedback payload, as aware UTC.

    The payload is a dict or its JSON text. Anything missing or unreadable
    gives None.
    """
    if feedback is None:
        return None
    if isinstance(feedback, (str, bytes)):
        try:
            feedback = json.loads(feedback)
        except (TypeError, ValueError):
            return None
    if not isinstance(feedback, dict):
        return None
    raw = feedback.get("approved_at")
    if isinstance(raw, datetime):
        return to_utc(raw)
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return to_utc(date_parser.isoparse(raw.strip()))
    except (ValueError, OverflowError):
        try:
            return to_utc(date_parser.parse(raw))
        except (ValueError, OverflowError, TypeError):
            return None


def _assignment_status(wa: TaskWorkAssignment, index: WorkItemIndex) -> str:
    # the item's own status wins over the copy on the assignment
    if wa.subtask_id is not None and wa.subtask_id in index.subtasks_by_id:
        return index.subtasks_by_id[wa.subtask_id].status
    if wa.subtask_id is None and wa.task_id in index.tasks_by_id:
        return index.tasks_by_id[wa.task_id].status
    return wa.status


def _owned_items(index: WorkItemIndex, user_id: int) -> List[Any]:
    """User's subtasks plus leaf tasks assigned to the user directly."""
    items: List[Any] = [s for s in index.subtasks_by_user.get(user_id, []) if s.task_id in index.tasks_by_id]
    for task_id, task in index.tasks_by_id.items():
        if not index.subtasks_of(task_id) and user_id in (task.assigned_users or []):
            items.append(task)
    return items


def compute_user_metrics(index: WorkItemIndex, assignments: Iterable[TaskWorkAssignment], user_id: int,
                         today: date, now: datetime, window_days: int = 30) -> UserMetrics:
    now = to_utc(now)
    todays_load = overdue = 0
    for wa in assignments:
        if wa.user_id != user_id:
            continue
        if normalize_status(_assignment_status(wa, index)) in DONE_STATUSES:
            continue
        if wa.work_date == today:
            todays_load += 1
        elif wa.work_date < today:
            overdue += 1

    in_review = returned = approved_recent = 0
    window_start = now - timedelta(days=window_days)
    for item in _owned_items(index, user_id):
        status = normalize_status(item.status)
        if status == Status.COMPLETED:
            in_review += 1
        elif status == Status.RETURNED:
            returned += 1
        elif status == Status.APPROVED:
            approved_at = parse_approval_timestamp(item.feedback)
            if approved_at is None:
                logger.debug("No usable approval time on {} {}", type(item).__name__.lower(), item.id)
            elif window_start <= approved_at <= now:
                approved_recent += 1

    return UserMetrics(
        userId=user_id,
        tasksPending=available_backlog(index, user_id),
        todaysLoad=todays_load,
        tasksInReview=in_review,
        tasksReturned=returned,
        overdueTasks=overdue,
        tasksApprovedThisMonth=approved_recent,
    )


def compute_team_metrics(tasks: Sequence[Task], subtasks: Sequence[Subtask],
                         assignments: Sequence[TaskWorkAssignment], user_ids: Iterable[int],
                         today: date, now: datetime, window_days: int = 30) -> List[UserMetrics]:
    index = WorkItemIndex.build(tasks, subtasks)
    by_user: Dict[int, List[TaskWorkAssignment]] = {}
    for wa in assignments:
        by_user.setdefault(wa.user_id, []).append(wa)
    users = sorted(set(user_ids) | set(index.user_ids()) | set(by_user))
    return [
        compute_user_metrics(index, by_user.get(u, []), u, today, now, window_days)
        for u in users
    ]


class MetricsAggregator:
    """Metrics query surface over a WorkItemStore."""

    def __init__(self, store: WorkItemStore, *, today: Optional[date] = None, now: Optional[datetime] = None,
                 window_days: int = 30):
        self.store = store
        self.now = to_utc(now) if now is not None else utcnow()
        self.today = today or self.now.date()
        self.window_days = window_days

    def _fetch(self, user_id: Optional[int] = None):
        tasks = self.store.list_tasks()
        subtasks = self.store.list_all_subtasks()
        # work assignments on or before today feed todaysLoad and overdueTasks
        assignments = self.store.list_work_assignments(end=self.today, user_id=user_id)
        return tasks, subtasks, assignments

    def get_user_metrics(self, user_id: int) -> UserMetrics:
        tasks, subtasks, assignments = self._fetch(user_id)
        index = WorkItemIndex.build(tasks, subtasks)
        return compute_user_metrics(index, assignments, user_id, self.today, self.now, self.window_days)

    def get_team_metrics(self) -> List[UserMetrics]:
        tasks, subtasks, assignments = self._fetch()
        user_ids = [u.id for u in self.store.list_users()]
        return compute_team_metrics(tasks, subtasks, assignments, user_ids,
                                    self.today, self.now, self.window_days)


def team_summary(metrics: Iterable[UserMetrics]) -> dict:
    metrics = list(metrics)
    summary = {"users": len(metrics)}
    for name in METRIC_FIELDS:
        summary[name] = sum(getattr(m, name) for m in metrics)
    return summary


def workload_flags(m: UserMetrics, warn_threshold: int = 3, high_threshold: int = 5) -> List[dict]:
    flags = []
    if m.overdueTasks > warn_threshold:
        flags.append({
            "type": "overdue_tasks",
            "severity": "high" if m.overdueTasks > high_threshold else "medium",
            "message": f"{m.overdueTasks} overdue work assignments",
        })
    return flags


def metrics_frame(metrics: Iterable[UserMetrics], names: Optional[Dict[int, str]] = None) -> pd.DataFrame:
    rows = []
    for m in metrics:
        row = m.as_dict()
        if names is not None:
            row["user"] = names.get(m.userId, str(m.userId))
        rows.append(row)
    columns = (["userId", "user"] if names is not None else ["userId"]) + list(METRIC_FIELDS)
    return pd.DataFrame(rows, columns=columns)
