# workflow/transitions.py
"""
Status lifecycle of tasks and subtasks.

Subtasks move ``pending -> in_progress -> completed -> approved``; an
admin may send a completed subtask to ``returned`` and the worker resumes
it with ``returned -> pending``. Starting a subtask requires it to be
available (see ``workflow.resolver``).

A task with subtasks has no writable status of its own: its stored status
is refreshed from the subtasks after every change. Leaf tasks follow the
subtask table and may also be parked in ``blocked``.

Every change that makes an item available to someone emits a
NotificationIntent after the write is committed. Delivery problems are
logged and never undo the change.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Sequence

from loguru import logger

from models import Status, Subtask, Task, TaskWorkAssignment, normalize_status
from models.clock import to_utc, utcnow
from workflow import resolver
from workflow.errors import (
    DerivedStatus, IllegalTransition, InvalidAssignment, InvalidReorder, InvalidSchedule,
    MissingParent, NotAvailable, NotFound,
)
from workflow.notifications import LogDispatcher, NotificationIntent, NotificationReason
from workflow.ports import NotificationDispatcher, WorkItemStore

P, IP, C, A, R, B = (Status.PENDING.value, Status.IN_PROGRESS.value, Status.COMPLETED.value,
                     Status.APPROVED.value, Status.RETURNED.value, Status.BLOCKED.value)

SUBTASK_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    P: frozenset({IP}),
    IP: frozenset({C}),
    C: frozenset({A, R}),
    R: frozenset({P}),
    A: frozenset(),
}

TASK_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    **SUBTASK_TRANSITIONS,
    IP: frozenset({C, B}),
    B: frozenset({IP}),
}


@dataclass
class SubtaskDraft:
    title: str
    assigned_to: Optional[int]
    sequence_order: Optional[int] = None
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    deadline: Optional[datetime] = None


def project_task_status(subtasks: Sequence[Subtask]) -> Optional[str]:
    """Stored status of a task with subtasks; None for leaf tasks."""
    if not subtasks:
        return None
    statuses = [s.status for s in subtasks]
    if all(st == A for st in statuses):
        return A
    if all(st in (C, A) for st in statuses):
        return Status.IN_REVIEW.value
    if any(st != P for st in statuses):
        return IP
    return P


def _check_schedule(start: Optional[datetime], deadline: Optional[datetime]):
    """Both dates as aware UTC, or InvalidSchedule when the start is after the deadline."""
    start, deadline = to_utc(start), to_utc(deadline)
    if start is not None and deadline is not None and start > deadline:
        raise InvalidSchedule(f"start date {start:%Y-%m-%d %H:%M} is after deadline {deadline:%Y-%m-%d %H:%M}")
    return start, deadline


def _check_level(order: Optional[int]) -> None:
    if order is not None and (isinstance(order, bool) or not isinstance(order, int) or order < 1):
        raise InvalidSchedule(f"sequence order must be a positive integer, got {order!r}")


def _checked_draft(d: SubtaskDraft) -> SubtaskDraft:
    if d.assigned_to is None:
        raise InvalidAssignment(f"Subtask '{d.title}' has no assignee")
    _check_level(d.sequence_order)
    start, deadline = _check_schedule(d.start_date, d.deadline)
    return replace(d, start_date=start, deadline=deadline)


class StatusStateMachine:

    def __init__(self, store: WorkItemStore, dispatcher: Optional[NotificationDispatcher] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.dispatcher = dispatcher or LogDispatcher()
        self.clock = clock or utcnow

    # ---- projection ----
    def effective_status(self, task: Task, subtasks: Optional[Sequence[Subtask]] = None) -> str:
        subs = self.store.list_subtasks(task.id) if subtasks is None else subtasks
        return project_task_status(subs) or task.status

    # ---- creation ----
    def create_task(self, *, title: str, project_id: Optional[int] = None, description: Optional[str] = None,
                    is_sequential: bool = False, assigned_users: Iterable[int] = (),
                    start_date: Optional[datetime] = None, deadline: Optional[datetime] = None,
                    subtasks: Sequence[SubtaskDraft] = (), actor: Optional[int] = None) -> Task:
        start_date, deadline = _check_schedule(start_date, deadline)
        users = list(dict.fromkeys(u for u in assigned_users if u is not None))
        drafts = [_checked_draft(d) for d in subtasks]
        if not drafts and len(users) != 1:
            raise InvalidAssignment(
                f"A task without subtasks needs exactly one assignee, got {len(users)}")
        if is_sequential:
            # unnumbered subtasks queue up after the highest explicit level
            level = max((d.sequence_order or 0 for d in drafts), default=0)
            for i, d in enumerate(drafts):
                if d.sequence_order is None:
                    level += 1
                    drafts[i] = replace(d, sequence_order=level)
        if drafts:
            users = sorted({d.assigned_to for d in drafts})

        with self.store.transaction():
            task = self.store.add_task(Task(
                project_id=project_id, title=title, description=description,
                is_sequential=is_sequential, assigned_users=users,
                start_date=start_date, deadline=deadline, status=P,
            ))
            subs = [self.store.add_subtask(self._new_subtask(task.id, d)) for d in drafts]
            self.store.record_status_change(task_id=task.id, previous_status=None, new_status=P,
                                            changed_by=actor)
        logger.debug("Created task {} with {} subtasks", task.id, len(subs))

        project_name = self._project_name(task)
        if not subs:
            self._emit(users, task.title, project_name, NotificationReason.CREATED_AVAILABLE, is_subtask=False)
        for s in resolver.available_subtasks(task, subs):
            self._emit([s.assigned_to], s.title, project_name, NotificationReason.CREATED_AVAILABLE,
                       is_subtask=True, parent_title=task.title)
        return task

    def add_subtask(self, task_id: int, draft: SubtaskDraft, actor: Optional[int] = None) -> Subtask:
        task = self.store.get_task(task_id)
        if task is None:
            raise MissingParent(task_id)
        draft = _checked_draft(draft)

        siblings = self.store.list_subtasks(task.id)
        if task.is_sequential and draft.sequence_order is None:
            draft = replace(draft, sequence_order=max((s.sequence_order or 0 for s in siblings), default=0) + 1)
        before = resolver.available_ids(task, siblings)

        with self.store.transaction():
            sub = self.store.add_subtask(self._new_subtask(task.id, draft))
            after_subs = self.store.list_subtasks(task.id)
            self._sync_parent(task, after_subs)
            self.store.record_status_change(subtask_id=sub.id, previous_status=None, new_status=P,
                                            changed_by=actor)

        project_name = self._project_name(task)
        for s in resolver.available_subtasks(task, after_subs):
            if s.id in before:
                continue
            reason = NotificationReason.CREATED_AVAILABLE if s.id == sub.id else NotificationReason.UNBLOCKED
            self._emit([s.assigned_to], s.title, project_name, reason, is_subtask=True, parent_title=task.title)
        return sub

    # ---- subtask lifecycle ----
    def start_subtask(self, subtask_id: int, actor: Optional[int] = None) -> Subtask:
        return self.transition_subtask(subtask_id, IP, actor=actor)

    def submit_subtask(self, subtask_id: int, actor: Optional[int] = None) -> Subtask:
        return self.transition_subtask(subtask_id, C, actor=actor)

    def approve_subtask(self, subtask_id: int, actor: Optional[int] = None,
                        comment: Optional[str] = None) -> Subtask:
        return self.transition_subtask(subtask_id, A, actor=actor, comment=comment)

    def return_subtask(self, subtask_id: int, actor: Optional[int] = None,
                       reason: Optional[str] = None) -> Subtask:
        return self.transition_subtask(subtask_id, R, actor=actor, comment=reason)

    def resume_subtask(self, subtask_id: int, actor: Optional[int] = None) -> Subtask:
        return self.transition_subtask(subtask_id, P, actor=actor)

    def transition_subtask(self, subtask_id: int, target, *, actor: Optional[int] = None,
                           comment: Optional[str] = None) -> Subtask:
        target = normalize_status(target)
        sub = self.store.get_subtask(subtask_id)
        if sub is None:
            raise NotFound("subtask", subtask_id)
        task = self.store.get_task(sub.task_id)
        if task is None:
            raise MissingParent(sub.task_id)
        current = sub.status
        if target not in SUBTASK_TRANSITIONS.get(current, frozenset()):
            raise IllegalTransition(current, target)

        siblings = self.store.list_subtasks(task.id)
        if target == IP and not resolver.is_available(sub, task, siblings):
            raise NotAvailable(sub.id, resolver.active_level(task, siblings) if task.is_sequential else None)
        before = resolver.available_ids(task, siblings)
        feedback = self._feedback_for(target, actor, comment)

        with self.store.transaction():
            self.store.write_subtask_status(sub.id, target, expected_status=current,
                                            expected_version=sub.version, feedback=feedback)
            self.store.record_status_change(subtask_id=sub.id, task_id=task.id, previous_status=current,
                                            new_status=target, changed_by=actor, details=feedback)
            after_subs = self.store.list_subtasks(task.id)
            self._sync_parent(task, after_subs)
        logger.debug("Subtask {}: {} -> {}", sub.id, current, target)

        project_name = None
        if target == R:
            project_name = self._project_name(task)
            self._emit([sub.assigned_to], sub.title, project_name, NotificationReason.RETURNED,
                       is_subtask=True, parent_title=task.title)
        reason = (NotificationReason.SEQUENTIAL_DEPENDENCY_COMPLETED if target == A
                  else NotificationReason.UNBLOCKED)
        for s in resolver.available_subtasks(task, after_subs):
            # the worker who resumed a returned subtask does not need telling
            if s.id in before or s.id == sub.id:
                continue
            if project_name is None:
                project_name = self._project_name(task)
            self._emit([s.assigned_to], s.title, project_name, reason, is_subtask=True, parent_title=task.title)
        return next(s for s in after_subs if s.id == sub.id)

    # ---- leaf task lifecycle ----
    def set_task_status(self, task_id: int, target, *, actor: Optional[int] = None,
                        comment: Optional[str] = None) -> Task:
        target = normalize_status(target)
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFound("task", task_id)
        if self.store.list_subtasks(task.id):
            raise DerivedStatus(task.id)
        current = normalize_status(task.status)
        if target not in TASK_TRANSITIONS.get(current, frozenset()):
            raise IllegalTransition(current, target, kind="task")
        feedback = self._feedback_for(target, actor, comment)

        with self.store.transaction():
            self.store.write_task_status(task.id, target, expected_status=task.status,
                                         expected_version=task.version, feedback=feedback)
            self.store.record_status_change(task_id=task.id, previous_status=current, new_status=target,
                                            changed_by=actor, details=feedback)
            updated = self.store.get_task(task.id)
        logger.debug("Task {}: {} -> {}", task.id, current, target)

        if target == R:
            self._emit(task.assigned_users or [], task.title, self._project_name(task),
                       NotificationReason.RETURNED, is_subtask=False)
        return updated

    # ---- assignment and ordering ----
    def reassign_subtask(self, subtask_id: int, user_id: int, actor: Optional[int] = None) -> Subtask:
        if user_id is None:
            raise InvalidAssignment("A subtask needs exactly one assignee")
        sub = self.store.get_subtask(subtask_id)
        if sub is None:
            raise NotFound("subtask", subtask_id)
        task = self.store.get_task(sub.task_id)
        if task is None:
            raise MissingParent(sub.task_id)
        if sub.assigned_to == user_id:
            return sub

        with self.store.transaction():
            self.store.write_subtask_assignee(sub.id, user_id, expected_version=sub.version)
            self.store.delete_work_assignments(subtask_id=sub.id, user_id=sub.assigned_to)
            after_subs = self.store.list_subtasks(task.id)
            self.store.write_task_assignees(task.id, {s.assigned_to for s in after_subs})
        moved = next(s for s in after_subs if s.id == sub.id)
        logger.debug("Subtask {} reassigned {} -> {}", sub.id, sub.assigned_to, user_id)

        if resolver.is_available(moved, task, after_subs):
            self._emit([user_id], moved.title, self._project_name(task), NotificationReason.CREATED_AVAILABLE,
                       is_subtask=True, parent_title=task.title)
        return moved

    def set_subtask_order(self, subtask_id: int, order: Optional[int]) -> Subtask:
        _check_level(order)
        sub = self.store.get_subtask(subtask_id)
        if sub is None:
            raise NotFound("subtask", subtask_id)
        task = self.store.get_task(sub.task_id)
        if task is None:
            raise MissingParent(sub.task_id)
        siblings = self.store.list_subtasks(task.id)
        before = resolver.available_ids(task, siblings)
        with self.store.transaction():
            self.store.write_subtask_order(sub.id, order, expected_version=sub.version)
            after_subs = self.store.list_subtasks(task.id)
        self._notify_unblocked(task, before, after_subs)
        return next(s for s in after_subs if s.id == sub.id)

    def swap_subtasks(self, first_id: int, second_id: int) -> bool:
        """
        Exchange the levels of two subtasks of the same task.

        Writes go through a temporary negative level so the two subtasks
        never hold the same level at any point of the swap.
        """
        first = self.store.get_subtask(first_id)
        second = self.store.get_subtask(second_id)
        if first is None:
            raise NotFound("subtask", first_id)
        if second is None:
            raise NotFound("subtask", second_id)
        if first.task_id != second.task_id:
            raise InvalidReorder(f"Subtasks {first_id} and {second_id} belong to different tasks")
        if (first.sequence_order or 0) == (second.sequence_order or 0):
            return False
        task = self.store.get_task(first.task_id)
        if task is None:
            raise MissingParent(first.task_id)

        siblings = self.store.list_subtasks(task.id)
        before = resolver.available_ids(task, siblings)
        temp = -(max((s.sequence_order or 0) for s in siblings) + 1)
        with self.store.transaction():
            # both rows must still be at the versions the levels were read from
            self.store.write_subtask_order(first.id, temp, expected_version=first.version)
            self.store.write_subtask_order(second.id, first.sequence_order, expected_version=second.version)
            self.store.write_subtask_order(first.id, second.sequence_order)
            after_subs = self.store.list_subtasks(task.id)
        logger.debug("Swapped levels of subtasks {} and {}", first.id, second.id)
        self._notify_unblocked(task, before, after_subs)
        return True

    def move_subtask(self, subtask_id: int, direction: str) -> bool:
        """Swap with the nearest subtask on a different level above ("up") or below ("down")."""
        if direction not in ("up", "down"):
            raise InvalidReorder(f"Unknown direction {direction!r}")
        sub = self.store.get_subtask(subtask_id)
        if sub is None:
            raise NotFound("subtask", subtask_id)
        ordered = sorted(self.store.list_subtasks(sub.task_id), key=lambda s: (s.sequence_order or 0, s.id))
        pos = next(i for i, s in enumerate(ordered) if s.id == sub.id)
        candidates = reversed(ordered[:pos]) if direction == "up" else ordered[pos + 1:]
        level = sub.sequence_order or 0
        neighbour = next((s for s in candidates if (s.sequence_order or 0) != level), None)
        if neighbour is None:
            return False
        return self.swap_subtasks(sub.id, neighbour.id)

    # ---- day planning ----
    def schedule_work(self, *, user_id: int, work_date: date, task_id: Optional[int] = None,
                      subtask_id: Optional[int] = None,
                      estimated_duration: Optional[int] = None) -> TaskWorkAssignment:
        """
        Put an item the user owns on their plan for ``work_date``.

        Pass either a leaf task or a subtask. Scheduling the same item twice
        for the same day returns the existing assignment.
        """
        if (task_id is None) == (subtask_id is None):
            raise InvalidAssignment("Schedule exactly one task or subtask")
        if subtask_id is not None:
            sub = self.store.get_subtask(subtask_id)
            if sub is None:
                raise NotFound("subtask", subtask_id)
            task = self.store.get_task(sub.task_id)
            if task is None:
                raise MissingParent(sub.task_id)
            if sub.assigned_to != user_id:
                raise InvalidAssignment(f"Subtask {sub.id} is not assigned to user {user_id}")
            kind, status = "subtask", sub.status
        else:
            task = self.store.get_task(task_id)
            if task is None:
                raise NotFound("task", task_id)
            if self.store.list_subtasks(task.id):
                raise InvalidAssignment(f"Task {task.id} has subtasks; schedule those instead")
            if user_id not in (task.assigned_users or []):
                raise InvalidAssignment(f"Task {task.id} is not assigned to user {user_id}")
            kind, status = "task", task.status

        for wa in self.store.list_work_assignments(start=work_date, end=work_date, user_id=user_id):
            if wa.task_id == task.id and wa.subtask_id == subtask_id:
                return wa
        wa = self.store.add_work_assignment(TaskWorkAssignment(
            user_id=user_id, work_date=work_date, task_id=task.id, task_type=kind,
            subtask_id=subtask_id, project_id=task.project_id, status=status,
            estimated_duration=estimated_duration,
        ))
        logger.debug("Scheduled {} {} for user {} on {}", kind, subtask_id or task.id, user_id, work_date)
        return wa

    # ---- deletion ----
    def delete_task(self, task_id: int) -> None:
        if not self.store.delete_task(task_id):
            raise NotFound("task", task_id)
        logger.info("Deleted task {} and everything under it", task_id)

    def delete_subtask(self, subtask_id: int) -> None:
        sub = self.store.get_subtask(subtask_id)
        if sub is None:
            raise NotFound("subtask", subtask_id)
        task = self.store.get_task(sub.task_id)
        if task is None:
            raise MissingParent(sub.task_id)
        before = resolver.available_ids(task, self.store.list_subtasks(task.id))
        with self.store.transaction():
            self.store.delete_subtask(sub.id)
            after_subs = self.store.list_subtasks(task.id)
            if after_subs:
                self._sync_parent(task, after_subs)
            else:
                # back to a leaf task: keep a single owner
                self.store.write_task_assignees(task.id, [sub.assigned_to])
        self._notify_unblocked(task, before, after_subs)

    # ---- internals ----
    def _new_subtask(self, task_id: int, d: SubtaskDraft) -> Subtask:
        return Subtask(task_id=task_id, title=d.title, description=d.description,
                       sequence_order=d.sequence_order, assigned_to=d.assigned_to,
                       start_date=d.start_date, deadline=d.deadline, status=P)

    def _sync_parent(self, task: Task, subtasks: Sequence[Subtask]) -> None:
        users = sorted({s.assigned_to for s in subtasks})
        if users != sorted(task.assigned_users or []):
            self.store.write_task_assignees(task.id, users)
        projected = project_task_status(subtasks)
        if projected is not None and projected != task.status:
            self.store.write_task_status(task.id, projected)

    def _feedback_for(self, target: str, actor: Optional[int], comment: Optional[str]) -> Optional[dict]:
        now = self.clock().isoformat()
        if target == A:
            payload = {"approved_at": now, "approved_by": actor}
        elif target == R:
            payload = {"returned_at": now, "returned_by": actor}
        else:
            return None
        if comment:
            payload["comment"] = comment
        return payload

    def _notify_unblocked(self, task: Task, before: Iterable[int], after_subs: Sequence[Subtask]) -> None:
        before = set(before)
        fresh = [s for s in resolver.available_subtasks(task, after_subs) if s.id not in before]
        if not fresh:
            return
        project_name = self._project_name(task)
        for s in fresh:
            self._emit([s.assigned_to], s.title, project_name, NotificationReason.UNBLOCKED,
                       is_subtask=True, parent_title=task.title)

    def _project_name(self, task: Task) -> str:
        try:
            return self.store.get_project_name(task.project_id) or ""
        except Exception:
            logger.exception("Could not resolve project name for task {}", task.id)
            return ""

    def _emit(self, user_ids: Iterable[int], title: str, project_name: str, reason: NotificationReason,
              *, is_subtask: bool, parent_title: Optional[str] = None) -> None:
        users = tuple(dict.fromkeys(u for u in user_ids if u is not None))
        if not users:
            return
        intent = NotificationIntent(user_ids=users, item_title=title, project_name=project_name,
                                    reason=reason, is_subtask=is_subtask, parent_title=parent_title)
        try:
            self.dispatcher.notify(intent)
        except Exception:
            logger.exception("Dispatcher failed for '{}'; transition kept", title)
