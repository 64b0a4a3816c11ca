# db.py

#============================================================#
#                         Relevo-PM                          #
#============================================================#
# Purpose     : Storage for tasks, subtasks, work            #
#               assignments and status history               #
#               (SQLite/Postgres through SQLModel)           #
#============================================================#


from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from typing import Any, Iterable, Iterator, List, Optional

from loguru import logger
from sqlalchemy import and_, delete, or_, update
from sqlmodel import Session, SQLModel, create_engine, select

from config import settings
from models import (
    Project, Status, StatusHistory, Subtask, Task, TaskWorkAssignment, User,
)
from models.clock import utcnow
from workflow.errors import ConcurrentModification, NotFound

# ---- Engine / Session ----
DATABASE_URL = settings.database_url

engine = create_engine(DATABASE_URL, pool_pre_ping=True)


def init_db(bind=None):
    SQLModel.metadata.create_all(bind or engine)


@contextmanager
def get_session(bind=None) -> Iterator[Session]:
    with Session(bind or engine, expire_on_commit=False) as s:
        yield s


# ---- helpers ----
def get_or_create_user(email: str, name: Optional[str] = None, bind=None) -> User:
    with get_session(bind) as s:
        user = s.exec(select(User).where(User.email == email.strip().lower())).first()
        if not user:
            user = User(email=email.strip().lower(), name=name)
            s.add(user)
            s.commit()
            s.refresh(user)
        return user


def create_project(name: str, start: Optional[date] = None, end: Optional[date] = None,
                   description: Optional[str] = None, bind=None) -> int:
    with get_session(bind) as s:
        p = Project(name=name.strip(), start_date=start, end_date=end, description=description)
        s.add(p)
        s.commit()
        s.refresh(p)
        return p.id


def get_projects(bind=None) -> List[Project]:
    with get_session(bind) as s:
        return list(s.exec(select(Project).order_by(Project.name)).all())


class SqlWorkItemStore:
    """
    WorkItemStore on SQLModel.

    Each call runs in its own session and commits, unless it happens inside
    ``transaction()``, where all calls share one session and commit together.
    Status writes are conditional on the expected status/version so a stale
    transition never overwrites a newer one.

    One instance serves one request; it is not shared between threads.
    """

    def __init__(self, bind=None):
        self.engine = bind or engine
        self._session: Optional[Session] = None

    # ---- sessions ----
    @contextmanager
    def transaction(self) -> Iterator["SqlWorkItemStore"]:
        if self._session is not None:
            yield self
            return
        with Session(self.engine, expire_on_commit=False) as s:
            self._session = s
            try:
                yield self
                s.commit()
            except Exception:
                s.rollback()
                raise
            finally:
                self._session = None

    @contextmanager
    def _scope(self) -> Iterator[Session]:
        if self._session is not None:
            yield self._session
            return
        with Session(self.engine, expire_on_commit=False) as s:
            yield s
            s.commit()

    # ---- reads ----
    def list_tasks(self, project_id: Optional[int] = None, user_id: Optional[int] = None) -> List[Task]:
        with self._scope() as s:
            q = select(Task)
            if project_id is not None:
                q = q.where(Task.project_id == project_id)
            tasks = list(s.exec(q.order_by(Task.id)).all())
            if user_id is None:
                return tasks
            held = set(s.exec(select(Subtask.task_id).where(Subtask.assigned_to == user_id)).all())
            return [t for t in tasks if t.id in held or user_id in (t.assigned_users or [])]

    def get_task(self, task_id: int) -> Optional[Task]:
        with self._scope() as s:
            return s.get(Task, task_id)

    def get_subtask(self, subtask_id: int) -> Optional[Subtask]:
        with self._scope() as s:
            return s.get(Subtask, subtask_id)

    def list_subtasks(self, task_id: int) -> List[Subtask]:
        with self._scope() as s:
            q = select(Subtask).where(Subtask.task_id == task_id).order_by(Subtask.sequence_order, Subtask.id)
            return list(s.exec(q).all())

    def list_all_subtasks(self) -> List[Subtask]:
        with self._scope() as s:
            return list(s.exec(select(Subtask).order_by(Subtask.task_id, Subtask.id)).all())

    def list_work_assignments(self, start: Optional[date] = None, end: Optional[date] = None,
                              user_id: Optional[int] = None) -> List[TaskWorkAssignment]:
        with self._scope() as s:
            q = select(TaskWorkAssignment)
            if start is not None:
                q = q.where(TaskWorkAssignment.work_date >= start)
            if end is not None:
                q = q.where(TaskWorkAssignment.work_date <= end)
            if user_id is not None:
                q = q.where(TaskWorkAssignment.user_id == user_id)
            return list(s.exec(q.order_by(TaskWorkAssignment.work_date, TaskWorkAssignment.id)).all())

    def list_users(self) -> List[User]:
        with self._scope() as s:
            return list(s.exec(select(User).order_by(User.id)).all())

    def get_project_name(self, project_id: Optional[int]) -> Optional[str]:
        if project_id is None:
            return None
        with self._scope() as s:
            p = s.get(Project, project_id)
            return p.name if p else None

    def list_status_history(self, task_id: Optional[int] = None,
                            subtask_id: Optional[int] = None) -> List[StatusHistory]:
        with self._scope() as s:
            q = select(StatusHistory)
            if task_id is not None:
                q = q.where(StatusHistory.task_id == task_id)
            if subtask_id is not None:
                q = q.where(StatusHistory.subtask_id == subtask_id)
            return list(s.exec(q.order_by(StatusHistory.id)).all())

    # ---- writes ----
    def add_task(self, task: Task) -> Task:
        with self._scope() as s:
            s.add(task)
            s.flush()
            s.refresh(task)
            return task

    def add_subtask(self, subtask: Subtask) -> Subtask:
        with self._scope() as s:
            s.add(subtask)
            s.flush()
            s.refresh(subtask)
            return subtask

    def add_work_assignment(self, assignment: TaskWorkAssignment) -> TaskWorkAssignment:
        with self._scope() as s:
            s.add(assignment)
            s.flush()
            s.refresh(assignment)
            return assignment

    def _conditional_update(self, model, kind: str, item_id: int, values: dict,
                            expected_status: Optional[str], expected_version: Optional[int]) -> None:
        with self._scope() as s:
            stmt = update(model).where(model.id == item_id)
            if expected_status is not None:
                stmt = stmt.where(model.status == expected_status)
            if expected_version is not None:
                stmt = stmt.where(model.version == expected_version)
            stmt = (
                stmt.values(version=model.version + 1, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            result = s.exec(stmt)
            if result.rowcount == 1:
                # keep an already-loaded instance in step with the row
                cached = s.identity_map.get(s.identity_key(model, item_id))
                if cached is not None:
                    s.refresh(cached)
                return
            if s.get(model, item_id) is None:
                raise NotFound(kind, item_id)
            logger.warning("Conditional write on {} {} lost a race", kind, item_id)
            raise ConcurrentModification(kind, item_id)

    def write_task_status(self, task_id: int, status: str, *, expected_status: Optional[str] = None,
                          expected_version: Optional[int] = None, feedback: Any = None) -> None:
        values = {"status": status}
        if feedback is not None:
            values["feedback"] = feedback
        if status == Status.RETURNED:
            values["returned_at"] = utcnow()
        self._conditional_update(Task, "task", task_id, values, expected_status, expected_version)

    def write_subtask_status(self, subtask_id: int, status: str, *, expected_status: Optional[str] = None,
                             expected_version: Optional[int] = None, feedback: Any = None) -> None:
        values = {"status": status}
        if feedback is not None:
            values["feedback"] = feedback
        if status == Status.RETURNED:
            values["returned_at"] = utcnow()
        self._conditional_update(Subtask, "subtask", subtask_id, values, expected_status, expected_version)

    def write_subtask_order(self, subtask_id: int, order: Optional[int], *,
                            expected_version: Optional[int] = None) -> None:
        self._conditional_update(Subtask, "subtask", subtask_id, {"sequence_order": order}, None, expected_version)

    def write_subtask_assignee(self, subtask_id: int, user_id: int, *,
                               expected_version: Optional[int] = None) -> None:
        self._conditional_update(Subtask, "subtask", subtask_id, {"assigned_to": user_id}, None, expected_version)

    def write_task_assignees(self, task_id: int, user_ids: Iterable[int]) -> None:
        self._conditional_update(Task, "task", task_id, {"assigned_users": sorted(set(user_ids))}, None, None)

    def record_status_change(self, *, new_status: str, previous_status: Optional[str],
                             task_id: Optional[int] = None, subtask_id: Optional[int] = None,
                             changed_by: Optional[int] = None, details: Any = None) -> None:
        with self._scope() as s:
            s.add(StatusHistory(task_id=task_id, subtask_id=subtask_id, changed_by=changed_by,
                                previous_status=previous_status, new_status=new_status, details=details))

    def delete_task(self, task_id: int) -> bool:
        """Delete a task with its subtasks, work assignments and history, all or nothing."""
        with self.transaction():
            s = self._session
            if s.get(Task, task_id) is None:
                return False
            sub_ids = list(s.exec(select(Subtask.id).where(Subtask.task_id == task_id)).all())
            wa_filter = TaskWorkAssignment.task_id == task_id
            hist_filter = StatusHistory.task_id == task_id
            if sub_ids:
                wa_filter = or_(wa_filter, TaskWorkAssignment.subtask_id.in_(sub_ids))
                hist_filter = or_(hist_filter, StatusHistory.subtask_id.in_(sub_ids))
            _purge(s, TaskWorkAssignment, wa_filter)
            _purge(s, StatusHistory, hist_filter)
            _purge(s, Subtask, Subtask.task_id == task_id)
            _purge(s, Task, Task.id == task_id)
        return True

    def delete_work_assignments(self, *, subtask_id: int, user_id: int) -> None:
        """Drop a user's planned days on a subtask they no longer hold."""
        with self._scope() as s:
            _purge(s, TaskWorkAssignment, and_(TaskWorkAssignment.subtask_id == subtask_id,
                                               TaskWorkAssignment.user_id == user_id))

    def delete_subtask(self, subtask_id: int) -> bool:
        with self.transaction():
            s = self._session
            if s.get(Subtask, subtask_id) is None:
                return False
            _purge(s, TaskWorkAssignment, TaskWorkAssignment.subtask_id == subtask_id)
            _purge(s, StatusHistory, StatusHistory.subtask_id == subtask_id)
            _purge(s, Subtask, Subtask.id == subtask_id)
        return True


def _purge(s: Session, model, condition) -> None:
    s.flush()
    for obj in [o for o in s.identity_map.values() if isinstance(o, model)]:
        s.expunge(obj)
    s.exec(delete(model).where(condition).execution_options(synchronize_session=False))
