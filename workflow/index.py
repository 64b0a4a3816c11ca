# workflow/index.py
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from models import Subtask, Task


def group_by_level(subtasks: Iterable[Subtask]) -> Dict[int, List[Subtask]]:
    """{level: [subtasks]} with levels in ascending order; missing order counts as 0."""
    levels: Dict[int, List[Subtask]] = defaultdict(list)
    for sub in subtasks:
        levels[sub.sequence_order or 0].append(sub)
    return {lvl: levels[lvl] for lvl in sorted(levels)}


@dataclass
class WorkItemIndex:
    """Lookup tables built once per batch (one request, one metrics run)."""
    tasks_by_id: Dict[int, Task] = field(default_factory=dict)
    subtasks_by_id: Dict[int, Subtask] = field(default_factory=dict)
    subtasks_by_task: Dict[int, List[Subtask]] = field(default_factory=dict)
    levels_by_task: Dict[int, Dict[int, List[Subtask]]] = field(default_factory=dict)
    subtasks_by_user: Dict[int, List[Subtask]] = field(default_factory=dict)

    @classmethod
    def build(cls, tasks: Iterable[Task], subtasks: Iterable[Subtask]) -> "WorkItemIndex":
        idx = cls()
        for t in tasks:
            idx.tasks_by_id[t.id] = t
            idx.subtasks_by_task.setdefault(t.id, [])
        by_user: Dict[int, List[Subtask]] = defaultdict(list)
        for s in subtasks:
            idx.subtasks_by_id[s.id] = s
            # orphans stay reachable by id but never join a task's level map
            if s.task_id in idx.tasks_by_id:
                idx.subtasks_by_task[s.task_id].append(s)
            by_user[s.assigned_to].append(s)
        for task_id, subs in idx.subtasks_by_task.items():
            subs.sort(key=lambda s: (s.sequence_order or 0, s.id or 0))
            idx.levels_by_task[task_id] = group_by_level(subs)
        idx.subtasks_by_user = dict(by_user)
        return idx

    def subtasks_of(self, task_id: int) -> List[Subtask]:
        return self.subtasks_by_task.get(task_id, [])

    def tasks_for_user(self, user_id: int) -> List[Task]:
        """Tasks the user holds directly (leaf tasks) or through a subtask."""
        ids = {s.task_id for s in self.subtasks_by_user.get(user_id, []) if s.task_id in self.tasks_by_id}
        for task_id, task in self.tasks_by_id.items():
            if not self.subtasks_by_task.get(task_id) and user_id in (task.assigned_users or []):
                ids.add(task_id)
        return [self.tasks_by_id[i] for i in sorted(ids)]

    def user_ids(self) -> List[int]:
        ids = set(self.subtasks_by_user)
        for task in self.tasks_by_id.values():
            ids.update(task.assigned_users or [])
        return sorted(ids)
