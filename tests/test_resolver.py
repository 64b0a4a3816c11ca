# tests/test_resolver.py
from models import Subtask, Task
from workflow.index import WorkItemIndex, group_by_level
from workflow.resolver import active_level, available_backlog, available_subtasks, is_available

U, V = 10, 20


def _task(sequential=True, task_id=1, **kw):
    return Task(id=task_id, title="Release", is_sequential=sequential, **kw)


def _sub(sub_id, level, status, user=U, task_id=1):
    return Subtask(id=sub_id, task_id=task_id, title=f"S{sub_id}", sequence_order=level,
                   status=status, assigned_to=user)


def _ids(subs):
    return {s.id for s in subs}


def test_scenario_a_next_level_opens_when_previous_is_approved():
    t = _task()
    subs = [_sub(1, 1, "approved", V), _sub(2, 1, "approved", V), _sub(3, 2, "pending", U)]
    assert _ids(available_subtasks(t, subs, U)) == {3}
    assert active_level(t, subs) == 2


def test_scenario_b_completed_is_not_enough():
    t = _task()
    subs = [_sub(1, 1, "approved", V), _sub(2, 1, "completed", V), _sub(3, 2, "pending", U)]
    assert available_subtasks(t, subs, U) == []
    assert active_level(t, subs) == 1


def test_level_gating_holds_for_every_non_approved_status():
    t = _task()
    for status in ("pending", "in_progress", "completed", "returned"):
        subs = [_sub(1, 1, "approved", V), _sub(2, 1, status, V), _sub(3, 2, "pending", U)]
        assert 3 not in _ids(available_subtasks(t, subs))


def test_parallel_task_ignores_siblings():
    t = _task(sequential=False)
    for status in ("pending", "in_progress", "completed", "returned", "approved"):
        subs = [_sub(1, 1, status, V), _sub(2, 2, "pending", U)]
        assert _ids(available_subtasks(t, subs, U)) == {2}


def test_same_level_runs_in_parallel():
    t = _task()
    subs = [_sub(1, 1, "pending", U), _sub(2, 1, "in_progress", V), _sub(3, 1, "pending", V)]
    assert _ids(available_subtasks(t, subs)) == {1, 3}
    assert _ids(available_subtasks(t, subs, V)) == {3}


def test_missing_order_counts_as_level_zero():
    t = _task()
    subs = [_sub(1, None, "pending", U), _sub(2, 1, "pending", U)]
    assert list(group_by_level(subs)) == [0, 1]
    assert _ids(available_subtasks(t, subs)) == {1}


def test_empty_and_finished_tasks():
    t = _task()
    assert available_subtasks(t, []) == []
    assert active_level(t, []) is None
    done = [_sub(1, 1, "approved"), _sub(2, 2, "approved")]
    assert active_level(t, done) is None
    assert available_subtasks(t, done) == []


def test_is_available_checks_own_assignee():
    t = _task()
    subs = [_sub(1, 1, "pending", U), _sub(2, 2, "pending", V)]
    assert is_available(subs[0], t, subs)
    assert not is_available(subs[1], t, subs)


def test_backlog_counts_available_subtasks_and_pending_leaf_tasks():
    seq = _task(task_id=1)
    leaf = _task(sequential=False, task_id=2, assigned_users=[U], status="pending")
    leaf_done = _task(sequential=False, task_id=3, assigned_users=[U], status="approved")
    subs = [_sub(1, 1, "pending", U), _sub(2, 1, "pending", U), _sub(3, 2, "pending", U)]
    index = WorkItemIndex.build([seq, leaf, leaf_done], subs)
    assert available_backlog(index, U) == 3
    assert available_backlog(index, V) == 0


def test_index_keeps_orphans_out_of_task_lists():
    t = _task()
    subs = [_sub(1, 2, "pending"), _sub(2, 1, "pending"), _sub(3, 1, "pending", task_id=99)]
    index = WorkItemIndex.build([t], subs)
    assert [s.id for s in index.subtasks_of(1)] == [2, 1]
    assert 3 in index.subtasks_by_id
    assert list(index.levels_by_task[1]) == [1, 2]
    assert [task.id for task in index.tasks_for_user(U)] == [1]
