# tests/test_metrics.py
from datetime import date, datetime, timedelta, timezone

import pytest

from models import Subtask, Task, TaskWorkAssignment
from workflow.index import WorkItemIndex
from workflow.metrics import (
    METRIC_FIELDS, MetricsAggregator, UserMetrics, compute_team_metrics, compute_user_metrics,
    metrics_frame, parse_approval_timestamp, team_summary, workload_flags,
)
from workflow.transitions import SubtaskDraft

from tests.conftest import NOW

U, V = 1, 2
TODAY = NOW.date()


def _leaf(task_id, status, user=U):
    return Task(id=task_id, title=f"T{task_id}", status=status, assigned_users=[user])


def _wa(wa_id, task_id, day, status="pending", user=U, subtask_id=None):
    return TaskWorkAssignment(id=wa_id, user_id=user, work_date=day, task_id=task_id,
                              task_type="subtask" if subtask_id else "task", subtask_id=subtask_id,
                              status=status)


def test_scenario_d_todays_load_skips_done_items():
    tasks = [_leaf(1, "in_progress"), _leaf(2, "pending"), _leaf(3, "approved")]
    index = WorkItemIndex.build(tasks, [])
    assignments = [_wa(1, 1, TODAY), _wa(2, 2, TODAY), _wa(3, 3, TODAY)]
    m = compute_user_metrics(index, assignments, U, TODAY, NOW)
    assert m.todaysLoad == 2
    assert m.overdueTasks == 0


def test_item_status_wins_over_assignment_copy():
    index = WorkItemIndex.build([_leaf(1, "approved")], [])
    m = compute_user_metrics(index, [_wa(1, 1, TODAY, status="pending")], U, TODAY, NOW)
    assert m.todaysLoad == 0
    # unknown item: the assignment's own status is all there is
    m = compute_user_metrics(WorkItemIndex(), [_wa(1, 99, TODAY, status="in_progress")], U, TODAY, NOW)
    assert m.todaysLoad == 1


def test_overdue_counts_only_past_open_assignments():
    tasks = [_leaf(1, "in_progress"), _leaf(2, "completed"), _leaf(3, "returned")]
    index = WorkItemIndex.build(tasks, [])
    yesterday = TODAY - timedelta(days=1)
    assignments = [
        _wa(1, 1, yesterday), _wa(2, 2, yesterday), _wa(3, 3, TODAY - timedelta(days=9)),
        _wa(4, 1, TODAY + timedelta(days=1)), _wa(5, 1, yesterday, user=V),
    ]
    m = compute_user_metrics(index, assignments, U, TODAY, NOW)
    assert m.overdueTasks == 2
    assert m.todaysLoad == 0


def test_review_returned_and_recent_approvals():
    t = Task(id=1, title="Parent", assigned_users=[U])
    recent = {"approved_at": (NOW - timedelta(days=3)).isoformat(), "approved_by": 9}
    old = {"approved_at": (NOW - timedelta(days=45)).isoformat()}
    subs = [
        Subtask(id=1, task_id=1, title="a", assigned_to=U, status="completed"),
        Subtask(id=2, task_id=1, title="b", assigned_to=U, status="returned"),
        Subtask(id=3, task_id=1, title="c", assigned_to=U, status="approved", feedback=recent),
        Subtask(id=4, task_id=1, title="d", assigned_to=U, status="approved", feedback=old),
        Subtask(id=5, task_id=1, title="e", assigned_to=U, status="approved", feedback="{not json"),
        Subtask(id=6, task_id=1, title="f", assigned_to=U, status="approved",
                feedback={"approved_at": "someday"}),
        Subtask(id=7, task_id=1, title="g", assigned_to=U, status="approved", feedback=None),
    ]
    m = compute_user_metrics(WorkItemIndex.build([t], subs), [], U, TODAY, NOW)
    assert (m.tasksInReview, m.tasksReturned, m.tasksApprovedThisMonth) == (1, 1, 1)
    wide = compute_user_metrics(WorkItemIndex.build([t], subs), [], U, TODAY, NOW, window_days=60)
    assert wide.tasksApprovedThisMonth == 2


def test_leaf_tasks_count_for_their_assignee():
    tasks = [_leaf(1, "pending"), _leaf(2, "completed"), _leaf(3, "pending", user=V)]
    m = compute_user_metrics(WorkItemIndex.build(tasks, []), [], U, TODAY, NOW)
    assert m.tasksPending == 1
    assert m.tasksInReview == 1


@pytest.mark.parametrize("raw, expected", [
    ({"approved_at": "2025-06-10T10:00:00"}, datetime(2025, 6, 10, 10, 0, tzinfo=timezone.utc)),
    ('{"approved_at": "2025-06-10T10:00:00+02:00"}', datetime(2025, 6, 10, 8, 0, tzinfo=timezone.utc)),
    ({"approved_at": "June 10 2025 10:00"}, datetime(2025, 6, 10, 10, 0, tzinfo=timezone.utc)),
    ({"approved_at": ""}, None),
    ({"approved_at": 17}, None),
    ({"comment": "no timestamp"}, None),
    ("[1, 2]", None),
    ("garbage", None),
    (None, None),
])
def test_parse_approval_timestamp(raw, expected):
    assert parse_approval_timestamp(raw) == expected


def test_team_metrics_cover_every_referenced_user():
    tasks = [_leaf(1, "pending", user=V)]
    result = compute_team_metrics(tasks, [], [_wa(1, 1, TODAY, user=7)], [U], TODAY, NOW)
    assert [m.userId for m in result] == [U, V, 7]


def test_flags_and_summary():
    assert workload_flags(UserMetrics(userId=U, overdueTasks=3)) == []
    flag, = workload_flags(UserMetrics(userId=U, overdueTasks=4))
    assert flag["type"] == "overdue_tasks" and flag["severity"] == "medium"
    assert workload_flags(UserMetrics(userId=U, overdueTasks=6))[0]["severity"] == "high"
    assert workload_flags(UserMetrics(userId=U, overdueTasks=2), warn_threshold=1)[0]["severity"] == "medium"

    team = [UserMetrics(userId=U, tasksPending=2, overdueTasks=1), UserMetrics(userId=V, tasksPending=3)]
    summary = team_summary(team)
    assert summary["users"] == 2
    assert summary["tasksPending"] == 5
    assert summary["overdueTasks"] == 1


def test_metrics_frame():
    df = metrics_frame([UserMetrics(userId=U, todaysLoad=2)], names={U: "Alice"})
    assert list(df.columns) == ["userId", "user", *METRIC_FIELDS]
    assert df.loc[0, "user"] == "Alice"
    assert df.loc[0, "todaysLoad"] == 2
    assert metrics_frame([]).empty


def test_aggregator_over_store(machine, store, project_id, users):
    alice, bob, carol = users
    task = machine.create_task(title="Sprint", project_id=project_id, is_sequential=True, subtasks=[
        SubtaskDraft("design", alice, 1), SubtaskDraft("build", bob, 2),
    ])
    design, build = store.list_subtasks(task.id)
    leaf = machine.create_task(title="Call client", project_id=project_id, assigned_users=[alice])
    machine.schedule_work(user_id=alice, work_date=TODAY, subtask_id=design.id)
    machine.schedule_work(user_id=alice, work_date=TODAY - timedelta(days=2), task_id=leaf.id)
    machine.schedule_work(user_id=alice, work_date=TODAY + timedelta(days=1), task_id=leaf.id)

    agg = MetricsAggregator(store, today=TODAY, now=NOW)
    m = agg.get_user_metrics(alice)
    assert (m.tasksPending, m.todaysLoad, m.overdueTasks) == (2, 1, 1)
    assert agg.get_user_metrics(bob).tasksPending == 0

    machine.start_subtask(design.id)
    machine.submit_subtask(design.id)
    machine.approve_subtask(design.id, actor=carol)
    m = agg.get_user_metrics(alice)
    assert (m.tasksPending, m.todaysLoad, m.tasksApprovedThisMonth) == (1, 0, 1)
    assert agg.get_user_metrics(bob).tasksPending == 1

    first = agg.get_team_metrics()
    assert first == agg.get_team_metrics()
    assert [x.userId for x in first] == [alice, bob, carol]
