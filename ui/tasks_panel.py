# ui/tasks_panel.py
import streamlit as st
from datetime import date, datetime, time

import db
from utils.progress import compute_task_progress
from workflow.errors import WorkflowError
from workflow.resolver import available_subtasks
from workflow.transitions import SubtaskDraft

STATUS_LABELS = {
    "pending": "Pending",
    "in_progress": "In Progress",
    "completed": "In Review",
    "in_review": "In Review",
    "approved": "Approved",
    "returned": "Returned",
    "blocked": "Blocked",
}


def _run(action, success: str):
    """Run an engine call and report the outcome in the page."""
    try:
        action()
    except WorkflowError as e:
        st.error(str(e))
        return False
    st.success(success)
    return True


def _parse_subtask_lines(text: str, bind=None) -> list[SubtaskDraft]:
    # one subtask per line: title | assignee email | level (optional)
    drafts = []
    for line in text.splitlines():
        parts = [p.strip() for p in line.split("|")]
        if not parts or not parts[0]:
            continue
        email = parts[1] if len(parts) > 1 else ""
        level = int(parts[2]) if len(parts) > 2 and parts[2].isdigit() else None
        user_id = db.get_or_create_user(email, bind=bind).id if email else None
        drafts.append(SubtaskDraft(title=parts[0], assigned_to=user_id, sequence_order=level))
    return drafts


def render_new_task_form(machine, project_id: int):
    with st.form("new_task", clear_on_submit=True):
        t_title = st.text_input("Task title")
        t_desc = st.text_area("Description")
        c1, c2 = st.columns(2)
        t_start = c1.date_input("Start", value=date.today(), key="t_start")
        t_end = c2.date_input("Deadline", value=date.today(), key="t_end")
        t_seq = st.checkbox("Sequential (subtasks run level by level)")
        t_assignee = st.text_input("Assignee email (tasks without subtasks)")
        t_subs = st.text_area("Subtasks, one per line: title | assignee email | level")
        submitted = st.form_submit_button("Add task")
    if not submitted or not t_title:
        return
    try:
        drafts = _parse_subtask_lines(t_subs)
    except ValueError as e:
        st.error(f"Could not read subtasks: {e}")
        return
    assignees = [db.get_or_create_user(t_assignee).id] if t_assignee.strip() and not drafts else []
    _run(lambda: machine.create_task(
        title=t_title.strip(), project_id=project_id, description=t_desc or None,
        is_sequential=t_seq, assigned_users=assignees,
        start_date=datetime.combine(t_start, time.min), deadline=datetime.combine(t_end, time.max),
        subtasks=drafts,
    ), "Task added")


def render_tasks_panel(store, machine, project_id: int, current_user_id: int, is_admin: bool):
    st.subheader("Tasks")
    render_new_task_form(machine, project_id)

    tasks = store.list_tasks(project_id=project_id)
    if not tasks:
        st.info("No tasks yet.")
        return
    for t in tasks:
        subs = store.list_subtasks(t.id)
        status = machine.effective_status(t, subs)
        pct = compute_task_progress(t, subs)
        with st.expander(f"🧩 {t.title} · {STATUS_LABELS.get(status, status)} ({pct:.0f}%)"):
            if t.description:
                st.caption(t.description)
            if not subs:
                _render_leaf_actions(machine, t, current_user_id, is_admin)
            else:
                _render_subtasks(machine, t, subs, current_user_id, is_admin)
            if is_admin and st.button("Delete task", key=f"del_{t.id}"):
                _run(lambda: machine.delete_task(t.id), "Task deleted")


def _render_leaf_actions(machine, t, current_user_id: int, is_admin: bool):
    mine = current_user_id in (t.assigned_users or [])
    c1, c2, c3, c4 = st.columns(4)
    if mine and t.status == "pending" and c1.button("Start", key=f"ts_{t.id}"):
        _run(lambda: machine.set_task_status(t.id, "in_progress", actor=current_user_id), "Started")
    if mine and t.status == "in_progress" and c2.button("Submit", key=f"tc_{t.id}"):
        _run(lambda: machine.set_task_status(t.id, "completed", actor=current_user_id), "Submitted for review")
    if mine and t.status == "returned" and c1.button("Resume", key=f"tr_{t.id}"):
        _run(lambda: machine.set_task_status(t.id, "pending", actor=current_user_id), "Back to pending")
    if mine and t.status not in ("completed", "approved") and c2.button("Plan today", key=f"tp_{t.id}"):
        _run(lambda: machine.schedule_work(user_id=current_user_id, work_date=date.today(), task_id=t.id),
             "Added to today's plan")
    if is_admin and t.status == "completed":
        if c3.button("Approve", key=f"ta_{t.id}"):
            _run(lambda: machine.set_task_status(t.id, "approved", actor=current_user_id), "Approved")
        reason = c4.text_input("Return reason", key=f"trr_{t.id}")
        if c4.button("Return", key=f"trb_{t.id}"):
            _run(lambda: machine.set_task_status(t.id, "returned", actor=current_user_id, comment=reason),
                 "Returned")


def _render_subtasks(machine, t, subs, current_user_id: int, is_admin: bool):
    open_ids = {s.id for s in available_subtasks(t, subs)}
    for sst in subs:
        sc1, sc2, sc3, sc4 = st.columns([3, 1, 1, 2])
        level = f"L{sst.sequence_order or 0} · " if t.is_sequential else ""
        sc1.markdown(f"{level}**{sst.title}**")
        sc2.write(STATUS_LABELS.get(sst.status, sst.status))
        sc3.write("✅ available" if sst.id in open_ids else "")
        mine = sst.assigned_to == current_user_id
        with sc4:
            if mine and sst.id in open_ids and st.button("Start", key=f"ss_{sst.id}"):
                _run(lambda: machine.start_subtask(sst.id, actor=current_user_id), "Started")
            if mine and sst.status == "in_progress" and st.button("Submit", key=f"sc_{sst.id}"):
                _run(lambda: machine.submit_subtask(sst.id, actor=current_user_id), "Submitted for review")
            if mine and sst.status == "returned" and st.button("Resume", key=f"sr_{sst.id}"):
                _run(lambda: machine.resume_subtask(sst.id, actor=current_user_id), "Back to pending")
            if mine and sst.status in ("pending", "in_progress", "returned") and st.button("Plan today", key=f"sp_{sst.id}"):
                _run(lambda: machine.schedule_work(user_id=current_user_id, work_date=date.today(),
                                                   subtask_id=sst.id), "Added to today's plan")
            if is_admin and sst.status == "completed":
                if st.button("Approve", key=f"sa_{sst.id}"):
                    _run(lambda: machine.approve_subtask(sst.id, actor=current_user_id), "Approved")
                reason = st.text_input("Return reason", key=f"srr_{sst.id}")
                if st.button("Return", key=f"srb_{sst.id}"):
                    _run(lambda: machine.return_subtask(sst.id, actor=current_user_id, reason=reason), "Returned")
            if is_admin and t.is_sequential:
                m1, m2 = st.columns(2)
                if m1.button("▲", key=f"up_{sst.id}"):
                    _run(lambda: machine.move_subtask(sst.id, "up"), "Moved up")
                if m2.button("▼", key=f"dn_{sst.id}"):
                    _run(lambda: machine.move_subtask(sst.id, "down"), "Moved down")
