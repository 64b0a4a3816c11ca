# utils/timeline.py
import pandas as pd

from models import Status
from workflow.index import WorkItemIndex
from workflow.resolver import available_subtasks
from workflow.transitions import project_task_status

TIMELINE_COLUMNS = ["Item", "Start", "Finish", "Status", "Type", "Level", "Assignee", "Available"]


def timeline_df_for_project(store, project_id: int) -> pd.DataFrame:
    tasks = store.list_tasks(project_id=project_id)
    subs_all = [s for t in tasks for s in store.list_subtasks(t.id)]
    index = WorkItemIndex.build(tasks, subs_all)
    rows = []
    for t in tasks:
        subs = index.subtasks_of(t.id)
        rows.append({
            "Item": f"Task: {t.title}",
            "Start": t.start_date,
            "Finish": t.deadline,
            "Status": project_task_status(subs) or t.status,
            "Type": "Task",
            "Level": None,
            "Assignee": ", ".join(str(u) for u in (t.assigned_users or [])),
            "Available": (not subs) and t.status == Status.PENDING,
        })
        open_ids = {s.id for s in available_subtasks(t, subs)}
        for st_ in subs:
            rows.append({
                "Item": f"  ↳ {st_.title}",
                "Start": st_.start_date,
                "Finish": st_.deadline,
                "Status": st_.status,
                "Type": "Subtask",
                "Level": st_.sequence_order if t.is_sequential else None,
                "Assignee": str(st_.assigned_to),
                "Available": st_.id in open_ids,
            })
    df = pd.DataFrame(rows, columns=TIMELINE_COLUMNS)
    if not df.empty:
        df = df.dropna(subset=["Start", "Finish"], how="any")
    return df
