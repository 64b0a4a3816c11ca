# ui/dashboard_panel.py
import streamlit as st
import plotly.express as px

from config import settings
from workflow.metrics import MetricsAggregator, metrics_frame, team_summary, workload_flags


def render_dashboard_panel(store, current_user_id: int):
    st.subheader("Dashboard")
    agg = MetricsAggregator(store, window_days=settings.approval_window_days)

    mine = agg.get_user_metrics(current_user_id)
    c1, c2, c3, c4, c5, c6 = st.columns(6)
    with c1: st.metric("Available now", mine.tasksPending)
    with c2: st.metric("Today's load", mine.todaysLoad)
    with c3: st.metric("Overdue", mine.overdueTasks)
    with c4: st.metric("In review", mine.tasksInReview)
    with c5: st.metric("Returned", mine.tasksReturned)
    with c6: st.metric(f"Approved ({settings.approval_window_days}d)", mine.tasksApprovedThisMonth)

    for flag in workload_flags(mine, settings.overdue_warn_threshold, settings.overdue_high_threshold):
        (st.error if flag["severity"] == "high" else st.warning)(flag["message"])

    st.markdown("---")
    st.markdown("### Team workload")
    team = agg.get_team_metrics()
    if not team:
        st.info("No users yet.")
        return
    names = {u.id: (u.name or u.email) for u in store.list_users()}
    df = metrics_frame(team, names)
    summary = team_summary(team)
    st.caption(f"{summary['users']} people · {summary['tasksPending']} available · "
               f"{summary['overdueTasks']} overdue · {summary['tasksInReview']} awaiting review")
    st.dataframe(df.drop(columns=["userId"]), use_container_width=True, hide_index=True)

    long_df = df.melt(id_vars=["user"], value_vars=["tasksPending", "todaysLoad", "overdueTasks"],
                      var_name="metric", value_name="count")
    fig = px.bar(long_df, y="user", x="count", color="metric", orientation="h", barmode="group")
    fig.update_layout(margin=dict(l=10, r=10, t=10, b=10), yaxis_title="", xaxis_title="")
    st.plotly_chart(fig, use_container_width=True, config={"displaylogo": False, "responsive": True})
