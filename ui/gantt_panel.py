# ui/gantt_panel.py
import streamlit as st
import plotly.express as px

from utils.timeline import timeline_df_for_project

STATUS_COLORS = {
    "pending": "#9CA3AF",
    "in_progress": "#2563EB",
    "completed": "#F59E0B",
    "in_review": "#F59E0B",
    "returned": "#DC2626",
    "approved": "#16A34A",
    "blocked": "#6B7280",
}


def render_gantt_panel(store, project_id: int):
    st.subheader("Gantt Timeline")
    df = timeline_df_for_project(store, project_id)
    if df.empty:
        st.info("Add start dates and deadlines to tasks/subtasks to see the timeline.")
        return
    fig = px.timeline(df, x_start="Start", x_end="Finish", y="Item",
                      color="Status", hover_data=["Type", "Level", "Assignee", "Available"],
                      color_discrete_map=STATUS_COLORS)
    fig.update_yaxes(autorange="reversed", title=None)
    fig.update_layout(margin=dict(l=20, r=20, t=10, b=30), legend_title_text="Status")
    st.plotly_chart(fig, use_container_width=True, config={"displaylogo": False})
