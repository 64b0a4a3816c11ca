# main.py

#============================================================#
#                         Relevo-PM                          #
#============================================================#
# Purpose     : Relevo-PM keeps team work moving: sequential #
#               subtasks, review/approval, availability      #
#               notifications and workload metrics           #
#               (SQLite/Postgres powered)                    #
#============================================================#

import streamlit as st
from datetime import date, timedelta
from loguru import logger

import db
from config import settings, setup_logging
from ui.dashboard_panel import render_dashboard_panel
from ui.gantt_panel import render_gantt_panel
from ui.tasks_panel import render_tasks_panel
from utils.progress import compute_project_progress
from workflow.notifications import build_dispatcher
from workflow.transitions import StatusStateMachine


def force_rerun():
    fn = getattr(st, "rerun", None) or getattr(st, "experimental_rerun", None)
    if fn:
        fn()


st.set_page_config(
    page_title="Relevo - Project Manager",
    page_icon="🧩",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ======================  GLOBAL CSS  ======================
st.markdown("""
<style>
.stTabs [role="tablist"]{gap:10px;padding:6px 2px 14px 2px;border-bottom:0;}
.stTabs [role="tab"]{
  background:#f6f7fb; color:#374151;
  border:1px solid #e5e7eb; border-radius:999px; padding:10px 16px; font-weight:600;
}
.stTabs [role="tab"][aria-selected="true"]{
  background:#2563eb; color:#fff; border-color:transparent;
}
</style>
""", unsafe_allow_html=True)


@st.cache_resource
def _init_once():
    setup_logging()
    db.init_db()
    logger.info("Database ready at {}", settings.database_url.split("@")[-1])
    return True


@st.cache_resource
def _dispatcher():
    return build_dispatcher(settings)


_init_once()


def full_screen_login():
    _, col, _ = st.columns([1, 2.2, 1])
    with col:
        st.markdown("<h2 style='text-align:center;'>Relevo</h2>", unsafe_allow_html=True)
        with st.form("login_form", clear_on_submit=False):
            email = st.text_input("Your email", placeholder="you@example.com")
            name = st.text_input("Your name (optional)")
            submitted = st.form_submit_button("Sign in / Continue", use_container_width=True)
        if submitted:
            if not email:
                st.warning("Please enter your email.")
            else:
                user = db.get_or_create_user(email, name or None)
                st.session_state["user"] = {"id": user.id, "email": user.email, "name": user.name}
                force_rerun()


def render_project_sidebar():
    with st.sidebar:
        st.subheader("Project")
        projects = db.get_projects()
        if projects:
            ids = [p.id for p in projects]
            current = st.session_state.get("selected_project_id")
            chosen = st.selectbox(
                "Open project", options=projects, format_func=lambda p: p.name,
                index=ids.index(current) if current in ids else 0,
            )
            st.session_state["selected_project_id"] = chosen.id
        with st.expander("New project"):
            with st.form("new_project", clear_on_submit=True):
                p_name = st.text_input("Project name")
                p_desc = st.text_area("Description")
                c1, c2 = st.columns(2)
                p_start = c1.date_input("Start", value=date.today())
                p_end = c2.date_input("End", value=date.today() + timedelta(days=30))
                submit_new = st.form_submit_button("Create project")
            if submit_new:
                if not p_name:
                    st.warning("Please enter a project name.")
                elif p_end < p_start:
                    st.warning("End date must be after start date.")
                else:
                    st.session_state["selected_project_id"] = db.create_project(p_name, p_start, p_end, p_desc)
                    force_rerun()
        st.markdown("---")
        if st.button("Sign out"):
            st.session_state.pop("user", None)
            force_rerun()


# ======================  PAGE  ======================
if "user" not in st.session_state:
    full_screen_login()
    st.stop()

user = st.session_state["user"]
is_admin = not settings.admin_emails or user["email"] in settings.admin_emails
render_project_sidebar()

# one store per rerun; the dispatcher outlives reruns
store = db.SqlWorkItemStore()
machine = StatusStateMachine(store, _dispatcher())

pid = st.session_state.get("selected_project_id")
st.title(f"Hi {user['name'] or user['email']}")
if pid is None:
    st.info("Create a project in the sidebar to get started.")
    st.stop()

st.caption(f"{store.get_project_name(pid)} · {compute_project_progress(store, pid):.0f}% approved")

tab1, tab2, tab3 = st.tabs(["Dashboard", "Tasks", "Timeline"])
with tab1:
    render_dashboard_panel(store, user["id"])
with tab2:
    render_tasks_panel(store, machine, pid, user["id"], is_admin)
with tab3:
    render_gantt_panel(store, pid)
