# =============================================================================
# Clinic Schedule Grid - Main Application
# =============================================================================
#
# Run:
#   streamlit run app.py
#
# Set FIRESTORE_PROJECT_ID (and sign in once) to use the shared Firestore
# document; otherwise the schedule is kept in data/schedule.json.

import logging
import os
import traceback

import streamlit as st

from models.cell_models import effective_content
from models.constants import BACKUP_COLLECTION, BACKUP_DOC, FLAG_KEYS
from models.data_models import CellRef, DuplicateChoice, InteractionState
from core.activity_log import activity_log
from core.cell_actions import CellActions
from core.data_manager import (
    BACKUP_FILE, SCHEDULE_FILE, JsonFileDocumentStore, load_schedule_config, load_settings,
)
from core.duplicate_controller import DuplicateMoveController, find_duplicate_entry
from core.move_engine import DragDropController, MoveEngine
from core.schedule_store import ScheduleStore
from core.utils import make_time_slots
from ui.data_status import render_backup_panel, render_save_status
from ui.grid import render_schedule_grid

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

DEFAULT_EMPLOYEES = {"0": "Employee 1", "1": "Employee 2", "2": "Employee 3"}
FLAG_LABELS = {"is_massage": "Massage", "is_pnf": "PNF", "is_every_other_day": "Every other day"}


def _build_document_store(backup: bool = False):
    project_id = os.environ.get("FIRESTORE_PROJECT_ID")
    if project_id:
        from integrations.firestore_document import FirestoreDocumentStore
        if backup:
            return FirestoreDocumentStore(project_id, collection=BACKUP_COLLECTION, document_id=BACKUP_DOC)
        return FirestoreDocumentStore(project_id)
    return JsonFileDocumentStore(BACKUP_FILE if backup else SCHEDULE_FILE)


def initialize_session_state():
    """Create the store and controllers once per session."""
    if "store" in st.session_state:
        return

    settings = load_settings()
    config = load_schedule_config()

    store = ScheduleStore(_build_document_store(), config=config,
                          author_id=settings.get("author_id"))
    store.load()

    interaction = InteractionState()
    st.session_state.store = store
    st.session_state.interaction = interaction
    st.session_state.actions = CellActions(store, interaction, activity_log)
    st.session_state.drag_drop = DragDropController(MoveEngine(store, activity_log), interaction, activity_log)
    st.session_state.editor = DuplicateMoveController(store, activity_log)
    st.session_state.employees = settings.get("employees") or DEFAULT_EMPLOYEES
    st.session_state.time_slots = make_time_slots(config.start_hour, config.end_hour)
    st.session_state.backup_store = _build_document_store(backup=True)
    st.session_state.pending_choice = None


def _cell_picker(label: str, key: str, allow_part: bool = True) -> CellRef:
    employees = st.session_state.employees
    col1, col2, col3 = st.columns(3)
    with col1:
        time = st.selectbox(f"{label}: time", st.session_state.time_slots, key=f"{key}_time")
    with col2:
        employee_id = st.selectbox(f"{label}: employee", list(employees),
                                   format_func=lambda e: employees[e], key=f"{key}_emp")
    part = None
    with col3:
        if allow_part:
            choice = st.selectbox(f"{label}: part", ["Whole cell", "Part 1", "Part 2"], key=f"{key}_part")
            part = {"Part 1": 1, "Part 2": 2}.get(choice)
    return CellRef(time=time, employee_id=employee_id, part=part)


def render_edit_panel():
    store = st.session_state.store
    editor = st.session_state.editor
    actions = st.session_state.actions

    st.subheader("✏️ Edit cell")
    ref = _cell_picker("Cell", "edit")
    current = store.get_cell_state(ref.time, ref.employee_id)
    text = st.text_input("Content (use a/b to split)", value=effective_content(current) or "", key="edit_text")

    # Streamlit cannot block on a dialog: a found duplicate is kept pending until the user picks.
    pending = st.session_state.pending_choice
    if pending is not None:
        pending_ref, pending_text, match = pending
        employee_name = st.session_state.employees.get(match.ref.employee_id, match.ref.employee_id)
        st.warning(f'"{pending_text}" already exists for {employee_name} at {match.ref.time}. What do you want to do?')
        col1, col2, col3 = st.columns(3)
        for column, choice, label in ((col1, DuplicateChoice.MOVE, "Move it here"),
                                      (col2, DuplicateChoice.ADD_ANYWAY, "Add anyway"),
                                      (col3, DuplicateChoice.CANCEL, "Cancel")):
            with column:
                if st.button(label, key=f"duplicate_{choice.value}"):
                    editor.commit_text_edit(pending_ref, pending_text, choose=lambda _, c=choice: c)
                    st.session_state.pending_choice = None
                    st.rerun()
    elif st.button("Save text"):
        match = find_duplicate_entry(store, text.strip(), ref)
        if match is not None:
            st.session_state.pending_choice = (ref, text, match)
        else:
            editor.commit_text_edit(ref, text)
        st.rerun()

    st.markdown("**Cell actions**")
    buttons = st.columns(6)
    commands = [
        ("Split", actions.split_cell), ("Merge", actions.merge_split_cell),
        ("Clear", actions.clear_cell), ("Break", actions.set_break),
        ("Remove break", actions.remove_break), ("Clear formatting", actions.clear_formatting),
    ]
    for column, (label, command) in zip(buttons, commands):
        with column:
            if st.button(label, key=f"action_{label}"):
                command(ref)
                st.rerun()

    flag_columns = st.columns(len(FLAG_KEYS) + 2)
    for column, flag in zip(flag_columns, FLAG_KEYS):
        with column:
            if st.button(FLAG_LABELS[flag], key=f"flag_{flag}"):
                actions.toggle_special_style(ref, flag)
                st.rerun()
    with flag_columns[-2]:
        if st.button("Copy"):
            actions.copy_cell(ref)
    with flag_columns[-1]:
        if st.button("Paste"):
            actions.paste_cell(ref)
            st.rerun()

    history = actions.get_history(ref)
    if history:
        with st.expander(f"History ({len(history)})"):
            for index, entry in enumerate(history):
                if st.button(f"{entry.timestamp[:16]} - {entry.old_value}", key=f"history_{index}"):
                    actions.restore_from_history(ref, index)
                    st.rerun()


def render_move_panel():
    st.subheader("↔️ Move")
    drag_drop = st.session_state.drag_drop
    source = _cell_picker("From", "move_src")
    target = _cell_picker("To", "move_dst")
    if st.button("Move"):
        if drag_drop.handle_drag_start(source) and drag_drop.handle_drag_over(target):
            drag_drop.handle_drop(target)
        drag_drop.handle_drag_end()
        st.rerun()


def render_treatment_panel():
    st.subheader("🩺 Patient information")
    ref = _cell_picker("Patient", "treat")
    col1, col2 = st.columns(2)
    with col1:
        start_date = st.date_input("Treatment start", key="treat_start")
        extension = st.number_input("Extension days", min_value=0, max_value=365, value=0, key="treat_ext")
    with col2:
        info = st.text_input("Additional info", key="treat_info")
    if st.button("Save patient information"):
        st.session_state.actions.update_treatment(
            ref, start_date=start_date.isoformat(), extension_days=int(extension), additional_info=info,
        )
        st.rerun()


def main():
    """Main application function."""
    st.set_page_config(page_title="Clinic Schedule", layout="wide")
    try:
        initialize_session_state()
    except Exception as e:
        st.error(f"Failed to initialize application: {e}")
        st.error(f"Error details: {traceback.format_exc()}")
        st.stop()

    store = st.session_state.store
    store.poll_remote_changes()

    header, status, undo = st.columns([4, 2, 1])
    with header:
        st.title("📅 Schedule")
    with status:
        render_save_status(store)
    with undo:
        if st.button("↩️ Undo", disabled=not store.can_undo()):
            store.undo()
            st.rerun()

    render_schedule_grid(store.get_current_table_state(), st.session_state.employees,
                         st.session_state.time_slots, store.config)

    tab1, tab2, tab3, tab4 = st.tabs(["Edit", "Move", "Patient", "Backup"])
    with tab1:
        render_edit_panel()
    with tab2:
        render_move_panel()
    with tab3:
        render_treatment_panel()
    with tab4:
        render_backup_panel(store, st.session_state.backup_store)

    with st.sidebar:
        author = st.text_input("Your name", value=store.author_id or "",
                               help="Recorded in the history of cells you edit")
        store.set_current_user_id(author.strip() or None)

        st.markdown("**Activity**")
        for message in reversed(activity_log.get_messages()[-10:]):
            st.caption(message)


if __name__ == "__main__":
    main()
