"""
Data Status Display Component for the Clinic Schedule
Shows the save status and provides backup management
"""
import streamlit as st

from models.data_models import SaveStatus
from core.data_manager import (
    ScheduleDocumentStore, get_last_backup_date, perform_backup, restore_backup,
)
from core.exceptions import PersistenceError
from core.schedule_store import ScheduleStore

STATUS_LABELS = {
    SaveStatus.IDLE: "⚪ Not saved yet",
    SaveStatus.SAVING: "🟡 Saving...",
    SaveStatus.SAVED: "🟢 All changes saved",
    SaveStatus.ERROR: "🔴 Save error - changes are kept locally",
}


def render_save_status(store: ScheduleStore):
    """Show the status of the last persist."""
    label = STATUS_LABELS.get(store.save_status, str(store.save_status))
    if store.save_status == SaveStatus.ERROR:
        st.error(label)
    else:
        st.caption(label)


def render_backup_panel(store: ScheduleStore, backup_store: ScheduleDocumentStore):
    """Render backup creation and restore controls."""
    st.subheader("💾 Backup")

    last_backup = get_last_backup_date(backup_store)
    if last_backup:
        st.info(f"Last backup: {last_backup.strftime('%Y-%m-%d %H:%M')}")
    else:
        st.warning("No backup yet")

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Create backup"):
            if perform_backup(store.document_store, backup_store):
                st.success("Backup created.")
            else:
                st.error("Backup failed.")
    with col2:
        if st.button("Restore backup"):
            try:
                document = restore_backup(backup_store)
            except PersistenceError as e:
                st.error(f"Restore failed: {e}")
            else:
                store.replace_schedule(document.schedule_cells)
                st.success("Backup restored. Use Undo to revert.")
                st.rerun()
