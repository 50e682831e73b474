# =============================================================================
# Grid View Components for the Clinic Schedule
# =============================================================================

import streamlit as st
import pandas as pd
from datetime import date
from typing import Dict, List, Optional

from models.cell_models import Grid
from models.constants import (
    BREAK_CLASS, EVERY_OTHER_DAY_CLASS, MASSAGE_CLASS, PNF_CLASS, TREATMENT_END_CLASS,
)
from models.data_models import ScheduleConfig
from core.display import calculate_patient_count, display_classes, get_cell_display_data

# CSS applied per display tag when the grid is rendered
CLASS_STYLES = {
    BREAK_CLASS: "background-color: #9e9e9e; color: #ffffff; font-style: italic",
    MASSAGE_CLASS: "color: #1565c0; font-weight: bold",
    PNF_CLASS: "color: #2e7d32; font-weight: bold",
    EVERY_OTHER_DAY_CLASS: "text-decoration: underline",
    TREATMENT_END_CLASS: "background-color: #ffcdd2",
}


def build_display_frame(grid: Grid, employees: Dict[str, str], time_slots: List[str],
                        today: Optional[date] = None,
                        config: Optional[ScheduleConfig] = None) -> pd.DataFrame:
    """
    Project the grid into a DataFrame: one row per time slot, one column per
    employee (labelled with the employee's name). Split cells read "a / b".
    """
    config = config or ScheduleConfig()
    data = {}
    for employee_id, name in employees.items():
        column = []
        for time in time_slots:
            cell = grid.get(time, {}).get(str(employee_id))
            display = get_cell_display_data(cell, today, config)
            if display.is_split:
                column.append(" / ".join(part.text for part in display.parts))
            else:
                column.append(display.text)
        data[name] = column

    df = pd.DataFrame(data, index=pd.Index(time_slots, name="Time"))
    return df


def build_style_frame(grid: Grid, employees: Dict[str, str], time_slots: List[str],
                      today: Optional[date] = None) -> pd.DataFrame:
    """CSS strings matching the layout of build_display_frame."""
    data = {}
    for employee_id, name in employees.items():
        key = str(employee_id)
        column = []
        for time in time_slots:
            cell = grid.get(time, {}).get(key)
            classes = display_classes({key: cell}, today)[key] if cell is not None else []
            column.append("; ".join(CLASS_STYLES[c] for c in classes if c in CLASS_STYLES))
        data[name] = column
    return pd.DataFrame(data, index=pd.Index(time_slots, name="Time"))


def export_csv(df: pd.DataFrame) -> str:
    """CSV export of a display frame (time slots as the first column)."""
    return df.to_csv(index=True)


def render_schedule_grid(grid: Grid, employees: Dict[str, str], time_slots: List[str],
                         config: Optional[ScheduleConfig] = None) -> pd.DataFrame:
    """Render the schedule grid with per-cell styling and the patient count."""
    if not employees:
        st.info("No employees configured. Add employees in the settings first.")
        return pd.DataFrame()

    df = build_display_frame(grid, employees, time_slots, config=config)
    styles = build_style_frame(grid, employees, time_slots)

    st.markdown(f"**Patients today:** {calculate_patient_count(grid)}")
    height_px = min(1400, 40 + len(time_slots) * 35)
    st.dataframe(df.style.apply(lambda _: styles, axis=None), height=height_px, use_container_width=True)
    st.download_button(
        label="Download schedule.csv",
        data=export_csv(df),
        file_name="schedule.csv",
        mime="text/csv",
    )
    return df
