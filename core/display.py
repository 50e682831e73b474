# =============================================================================
# Cell Display Projection
# =============================================================================

from datetime import date
from typing import Dict, List, Optional

from models.cell_models import Assignment, BreakCell, Cell, Grid, SplitCell
from models.constants import (
    BREAK_CLASS, EVERY_OTHER_DAY_CLASS, MASSAGE_CLASS, PNF_CLASS,
    SPLIT_CLASS, TREATMENT_END_CLASS,
)
from models.data_models import CellDisplayData, PartDisplayData, ScheduleConfig
from core.utils import calculate_end_date, capitalize_first_letter, today_iso

DEFAULT_CONFIG = ScheduleConfig()


def _style_classes(assignment: Assignment) -> List[str]:
    classes = []
    if assignment.is_massage:
        classes.append(MASSAGE_CLASS)
    if assignment.is_pnf:
        classes.append(PNF_CLASS)
    if assignment.is_every_other_day:
        classes.append(EVERY_OTHER_DAY_CLASS)
    return classes


def treatment_end_date(assignment: Assignment) -> Optional[str]:
    """Stored end date, or one computed from the start date when the assignment has content."""
    treatment = assignment.treatment
    if treatment is None:
        return None
    if treatment.end_date and treatment.end_date.strip():
        return treatment.end_date.strip()
    if treatment.start_date and assignment.content:
        return calculate_end_date(treatment.start_date, treatment.extension_days or 0) or None
    return None


def has_treatment_ended(assignment: Assignment, today: Optional[date] = None) -> bool:
    """True when the course has reached its end date and the assignment is occupied."""
    if assignment.is_empty:
        return False
    end_date = treatment_end_date(assignment)
    # ISO dates compare correctly as strings
    return bool(end_date) and end_date <= today_iso(today)


def _part_display(assignment: Assignment, today: Optional[date]) -> PartDisplayData:
    classes = _style_classes(assignment)
    if has_treatment_ended(assignment, today):
        classes.append(TREATMENT_END_CLASS)
    return PartDisplayData(
        text=capitalize_first_letter(assignment.content),
        classes=classes,
        is_massage=assignment.is_massage,
        is_pnf=assignment.is_pnf,
        is_every_other_day=assignment.is_every_other_day,
    )


def get_cell_display_data(cell: Optional[Cell], today: Optional[date] = None,
                          config: ScheduleConfig = DEFAULT_CONFIG) -> CellDisplayData:
    """
    Map a stored cell to its renderable shape.
    Pure: the result depends only on the cell and the current (or injected) date.
    """
    result = CellDisplayData()
    if cell is None:
        return result

    if isinstance(cell, BreakCell):
        result.text = config.break_text
        result.classes.append(BREAK_CLASS)
        result.is_break = True
        return result

    if isinstance(cell, SplitCell):
        result.is_split = True
        result.classes.append(SPLIT_CLASS)
        result.styles["backgroundColor"] = config.content_cell_color
        result.parts = [_part_display(cell.part1, today), _part_display(cell.part2, today)]
        return result

    assignment = cell.assignment
    result.text = capitalize_first_letter(assignment.content)
    result.classes.extend(_style_classes(assignment))
    if result.text.strip():
        result.styles["backgroundColor"] = config.content_cell_color
    else:
        result.styles["backgroundColor"] = config.default_cell_color
    if has_treatment_ended(assignment, today):
        result.classes.append(TREATMENT_END_CLASS)
    return result


def calculate_patient_count(grid: Optional[Grid]) -> int:
    """Count occupied whole cells and occupied split parts; breaks are ignored."""
    count = 0
    for row in (grid or {}).values():
        for cell in row.values():
            if isinstance(cell, BreakCell):
                continue
            if isinstance(cell, SplitCell):
                count += int(not cell.part1.is_empty) + int(not cell.part2.is_empty)
            elif not cell.assignment.is_empty:
                count += 1
    return count


def display_text(cell: Optional[Cell], config: ScheduleConfig = DEFAULT_CONFIG) -> str:
    """Plain text of a cell as shown in the grid ("part1 / part2" for split cells)."""
    data = get_cell_display_data(cell, config=config)
    if data.is_split:
        return " / ".join(part.text for part in data.parts)
    return data.text


def display_classes(cells: Dict[str, Cell], today: Optional[date] = None) -> Dict[str, List[str]]:
    """Style tags of every cell in one grid row, keyed by employee id."""
    out = {}
    for employee_id, cell in cells.items():
        data = get_cell_display_data(cell, today)
        classes = list(data.classes)
        for part in data.parts:
            classes.extend(c for c in part.classes if c not in classes)
        out[employee_id] = classes
    return out
