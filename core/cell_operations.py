# =============================================================================
# Cell Operations
# =============================================================================
"""
Pure transformations of a single cell. Every function takes a cell and
returns the new cell; none of them mutate their input. The store runs them
through its update primitives so undo, history and persistence apply.
"""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from models.cell_models import (
    Assignment, BreakCell, Cell, HistoryEntry, SplitCell, TreatmentWindow,
    WholeCell, empty_cell, is_cell_empty,
)
from models.constants import FLAG_KEYS, MAX_HISTORY_ENTRIES
from core.exceptions import CellActionError
from core.utils import calculate_end_date, today_iso

logger = logging.getLogger(__name__)


def new_treatment_window(today: Optional[date] = None) -> TreatmentWindow:
    """Fresh course starting today with no extension."""
    start = today_iso(today)
    return TreatmentWindow(start_date=start, extension_days=0,
                           end_date=calculate_end_date(start, 0))


def take_assignment(cell: Cell, part: Optional[int] = None) -> Optional[Assignment]:
    """Copy of the assignment held by a whole cell or by one part of a split cell."""
    if isinstance(cell, BreakCell):
        return None
    if isinstance(cell, SplitCell):
        if part is None:
            return None
        return cell.part(part).model_copy(deep=True)
    return cell.assignment.model_copy(deep=True)


# -----------------------------------------------------------------------------
# Invariants
# -----------------------------------------------------------------------------

def normalize_cell(cell: Cell) -> Cell:
    """Collapse a split cell whose both parts are empty back to an empty whole cell."""
    if isinstance(cell, SplitCell) and is_cell_empty(cell):
        return empty_cell(cell.history)
    return cell


def _seed_if_gained(before: Optional[Assignment], after: Assignment,
                    today: Optional[date]) -> Assignment:
    was_empty = before is None or before.is_empty
    if was_empty and not after.is_empty and (after.treatment is None or not after.treatment.start_date):
        return after.model_copy(update={"treatment": new_treatment_window(today)})
    return after


def seed_treatment_windows(before: Optional[Cell], after: Cell,
                           today: Optional[date] = None) -> Cell:
    """
    Give every assignment that went from empty to occupied a treatment window
    when it has none.
    """
    if isinstance(after, BreakCell):
        return after

    if isinstance(after, SplitCell):
        updated = after
        for number in (1, 2):
            if isinstance(before, SplitCell):
                previous = before.part(number)
            elif isinstance(before, WholeCell) and number == 1:
                previous = before.assignment
            else:
                previous = None
            seeded = _seed_if_gained(previous, after.part(number), today)
            if seeded is not after.part(number):
                updated = updated.with_part(number, seeded)
        return updated

    previous = before.assignment if isinstance(before, WholeCell) else None
    seeded = _seed_if_gained(previous, after.assignment, today)
    if seeded is after.assignment:
        return after
    return after.model_copy(update={"assignment": seeded})


def record_history(cell: Cell, old_value: Optional[str], author_id: Optional[str] = None,
                   max_entries: int = MAX_HISTORY_ENTRIES,
                   now: Optional[datetime] = None) -> Cell:
    """
    Prepend ``old_value`` to the cell's history (newest first).
    Blank values and a repeat of the newest entry are skipped.
    """
    if not old_value or not old_value.strip():
        return cell
    if cell.history and cell.history[0].old_value == old_value:
        return cell

    entry = HistoryEntry(
        old_value=old_value,
        timestamp=(now or datetime.now(timezone.utc)).isoformat(),
        author_id=author_id,
    )
    history: List[HistoryEntry] = [entry] + list(cell.history)
    return cell.model_copy(update={"history": history[:max_entries]})


# -----------------------------------------------------------------------------
# Shape changes
# -----------------------------------------------------------------------------

def split_cell(cell: Cell) -> Cell:
    """Whole -> split: the current assignment becomes part 1, part 2 starts empty."""
    if isinstance(cell, BreakCell):
        raise CellActionError("A break cannot be split.")
    if isinstance(cell, SplitCell):
        return cell
    return SplitCell(part1=cell.assignment.model_copy(deep=True), part2=Assignment(),
                     history=list(cell.history))


def merge_split_cell(cell: Cell) -> Cell:
    """Split -> whole, promoting the occupied part. One part must be empty."""
    if not isinstance(cell, SplitCell):
        raise CellActionError("This cell is not split.")
    if not cell.part1.is_empty and not cell.part2.is_empty:
        raise CellActionError("One part of the cell must be empty before merging.")
    kept = cell.part2 if cell.part1.is_empty else cell.part1
    return WholeCell(assignment=kept.model_copy(deep=True), history=list(cell.history))


def clear_cell(cell: Cell) -> Cell:
    """Reset to an empty whole cell; history is kept."""
    return empty_cell(cell.history)


def clear_part(cell: Cell, part: Optional[int] = None) -> Cell:
    """
    Empty one part of a split cell (or the whole cell when no part is given).
    A split cell left with one occupant is merged into a whole cell holding
    that occupant; with no occupant it becomes an empty whole cell.
    """
    if not isinstance(cell, SplitCell) or part is None:
        return clear_cell(cell)

    other = cell.part(2 if part == 1 else 1)
    if other.is_empty:
        return empty_cell(cell.history)
    return WholeCell(assignment=other.model_copy(deep=True), history=list(cell.history))


def place_assignment(cell: Cell, assignment: Assignment, part: Optional[int] = None) -> Cell:
    """Put an assignment into a split part, or make it the whole cell's content."""
    if isinstance(cell, SplitCell) and part is not None:
        return cell.with_part(part, assignment.model_copy(deep=True))
    return WholeCell(assignment=assignment.model_copy(deep=True), history=list(cell.history))


def set_break(cell: Cell) -> Cell:
    if isinstance(cell, BreakCell):
        return cell
    if not is_cell_empty(cell):
        raise CellActionError("Cannot add a break to an occupied cell. Clear the cell first.")
    return BreakCell(history=list(cell.history))


def remove_break(cell: Cell) -> Cell:
    if not isinstance(cell, BreakCell):
        return cell
    return empty_cell(cell.history)


# -----------------------------------------------------------------------------
# Formatting
# -----------------------------------------------------------------------------

def toggle_flag(cell: Cell, flag: str, part: Optional[int] = None) -> Cell:
    """
    Toggle a special style (is_massage, is_pnf, is_every_other_day).
    On a split cell the given part is toggled, or both parts when none is given.
    """
    if flag not in FLAG_KEYS:
        raise ValueError(f"Unknown style flag: {flag}")
    if isinstance(cell, BreakCell):
        raise CellActionError("Breaks cannot be styled.")

    if isinstance(cell, SplitCell):
        updated = cell
        for number in ((part,) if part else (1, 2)):
            current = updated.part(number)
            updated = updated.with_part(
                number, current.model_copy(update={flag: not getattr(current, flag)}))
        return updated

    assignment = cell.assignment
    return cell.model_copy(update={
        "assignment": assignment.model_copy(update={flag: not getattr(assignment, flag)})
    })


def clear_formatting(cell: Cell) -> Cell:
    reset = {flag: False for flag in FLAG_KEYS}
    if isinstance(cell, BreakCell):
        return cell
    if isinstance(cell, SplitCell):
        return cell.model_copy(update={
            "part1": cell.part1.model_copy(update=reset),
            "part2": cell.part2.model_copy(update=reset),
        })
    return cell.model_copy(update={"assignment": cell.assignment.model_copy(update=reset)})


# -----------------------------------------------------------------------------
# Text and treatment edits
# -----------------------------------------------------------------------------

def _refresh_end_date(assignment: Assignment) -> Assignment:
    treatment = assignment.treatment
    if treatment is None or not treatment.start_date:
        return assignment
    end_date = calculate_end_date(treatment.start_date, treatment.extension_days or 0)
    return assignment.model_copy(update={"treatment": treatment.model_copy(update={"end_date": end_date})})


def _edit_whole(assignment: Assignment, text: str, today: Optional[date]) -> Assignment:
    changed = assignment.content.strip().lower() != text.strip().lower() and text.strip() != ""
    if not changed:
        return assignment.model_copy(update={"content": text})

    treatment = assignment.treatment or TreatmentWindow()
    start = treatment.start_date or today_iso(today)
    extension = treatment.extension_days or 0
    treatment = treatment.model_copy(update={
        "start_date": start,
        "extension_days": extension,
        "end_date": calculate_end_date(start, extension),
    })
    return assignment.model_copy(update={"content": text, "treatment": treatment})


def apply_text_edit(cell: Cell, text: str, part: Optional[int] = None,
                    today: Optional[date] = None) -> Cell:
    """
    Write user-entered text into a cell.
    "a/b" makes the cell split with the two halves; on a split cell the given
    part (default 1) is edited; on a whole cell a changed, non-empty text
    refreshes the treatment window.
    """
    if isinstance(cell, BreakCell):
        raise CellActionError("Breaks cannot be edited. Remove the break first.")

    if "/" in text:
        first, second = [piece.strip() for piece in (text.split("/") + [""])[:2]]
        split = split_cell(cell)
        split = split.with_part(1, split.part1.model_copy(update={"content": first}))
        split = split.with_part(2, split.part2.model_copy(update={"content": second}))
        return split

    if isinstance(cell, SplitCell):
        number = part or 1
        edited = cell.part(number).model_copy(update={"content": text})
        return cell.with_part(number, _refresh_end_date(edited))

    return cell.model_copy(update={"assignment": _edit_whole(cell.assignment, text, today)})


def update_treatment(cell: Cell, part: Optional[int] = None, *, start_date: Optional[str] = None,
                     extension_days: Optional[int] = None, additional_info: Optional[str] = None,
                     content: Optional[str] = None) -> Cell:
    """Patient-info edit: replace the treatment window fields and recompute the end date."""
    if isinstance(cell, BreakCell):
        raise CellActionError("Breaks have no patient information.")
    if isinstance(cell, SplitCell) and part is None:
        raise CellActionError("Choose which part of the split cell to edit.")

    assignment = take_assignment(cell, part)
    treatment = assignment.treatment or TreatmentWindow()
    updates = {"extension_days": extension_days if extension_days is not None else (treatment.extension_days or 0)}
    if start_date is not None:
        updates["start_date"] = start_date
    if additional_info is not None:
        updates["additional_info"] = additional_info or None
    treatment = treatment.model_copy(update=updates)
    treatment = treatment.model_copy(update={
        "end_date": calculate_end_date(treatment.start_date, treatment.extension_days) or None,
    })

    assignment = assignment.model_copy(update={"treatment": treatment})
    if content is not None:
        assignment = assignment.model_copy(update={"content": content})

    if isinstance(cell, SplitCell):
        return cell.with_part(part, assignment)
    return cell.model_copy(update={"assignment": assignment})


def restore_value(cell: Cell, value: str, today: Optional[date] = None) -> Cell:
    """Write an old value (plain or "a/b") back as the cell's content."""
    if isinstance(cell, BreakCell):
        cell = empty_cell(cell.history)
    if isinstance(cell, SplitCell) and "/" not in value:
        cell = WholeCell(assignment=cell.part1.model_copy(deep=True), history=list(cell.history))
    return apply_text_edit(cell, value, today=today)


def restore_history_value(cell: Cell, index: int, today: Optional[date] = None) -> Cell:
    """Write a history entry's old value back as the cell's content."""
    if index < 0 or index >= len(cell.history):
        raise CellActionError(f"No history entry at position {index}.")
    return restore_value(cell, cell.history[index].old_value, today)


def paste_cell(target: Cell, copied: Cell) -> Cell:
    """Replace the target's content with a copy of another cell, keeping the target's history."""
    pasted = copied.model_copy(deep=True)
    return pasted.model_copy(update={"history": list(target.history)})
