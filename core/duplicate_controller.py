# =============================================================================
# Text Edit Commit with Duplicate Detection
# =============================================================================

import logging
import re
from datetime import date
from typing import Callable, Optional

from models.cell_models import BreakCell, Cell, SplitCell, WholeCell, empty_cell
from models.constants import MAX_CELL_TEXT_LENGTH
from models.data_models import CellRef, DuplicateChoice, DuplicateMatch
from core.activity_log import ActivityLog, activity_log
from core.cell_operations import apply_text_edit, clear_part, take_assignment
from core.exceptions import CellActionError
from core.schedule_store import CellUpdate, ScheduleStore
from core.utils import capitalize_first_letter

logger = logging.getLogger(__name__)

NUMERIC_ONLY = re.compile(r"^\d+$")

DuplicateChooser = Callable[[DuplicateMatch], DuplicateChoice]
NumericConfirmer = Callable[[str], bool]


def find_duplicate_entry(store: ScheduleStore, text: str, current: CellRef) -> Optional[DuplicateMatch]:
    """
    First cell (other than ``current``) whose whole content or either split
    part equals ``text`` case-insensitively.
    """
    if not text:
        return None
    needle = text.lower()

    for time, row in store.get_current_table_state().items():
        for employee_id, cell in row.items():
            if time == current.time and employee_id == current.employee_id:
                continue
            if isinstance(cell, BreakCell):
                continue
            if isinstance(cell, SplitCell):
                for number in (1, 2):
                    if cell.part(number).content.lower() == needle:
                        return DuplicateMatch(ref=CellRef(time=time, employee_id=employee_id, part=number),
                                              cell=cell)
            elif cell.assignment.content.lower() == needle:
                return DuplicateMatch(ref=CellRef(time=time, employee_id=employee_id), cell=cell)
    return None


class DuplicateMoveController:
    """
    Commits text typed into a cell. When the text already exists elsewhere the
    user decides: move the existing entry here, add an independent entry, or
    cancel the edit.
    """

    def __init__(self, store: ScheduleStore, log: ActivityLog = activity_log,
                 choose: Optional[DuplicateChooser] = None,
                 confirm_numeric: Optional[NumericConfirmer] = None):
        self.store = store
        self.log = log
        self.choose = choose
        self.confirm_numeric = confirm_numeric
        self.today: Optional[date] = None

    def _check_length(self, text: str):
        if len(text) > MAX_CELL_TEXT_LENGTH:
            raise CellActionError(f"The text is too long (max {MAX_CELL_TEXT_LENGTH} characters).")

    def commit_text_edit(self, ref: CellRef, raw_text: str,
                         choose: Optional[DuplicateChooser] = None,
                         confirm_numeric: Optional[NumericConfirmer] = None) -> bool:
        """
        Write ``raw_text`` into the cell (or part) at ``ref``.
        Returns True when the grid changed; a rejected or cancelled edit
        leaves the grid untouched and returns False.
        """
        choose = choose or self.choose
        confirm_numeric = confirm_numeric or self.confirm_numeric
        text = capitalize_first_letter((raw_text or "").strip())

        try:
            self._check_length(text)
        except CellActionError as e:
            self.log.warn(str(e))
            return False

        if NUMERIC_ONLY.match(text) and confirm_numeric is not None and not confirm_numeric(text):
            logger.debug(f"Numeric entry {text!r} not confirmed")
            return False

        duplicate = find_duplicate_entry(self.store, text, ref)
        choice = DuplicateChoice.ADD_ANYWAY
        if duplicate is not None and choose is not None:
            choice = choose(duplicate)

        try:
            if choice == DuplicateChoice.CANCEL:
                logger.debug(f"Edit of [{ref.time}][{ref.employee_id}] cancelled")
                return False
            if choice == DuplicateChoice.MOVE and duplicate is not None:
                self._move_duplicate(duplicate, ref, text)
                return True
            self._write_text(ref, text)
            return True
        except CellActionError as e:
            self.log.warn(str(e))
            return False

    def _write_text(self, ref: CellRef, text: str):
        today = self.today

        def edit(cell: Cell) -> Cell:
            return apply_text_edit(cell, text, ref.part, today=today)

        self.store.update_cell_state(ref.time, ref.employee_id, edit)

    def _move_duplicate(self, duplicate: DuplicateMatch, ref: CellRef, text: str):
        """Bring the duplicate's entry (flags and treatment window) into the edited cell."""
        current = self.store.get_cell_state(ref.time, ref.employee_id) or empty_cell()
        if isinstance(current, BreakCell):
            raise CellActionError("Breaks cannot be edited. Remove the break first.")

        moved = take_assignment(duplicate.cell, duplicate.source_part)
        moved = moved.model_copy(update={"content": text})
        # a split target without a chosen part edits part 1, as a plain text edit does
        target_part = ref.part or 1

        def place(cell: Cell) -> Cell:
            if isinstance(cell, SplitCell):
                return cell.with_part(target_part, moved.model_copy(deep=True))
            return WholeCell(assignment=moved.model_copy(deep=True), history=list(cell.history))

        source_part = duplicate.source_part

        def clear_source(cell: Cell) -> Cell:
            return clear_part(cell, source_part)

        self.store.update_multiple_cells([
            CellUpdate(ref.time, ref.employee_id, place),
            CellUpdate(duplicate.ref.time, duplicate.ref.employee_id, clear_source),
        ])
        self.log.log(f"Moved '{text}' from {duplicate.ref.time} to {ref.time}")
