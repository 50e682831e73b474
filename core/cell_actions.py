# =============================================================================
# Cell Actions (context-menu commands)
# =============================================================================

import logging
from datetime import date
from typing import Callable, List, Optional

from models.cell_models import Cell, HistoryEntry
from models.constants import FLAG_KEYS
from models.data_models import CellRef, InteractionState
from core import cell_operations as ops
from core.activity_log import ActivityLog, activity_log
from core.exceptions import CellActionError
from core.schedule_store import ScheduleStore

logger = logging.getLogger(__name__)


class CellActions:
    """
    Runs the single-cell operations through the store. A rejected action is
    reported to the activity log and leaves the grid untouched.
    """

    def __init__(self, store: ScheduleStore, interaction: Optional[InteractionState] = None,
                 log: ActivityLog = activity_log, today: Optional[date] = None):
        self.store = store
        self.interaction = interaction or InteractionState()
        self.log = log
        self.today = today

    def _run(self, ref: CellRef, mutator: Callable[[Cell], Cell]) -> bool:
        try:
            self.store.update_cell_state(ref.time, ref.employee_id, mutator)
        except CellActionError as e:
            self.log.warn(str(e))
            return False
        return True

    def split_cell(self, ref: CellRef) -> bool:
        return self._run(ref, ops.split_cell)

    def merge_split_cell(self, ref: CellRef) -> bool:
        return self._run(ref, ops.merge_split_cell)

    def clear_cell(self, ref: CellRef) -> bool:
        """Clear the whole cell, or only ``ref.part`` of a split cell."""
        part = ref.part
        return self._run(ref, lambda cell: ops.clear_part(cell, part))

    def toggle_special_style(self, ref: CellRef, flag: str) -> bool:
        if flag not in FLAG_KEYS:
            raise ValueError(f"Unknown style flag: {flag}")
        part = ref.part
        return self._run(ref, lambda cell: ops.toggle_flag(cell, flag, part))

    def clear_formatting(self, ref: CellRef) -> bool:
        return self._run(ref, ops.clear_formatting)

    def set_break(self, ref: CellRef) -> bool:
        return self._run(ref, ops.set_break)

    def remove_break(self, ref: CellRef) -> bool:
        return self._run(ref, ops.remove_break)

    def edit_text(self, ref: CellRef, text: str) -> bool:
        """Write text without duplicate detection."""
        part, today = ref.part, self.today
        return self._run(ref, lambda cell: ops.apply_text_edit(cell, text, part, today=today))

    def update_treatment(self, ref: CellRef, start_date: Optional[str] = None,
                         extension_days: Optional[int] = None,
                         additional_info: Optional[str] = None,
                         content: Optional[str] = None) -> bool:
        part = ref.part
        return self._run(ref, lambda cell: ops.update_treatment(
            cell, part, start_date=start_date, extension_days=extension_days,
            additional_info=additional_info, content=content,
        ))

    def get_history(self, ref: CellRef) -> List[HistoryEntry]:
        cell = self.store.get_cell_state(ref.time, ref.employee_id)
        return list(cell.history) if cell is not None else []

    def restore_from_history(self, ref: CellRef, index: int) -> bool:
        """Restore entry ``index`` of the history as currently shown for the cell."""
        history = self.get_history(ref)
        if index < 0 or index >= len(history):
            self.log.warn(f"No history entry at position {index}.")
            return False
        # the store prepends the current content before the mutator runs
        value, today = history[index].old_value, self.today
        return self._run(ref, lambda cell: ops.restore_value(cell, value, today=today))

    def copy_cell(self, ref: CellRef) -> bool:
        cell = self.store.get_cell_state(ref.time, ref.employee_id)
        if cell is None:
            self.log.warn("Nothing to copy.")
            return False
        self.interaction.copied_cell = cell
        self.log.log(f"Copied cell [{ref.time}][{ref.employee_id}]")
        return True

    def paste_cell(self, ref: CellRef) -> bool:
        copied = self.interaction.copied_cell
        if copied is None:
            self.log.warn("Nothing to paste.")
            return False
        return self._run(ref, lambda cell: ops.paste_cell(cell, copied))
