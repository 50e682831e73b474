# =============================================================================
# Schedule Store - owns the grid, undo stack and cell history
# =============================================================================
"""
The store is the only writer of the grid. Callers submit
``(time, employee_id, mutator)`` commands; the store snapshots the grid for
undo, records the cell's history, runs the mutator, re-sanitizes the result
and schedules a persist of the whole ``scheduleCells`` mapping.

Persists are serialized: while one write is in flight a new request only
raises the "queued" flag, and exactly one follow-up write carrying the
latest grid is issued when the in-flight write completes.
"""

import logging
import threading
from concurrent.futures import Executor, Future
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, NamedTuple, Optional

from models.cell_models import (
    Cell, Grid, cell_from_document, cell_to_document, copy_grid, effective_content,
    empty_cell, grid_from_document, grid_to_document,
)
from models.data_models import SaveStatus, ScheduleConfig, ScheduleDocument
from core.cell_operations import normalize_cell, record_history, seed_treatment_windows
from core.data_manager import ScheduleDocumentStore
from core.exceptions import CellValidationError, PersistenceError
from core.undo_manager import UndoManager
from core.validation import validate_and_sanitize, validate_schedule_state

logger = logging.getLogger(__name__)

Mutator = Callable[[Cell], Cell]


class CellUpdate(NamedTuple):
    """One command of a batch update."""
    time: str
    employee_id: str
    mutator: Mutator


class ScheduleStore:
    """Authoritative in-memory schedule grid with undo, history and serialized persistence."""

    def __init__(self, document_store: ScheduleDocumentStore,
                 on_change: Optional[Callable[[], None]] = None,
                 on_status: Optional[Callable[[SaveStatus], None]] = None,
                 executor: Optional[Executor] = None,
                 config: Optional[ScheduleConfig] = None,
                 author_id: Optional[str] = None,
                 on_undo_update: Optional[Callable[[UndoManager], None]] = None):
        self.document_store = document_store
        self.on_change = on_change
        self.on_status = on_status
        self.executor = executor
        self.config = config or ScheduleConfig()
        self.author_id = author_id
        self.today: Optional[date] = None

        self.undo_manager = UndoManager(max_states=self.config.undo_max_states,
                                        on_update=on_undo_update)
        self.save_status = SaveStatus.IDLE
        self.last_save_error: Optional[Exception] = None

        self._grid: Grid = {}
        self._lock = threading.RLock()
        self._is_saving = False
        self._save_queued = False
        self._last_synced_at: Optional[datetime] = None

        self.undo_manager.initialize(self._grid)

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def _notify_change(self):
        if self.on_change is not None:
            self.on_change()

    def _set_status(self, status: SaveStatus):
        self.save_status = status
        if self.on_status is not None:
            self.on_status(status)

    def set_current_user_id(self, author_id: Optional[str]):
        """Author recorded in the history entries of later edits."""
        self.author_id = author_id

    # -------------------------------------------------------------------------
    # Read accessors
    # -------------------------------------------------------------------------

    def get_cell_state(self, time: str, employee_id) -> Optional[Cell]:
        """Copy of the stored cell, or None when the coordinate was never written."""
        with self._lock:
            cell = self._grid.get(time, {}).get(str(employee_id))
            return cell.model_copy(deep=True) if cell is not None else None

    def get_current_table_state(self) -> Grid:
        """Deep copy of the whole grid."""
        with self._lock:
            return copy_grid(self._grid)

    def get_app_state(self) -> ScheduleDocument:
        """Persisted shape of the grid plus the stamp of the last sync."""
        with self._lock:
            return ScheduleDocument(schedule_cells=grid_to_document(self._grid),
                                    updated_at=self._last_synced_at)

    @property
    def is_saving(self) -> bool:
        return self._is_saving

    @property
    def save_queued(self) -> bool:
        return self._save_queued

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def _build_cell(self, time: str, employee_id: str, current: Optional[Cell], mutator: Mutator) -> Cell:
        before = current if current is not None else empty_cell()
        working = record_history(
            before.model_copy(deep=True), effective_content(before), self.author_id,
            max_entries=self.config.max_history_entries,
        )
        after = mutator(working)
        after = normalize_cell(after)
        after = seed_treatment_windows(before, after, self.today)

        document = validate_and_sanitize(cell_to_document(after), (time, employee_id))
        return cell_from_document(document)

    def _snapshot_for_undo(self):
        # The stack holds pre-mutation grids; an unchanged grid is not pushed twice.
        if self.undo_manager.peek() != self._grid:
            self.undo_manager.push_state(self._grid)

    def update_cell_state(self, time: str, employee_id, mutator: Mutator) -> Cell:
        """Apply one mutator to one cell; returns the committed cell."""
        return self.update_multiple_cells([CellUpdate(time, str(employee_id), mutator)])[0]

    def update_multiple_cells(self, updates: List[CellUpdate]) -> List[Cell]:
        """
        Apply a batch of mutators as one transaction: one undo snapshot, one
        persist. Mutators run against a staging copy, so an exception from any
        of them leaves the grid untouched.
        """
        if not updates:
            return []

        with self._lock:
            staged: Dict[str, Dict[str, Cell]] = {}
            committed = []
            for time, employee_id, mutator in updates:
                employee_id = str(employee_id)
                current = staged.get(time, {}).get(employee_id)
                if current is None:
                    current = self._grid.get(time, {}).get(employee_id)
                cell = self._build_cell(time, employee_id, current, mutator)
                staged.setdefault(time, {})[employee_id] = cell
                committed.append(cell)

            self._snapshot_for_undo()
            for time, row in staged.items():
                self._grid.setdefault(time, {}).update(row)

        logger.debug(f"Committed {len(committed)} cell update(s)")
        self._notify_change()
        self.save_schedule()
        return [cell.model_copy(deep=True) for cell in committed]

    def _grid_from_document(self, schedule_cells) -> Grid:
        try:
            return grid_from_document(schedule_cells, strict=True)
        except CellValidationError as e:
            # contradictory cells are resolved break over split over content
            logger.warning(f"Schedule document has malformed cells, loading leniently: {e}")
            return grid_from_document(schedule_cells)

    def replace_schedule(self, schedule_cells) -> Grid:
        """Swap in a whole persisted grid (e.g. a restored backup) as one undoable write."""
        grid = self._grid_from_document(schedule_cells)
        with self._lock:
            self._snapshot_for_undo()
            self._grid = grid
        logger.info("Schedule replaced")
        self._notify_change()
        self.save_schedule()
        return self.get_current_table_state()

    def undo(self) -> bool:
        """Restore the previous snapshot and persist it. False when there is nothing to undo."""
        with self._lock:
            self._snapshot_for_undo()
            previous = self.undo_manager.undo()
            if previous is None:
                logger.info("Nothing to undo")
                return False
            self._grid = previous

        self._notify_change()
        self.save_schedule()
        return True

    def can_undo(self) -> bool:
        with self._lock:
            return self.undo_manager.can_undo() or self.undo_manager.peek() != self._grid

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save_schedule(self):
        """Persist the grid, or queue one follow-up write when a persist is in flight."""
        with self._lock:
            if self._is_saving:
                self._save_queued = True
                return
            self._is_saving = True
            schedule_cells = grid_to_document(self._grid)

        if self.config.debug_validation:
            report = validate_schedule_state(schedule_cells)
            if not report.valid:
                logger.warning(f"Schedule failed validation before save: {report.errors}")

        self._set_status(SaveStatus.SAVING)

        if self.executor is None:
            try:
                stamp = self.document_store.merge_set(schedule_cells)
            except Exception as e:
                # any failure releases the in-flight flag
                self._finish_save(None, e)
            else:
                self._finish_save(stamp, None)
            return

        future = self.executor.submit(self.document_store.merge_set, schedule_cells)
        future.add_done_callback(self._on_save_done)

    def _on_save_done(self, future: Future):
        error = future.exception()
        self._finish_save(None if error else future.result(), error)

    def _finish_save(self, stamp: Optional[datetime], error: Optional[BaseException]):
        with self._lock:
            self._is_saving = False
            if error is not None:
                # No automatic retry: the next edit or an undo issues a fresh write.
                self._save_queued = False
                self.last_save_error = error
                run_again = False
            else:
                if stamp is not None:
                    self._last_synced_at = stamp
                run_again = self._save_queued
                self._save_queued = False

        if error is not None:
            logger.error(f"Failed to save schedule: {error}")
            self._set_status(SaveStatus.ERROR)
            return

        logger.debug("Schedule saved")
        self._set_status(SaveStatus.SAVED)
        if run_again:
            self.save_schedule()

    # -------------------------------------------------------------------------
    # Loading and remote sync
    # -------------------------------------------------------------------------

    def load(self) -> Grid:
        """
        Initial fetch of the schedule document. A missing document is created
        by persisting the empty grid. The undo stack restarts from the loaded grid.
        """
        document = self.document_store.fetch()
        with self._lock:
            if document is None:
                self._grid = {}
            else:
                self._grid = self._grid_from_document(document.schedule_cells)
                self._last_synced_at = document.updated_at
            self.undo_manager.initialize(self._grid)

        logger.info(f"Loaded schedule with {sum(len(row) for row in self._grid.values())} cells")
        self._notify_change()
        if document is None:
            self.save_schedule()
        return self.get_current_table_state()

    def apply_remote_snapshot(self, document: Optional[ScheduleDocument]) -> bool:
        """
        Replace the local grid with a newer remote document.
        Ignored while a local write is pending or when the document is not newer.
        """
        if document is None:
            return False

        with self._lock:
            if self._is_saving or self._save_queued:
                logger.debug("Remote snapshot ignored while a save is pending")
                return False
            if (self._last_synced_at is not None and document.updated_at is not None
                    and document.updated_at <= self._last_synced_at):
                return False
            self._grid = self._grid_from_document(document.schedule_cells)
            self._last_synced_at = document.updated_at or datetime.now(timezone.utc)

        logger.info("Applied remote schedule changes")
        self._notify_change()
        return True

    def poll_remote_changes(self) -> bool:
        """Fetch the remote document and apply it when it is newer."""
        try:
            document = self.document_store.fetch()
        except PersistenceError as e:
            logger.error(f"Failed to poll schedule changes: {e}")
            self._set_status(SaveStatus.ERROR)
            return False
        return self.apply_remote_snapshot(document)
