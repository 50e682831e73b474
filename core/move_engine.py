# =============================================================================
# Move Engine - drag-and-drop moves between cells
# =============================================================================
"""
Moves the content of a source cell (or one part of a split cell) to a
target cell. The target update and the source clear are submitted to the
store as a single batch, so one undo step reverts the whole move.

Decision table for the target:
  * split target without a chosen part      -> rejected
  * chosen part already occupied            -> rejected
  * occupied whole target, no part chosen   -> auto-split (old content part 1,
                                               moved content part 2)
  * split target with a free chosen part    -> placed into that part
  * empty whole target                      -> placed as whole content
"""

import logging
from typing import Callable, List, Optional, Tuple

from models.cell_models import (
    Assignment, BreakCell, Cell, SplitCell, WholeCell, empty_cell,
)
from models.data_models import CellRef, InteractionState, MoveOutcome
from core.activity_log import ActivityLog, activity_log
from core.cell_operations import clear_part, place_assignment
from core.exceptions import (
    BreakCellError, MoveRejectedError, PartOccupiedError,
    PartSelectionRequiredError, SourcePartRequiredError,
)
from core.schedule_store import CellUpdate, ScheduleStore

logger = logging.getLogger(__name__)


class MoveEngine:
    """Validates and performs moves against a ScheduleStore."""

    def __init__(self, store: ScheduleStore, log: ActivityLog = activity_log):
        self.store = store
        self.log = log

    def _cell(self, ref: CellRef) -> Cell:
        return self.store.get_cell_state(ref.time, ref.employee_id) or empty_cell()

    def _resolve_source(self, source_cell: Cell, source: CellRef,
                        target_cell: Cell, target: CellRef) -> Tuple[Optional[int], Optional[Cell]]:
        """
        Pick the part to move. Returns (part, payload) where payload is either
        a WholeCell/SplitCell-shaped copy to move, or None when there is nothing to move.
        """
        if isinstance(source_cell, WholeCell):
            if source_cell.assignment.is_empty:
                return None, None
            return None, WholeCell(assignment=source_cell.assignment.model_copy(deep=True))

        if source.part is not None:
            assignment = source_cell.part(source.part)
            if assignment.is_empty:
                return source.part, None
            return source.part, WholeCell(assignment=assignment.model_copy(deep=True))

        occupied = [n for n in (1, 2) if not source_cell.part(n).is_empty]
        if not occupied:
            return None, None
        if len(occupied) == 1:
            part = occupied[0]
            return part, WholeCell(assignment=source_cell.part(part).model_copy(deep=True))

        # Both parts occupied: only an empty whole target can take the split cell as it is.
        if isinstance(target_cell, WholeCell) and target_cell.assignment.is_empty:
            return None, SplitCell(part1=source_cell.part1.model_copy(deep=True),
                                   part2=source_cell.part2.model_copy(deep=True))
        raise SourcePartRequiredError()

    def _target_mutator(self, target_cell: Cell, target: CellRef,
                        payload: Cell) -> Tuple[Callable[[Cell], Cell], MoveOutcome]:
        if isinstance(payload, SplitCell):
            def move_split(cell: Cell) -> Cell:
                return payload.model_copy(update={"history": list(cell.history)}, deep=True)
            return move_split, MoveOutcome.MOVED

        moved: Assignment = payload.assignment

        if isinstance(target_cell, SplitCell):
            if target.part is None:
                raise PartSelectionRequiredError()
            if not target_cell.part(target.part).is_empty:
                raise PartOccupiedError()
            part = target.part
            return (lambda cell: place_assignment(cell, moved, part)), MoveOutcome.MOVED

        if not target_cell.assignment.is_empty:
            def auto_split(cell: Cell) -> Cell:
                return SplitCell(part1=cell.assignment.model_copy(deep=True),
                                 part2=moved.model_copy(deep=True),
                                 history=list(cell.history))
            return auto_split, MoveOutcome.AUTO_SPLIT

        return (lambda cell: place_assignment(cell, moved)), MoveOutcome.MOVED

    def move(self, source: CellRef, target: CellRef) -> MoveOutcome:
        """
        Move content from ``source`` to ``target``.
        Raises a MoveRejectedError subclass when a placement rule is broken;
        the grid is untouched in that case.
        """
        if source.same_cell(target):
            return MoveOutcome.NOOP

        source_cell = self._cell(source)
        target_cell = self._cell(target)
        if isinstance(source_cell, BreakCell) or isinstance(target_cell, BreakCell):
            raise BreakCellError()

        source_part, payload = self._resolve_source(source_cell, source, target_cell, target)
        if payload is None:
            logger.debug(f"Nothing to move from [{source.time}][{source.employee_id}]")
            return MoveOutcome.NOOP

        target_mutator, outcome = self._target_mutator(target_cell, target, payload)

        def clear_source(cell: Cell) -> Cell:
            return clear_part(cell, source_part)

        updates: List[CellUpdate] = [
            CellUpdate(target.time, target.employee_id, target_mutator),
            CellUpdate(source.time, source.employee_id, clear_source),
        ]
        self.store.update_multiple_cells(updates)
        logger.info(f"Moved [{source.time}][{source.employee_id}] -> "
                    f"[{target.time}][{target.employee_id}] ({outcome.value})")
        return outcome


class DragDropController:
    """
    Drag gesture entry points. The UI reports which cell (and part) a gesture
    is over; the controller keeps the drag in the interaction state and runs
    the move on drop.
    """

    def __init__(self, engine: MoveEngine, interaction: Optional[InteractionState] = None,
                 log: ActivityLog = activity_log):
        self.engine = engine
        self.interaction = interaction or InteractionState()
        self.log = log

    def _is_break(self, ref: CellRef) -> bool:
        return isinstance(self.engine.store.get_cell_state(ref.time, ref.employee_id), BreakCell)

    def handle_drag_start(self, ref: CellRef) -> bool:
        """Start dragging a cell. Breaks cannot be dragged."""
        if self._is_break(ref):
            return False
        self.interaction.dragged = ref
        self.interaction.drop_target = None
        return True

    def handle_drag_over(self, ref: CellRef) -> bool:
        """Mark ``ref`` as the drop target; False when it cannot accept a drop."""
        dragged = self.interaction.dragged
        if dragged is None or dragged.same_cell(ref) or self._is_break(ref):
            self.interaction.drop_target = None
            return False
        self.interaction.drop_target = ref
        return True

    def handle_drag_leave(self, ref: CellRef):
        target = self.interaction.drop_target
        if target is not None and target.same_cell(ref):
            self.interaction.drop_target = None

    def handle_drop(self, ref: CellRef) -> Optional[MoveOutcome]:
        """Run the move onto ``ref``. Returns None when the move was rejected."""
        dragged = self.interaction.dragged
        try:
            if dragged is None:
                return MoveOutcome.NOOP
            return self.engine.move(dragged, ref)
        except MoveRejectedError as e:
            self.log.warn(e.message)
            return None
        finally:
            self.interaction.clear_drag()

    def handle_drag_end(self):
        self.interaction.clear_drag()
