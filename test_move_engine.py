#!/usr/bin/env python3
# =============================================================================
# Tests for drag-and-drop moves
# =============================================================================

import sys
import os
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from datetime import date

import pytest

from models.cell_models import Assignment, BreakCell, SplitCell, TreatmentWindow, WholeCell
from models.data_models import CellRef, InteractionState, MoveOutcome
from core.activity_log import ActivityLog
from core.data_manager import InMemoryDocumentStore
from core.exceptions import (
    BreakCellError, PartOccupiedError, PartSelectionRequiredError, SourcePartRequiredError,
)
from core.move_engine import DragDropController, MoveEngine
from core.schedule_store import ScheduleStore

KOWALSKI = Assignment(content="Kowalski", is_massage=True,
                      treatment=TreatmentWindow(start_date="2024-01-08", extension_days=2,
                                                end_date="2024-01-30", additional_info="knee"))
NOWAK = Assignment(content="Nowak", is_pnf=True,
                   treatment=TreatmentWindow(start_date="2024-01-10", extension_days=0,
                                             end_date="2024-01-30"))
LIS = Assignment(content="Lis", is_every_other_day=True,
                 treatment=TreatmentWindow(start_date="2024-01-12", extension_days=0,
                                           end_date="2024-02-01"))


@pytest.fixture
def store():
    backend = InMemoryDocumentStore()
    schedule = ScheduleStore(backend)
    schedule.today = date(2024, 1, 15)
    return schedule


def _put(store, time, employee_id, cell):
    store.update_cell_state(time, employee_id, lambda _: cell)


def _ref(time, employee_id, part=None):
    return CellRef(time=time, employee_id=employee_id, part=part)


def test_move_split_part_to_empty_whole_cell(store):
    _put(store, "7:00", "0", SplitCell(part1=KOWALSKI, part2=Assignment()))
    engine = MoveEngine(store, ActivityLog())

    outcome = engine.move(_ref("7:00", "0", 1), _ref("8:00", "1"))

    assert outcome == MoveOutcome.MOVED
    source = store.get_cell_state("7:00", "0")
    assert isinstance(source, WholeCell)
    assert source.assignment.is_empty
    target = store.get_cell_state("8:00", "1")
    assert isinstance(target, WholeCell)
    assert target.assignment == KOWALSKI


def test_move_onto_occupied_whole_cell_auto_splits(store):
    _put(store, "7:00", "0", WholeCell(assignment=NOWAK))
    _put(store, "8:00", "1", WholeCell(assignment=KOWALSKI))
    engine = MoveEngine(store, ActivityLog())

    outcome = engine.move(_ref("8:00", "1"), _ref("7:00", "0"))

    assert outcome == MoveOutcome.AUTO_SPLIT
    target = store.get_cell_state("7:00", "0")
    assert isinstance(target, SplitCell)
    assert target.part1 == NOWAK
    assert target.part2 == KOWALSKI
    assert store.get_cell_state("8:00", "1").assignment.is_empty


def test_move_into_free_part_of_split_cell(store):
    _put(store, "7:00", "0", SplitCell(part1=NOWAK, part2=Assignment()))
    _put(store, "8:00", "1", WholeCell(assignment=KOWALSKI))
    engine = MoveEngine(store, ActivityLog())

    assert engine.move(_ref("8:00", "1"), _ref("7:00", "0", 2)) == MoveOutcome.MOVED

    target = store.get_cell_state("7:00", "0")
    assert target.part1 == NOWAK
    assert target.part2 == KOWALSKI


def test_split_target_without_part_is_rejected(store):
    _put(store, "7:00", "0", SplitCell(part1=NOWAK, part2=Assignment()))
    _put(store, "8:00", "1", WholeCell(assignment=KOWALSKI))
    before = store.get_current_table_state()
    engine = MoveEngine(store, ActivityLog())

    with pytest.raises(PartSelectionRequiredError):
        engine.move(_ref("8:00", "1"), _ref("7:00", "0"))
    assert store.get_current_table_state() == before


def test_occupied_target_part_is_rejected(store):
    _put(store, "7:00", "0", SplitCell(part1=NOWAK, part2=LIS))
    _put(store, "8:00", "1", WholeCell(assignment=KOWALSKI))
    before = store.get_current_table_state()
    engine = MoveEngine(store, ActivityLog())

    with pytest.raises(PartOccupiedError):
        engine.move(_ref("8:00", "1"), _ref("7:00", "0", 1))
    assert store.get_current_table_state() == before


def test_breaks_cannot_be_moved_or_targeted(store):
    _put(store, "7:00", "0", BreakCell())
    _put(store, "8:00", "1", WholeCell(assignment=KOWALSKI))
    engine = MoveEngine(store, ActivityLog())

    with pytest.raises(BreakCellError):
        engine.move(_ref("8:00", "1"), _ref("7:00", "0"))
    with pytest.raises(BreakCellError):
        engine.move(_ref("7:00", "0"), _ref("9:00", "0"))


def test_empty_source_and_same_cell_are_noops(store):
    engine = MoveEngine(store, ActivityLog())
    writes = len(store.document_store.writes)

    assert engine.move(_ref("7:00", "0"), _ref("8:00", "0")) == MoveOutcome.NOOP

    _put(store, "7:00", "0", SplitCell(part1=KOWALSKI, part2=Assignment()))
    writes = len(store.document_store.writes)
    assert engine.move(_ref("7:00", "0", 2), _ref("8:00", "0")) == MoveOutcome.NOOP
    assert engine.move(_ref("7:00", "0", 1), _ref("7:00", "0", 2)) == MoveOutcome.NOOP
    assert len(store.document_store.writes) == writes


def test_clearing_one_part_promotes_the_other(store):
    _put(store, "7:00", "0", SplitCell(part1=KOWALSKI, part2=NOWAK))
    engine = MoveEngine(store, ActivityLog())

    engine.move(_ref("7:00", "0", 1), _ref("8:00", "1"))

    source = store.get_cell_state("7:00", "0")
    assert isinstance(source, WholeCell)
    assert source.assignment == NOWAK
    assert store.get_cell_state("8:00", "1").assignment == KOWALSKI


def test_split_source_with_one_occupied_part_needs_no_part(store):
    _put(store, "7:00", "0", SplitCell(part1=Assignment(), part2=LIS))
    engine = MoveEngine(store, ActivityLog())

    assert engine.move(_ref("7:00", "0"), _ref("8:00", "1")) == MoveOutcome.MOVED
    assert store.get_cell_state("8:00", "1").assignment == LIS
    assert store.get_cell_state("7:00", "0").assignment.is_empty


def test_full_split_source_moves_whole_onto_empty_cell(store):
    _put(store, "7:00", "0", SplitCell(part1=KOWALSKI, part2=NOWAK))
    engine = MoveEngine(store, ActivityLog())

    assert engine.move(_ref("7:00", "0"), _ref("8:00", "1")) == MoveOutcome.MOVED
    target = store.get_cell_state("8:00", "1")
    assert isinstance(target, SplitCell)
    assert (target.part1, target.part2) == (KOWALSKI, NOWAK)
    assert store.get_cell_state("7:00", "0").assignment.is_empty


def test_full_split_source_onto_occupied_cell_needs_part(store):
    _put(store, "7:00", "0", SplitCell(part1=KOWALSKI, part2=NOWAK))
    _put(store, "8:00", "1", WholeCell(assignment=LIS))
    engine = MoveEngine(store, ActivityLog())

    with pytest.raises(SourcePartRequiredError):
        engine.move(_ref("7:00", "0"), _ref("8:00", "1"))


def test_move_is_a_single_undo_step(store):
    _put(store, "7:00", "0", WholeCell(assignment=KOWALSKI))
    engine = MoveEngine(store, ActivityLog())
    engine.move(_ref("7:00", "0"), _ref("8:00", "1"))

    assert store.undo()
    assert store.get_cell_state("7:00", "0").assignment == KOWALSKI
    assert store.get_cell_state("8:00", "1") is None


def test_target_history_records_overwritten_content(store):
    _put(store, "7:00", "0", WholeCell(assignment=NOWAK))
    _put(store, "8:00", "1", WholeCell(assignment=KOWALSKI))
    MoveEngine(store, ActivityLog()).move(_ref("8:00", "1"), _ref("7:00", "0"))

    assert store.get_cell_state("7:00", "0").history[0].old_value == "Nowak"
    assert store.get_cell_state("8:00", "1").history[0].old_value == "Kowalski"


def test_drag_drop_controller_flow(store):
    _put(store, "7:00", "0", WholeCell(assignment=KOWALSKI))
    interaction = InteractionState()
    controller = DragDropController(MoveEngine(store, ActivityLog()), interaction, ActivityLog())

    assert controller.handle_drag_start(_ref("7:00", "0"))
    assert interaction.dragged == _ref("7:00", "0")
    assert not controller.handle_drag_over(_ref("7:00", "0"))
    assert controller.handle_drag_over(_ref("8:00", "1"))
    controller.handle_drag_leave(_ref("8:00", "1"))
    assert interaction.drop_target is None

    assert controller.handle_drop(_ref("8:00", "1")) == MoveOutcome.MOVED
    assert interaction.dragged is None
    assert store.get_cell_state("8:00", "1").assignment == KOWALSKI


def test_drag_drop_controller_reports_rejections(store):
    _put(store, "7:00", "0", WholeCell(assignment=KOWALSKI))
    _put(store, "8:00", "1", SplitCell(part1=NOWAK, part2=Assignment()))
    _put(store, "9:00", "2", BreakCell())
    log = ActivityLog()
    controller = DragDropController(MoveEngine(store, log), log=log)

    assert not controller.handle_drag_start(_ref("9:00", "2"))
    assert controller.handle_drag_start(_ref("7:00", "0"))
    assert not controller.handle_drag_over(_ref("9:00", "2"))

    assert controller.handle_drop(_ref("8:00", "1")) is None
    assert "Choose which part" in log.last()
    assert controller.interaction.dragged is None
    assert store.get_cell_state("7:00", "0").assignment == KOWALSKI


def test_drop_without_drag_is_noop(store):
    controller = DragDropController(MoveEngine(store, ActivityLog()))
    assert controller.handle_drop(_ref("7:00", "0")) == MoveOutcome.NOOP
    controller.handle_drag_end()
