#!/usr/bin/env python3
# =============================================================================
# Tests for the schedule store: history, undo and serialized persistence
# =============================================================================

import sys
import os
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from concurrent.futures import Future
from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from models.cell_models import Assignment, BreakCell, SplitCell, WholeCell
from models.data_models import SaveStatus, ScheduleConfig, ScheduleDocument
from core.cell_operations import apply_text_edit, set_break, toggle_flag
from core.data_manager import InMemoryDocumentStore
from core.exceptions import CellActionError
from core.schedule_store import CellUpdate, ScheduleStore


class ManualExecutor:
    """Executor whose submitted writes run only when the test says so."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_next(self):
        future, fn, args, kwargs = self.pending.pop(0)
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)


def _text(value):
    return lambda cell: apply_text_edit(cell, value, today=date(2024, 1, 15))


def _make_store(**kwargs):
    document_store = kwargs.pop("document_store", None) or InMemoryDocumentStore()
    store = ScheduleStore(document_store, **kwargs)
    store.today = date(2024, 1, 15)
    return store, document_store


def test_update_cell_state_writes_and_persists():
    changes = []
    store, backend = _make_store(on_change=lambda: changes.append(1))

    committed = store.update_cell_state("7:00", 0, _text("Kowalski"))

    assert committed.assignment.content == "Kowalski"
    assert store.get_cell_state("7:00", "0").assignment.content == "Kowalski"
    assert len(backend.writes) == 1
    assert backend.writes[0]["7:00"]["0"]["content"] == "Kowalski"
    assert store.save_status == SaveStatus.SAVED
    assert changes == [1]


def test_new_content_gets_treatment_window():
    store, backend = _make_store()
    store.update_cell_state("7:00", "0", lambda cell: WholeCell(assignment=Assignment(content="Kowalski")))
    treatment = store.get_cell_state("7:00", "0").assignment.treatment
    assert treatment.start_date == "2024-01-15"
    assert treatment.end_date == "2024-02-02"
    assert backend.writes[-1]["7:00"]["0"]["treatmentEndDate"] == "2024-02-02"


def test_history_records_previous_content_with_cap_and_dedup():
    store, _ = _make_store(author_id="user-1")
    for i in range(12):
        store.update_cell_state("7:00", "0", _text(f"Patient {i}"))

    history = store.get_cell_state("7:00", "0").history
    assert len(history) == 10
    assert history[0].old_value == "Patient 10"
    assert history[0].author_id == "user-1"

    # a mutation that keeps the content records the same old value only once
    store.update_cell_state("7:00", "0", lambda cell: toggle_flag(cell, "is_massage"))
    store.update_cell_state("7:00", "0", lambda cell: toggle_flag(cell, "is_massage"))
    history = store.get_cell_state("7:00", "0").history
    assert history[0].old_value == "Patient 11"
    assert history[1].old_value == "Patient 10"


def test_split_history_uses_both_parts():
    store, _ = _make_store()
    store.update_cell_state("7:00", "0", _text("A/B"))
    store.update_cell_state("7:00", "0", _text("Kowalski"))
    assert store.get_cell_state("7:00", "0").history[0].old_value == "A/B"


def test_empty_split_is_normalized_to_whole():
    store, _ = _make_store()
    store.update_cell_state("7:00", "0", lambda cell: SplitCell())
    assert isinstance(store.get_cell_state("7:00", "0"), WholeCell)


def test_batch_update_is_one_undo_step_and_one_write():
    store, backend = _make_store()
    store.update_cell_state("7:00", "0", _text("Kowalski"))

    store.update_multiple_cells([
        CellUpdate("7:00", "0", _text("")),
        CellUpdate("8:00", "1", _text("Kowalski")),
    ])
    assert len(backend.writes) == 2
    assert store.get_cell_state("8:00", "1").assignment.content == "Kowalski"

    assert store.undo()
    assert store.get_cell_state("7:00", "0").assignment.content == "Kowalski"
    assert store.get_cell_state("8:00", "1") is None
    assert len(backend.writes) == 3


def test_failing_mutator_leaves_grid_untouched():
    store, backend = _make_store()
    store.update_cell_state("7:00", "0", _text("Kowalski"))

    with pytest.raises(CellActionError):
        store.update_multiple_cells([
            CellUpdate("8:00", "0", _text("Nowak")),
            CellUpdate("7:00", "0", set_break),
        ])

    assert store.get_cell_state("8:00", "0") is None
    assert len(backend.writes) == 1
    assert store.undo()
    assert store.get_cell_state("7:00", "0") is None


def test_undo_steps_back_one_mutation_at_a_time():
    store, _ = _make_store()
    store.update_cell_state("7:00", "0", _text("A"))
    store.update_cell_state("7:00", "0", _text("B"))
    store.update_cell_state("7:00", "0", _text("C"))

    assert store.undo()
    assert store.get_cell_state("7:00", "0").assignment.content == "B"
    assert store.undo()
    assert store.get_cell_state("7:00", "0").assignment.content == "A"
    assert store.undo()
    assert store.get_cell_state("7:00", "0") is None
    assert not store.undo()
    assert not store.can_undo()


def test_edit_after_undo_discards_redo_path():
    store, _ = _make_store()
    store.update_cell_state("7:00", "0", _text("A"))
    store.update_cell_state("7:00", "0", _text("B"))
    store.undo()
    store.update_cell_state("7:00", "0", _text("C"))

    assert store.undo()
    assert store.get_cell_state("7:00", "0").assignment.content == "A"


def test_undo_capacity_follows_config():
    store, _ = _make_store(config=ScheduleConfig(undo_max_states=3))
    for i in range(6):
        store.update_cell_state("7:00", "0", _text(f"P{i}"))
    undone = 0
    while store.undo():
        undone += 1
    # the current grid takes one of the three slots
    assert undone == 2
    assert store.get_cell_state("7:00", "0").assignment.content == "P3"


def test_table_state_is_a_copy():
    store, _ = _make_store()
    store.update_cell_state("7:00", "0", _text("Kowalski"))
    table = store.get_current_table_state()
    table["7:00"]["0"] = WholeCell()
    assert store.get_cell_state("7:00", "0").assignment.content == "Kowalski"
    assert store.get_app_state().schedule_cells["7:00"]["0"]["content"] == "Kowalski"


def test_saves_are_serialized_and_coalesced():
    executor = ManualExecutor()
    statuses = []
    store, backend = _make_store(executor=executor, on_status=statuses.append)

    store.update_cell_state("7:00", "0", _text("A"))
    store.update_cell_state("7:30", "0", _text("B"))
    store.update_cell_state("8:00", "0", _text("C"))

    assert len(executor.pending) == 1
    assert store.is_saving and store.save_queued

    executor.run_next()
    # exactly one follow-up write carrying the latest grid
    assert len(executor.pending) == 1
    assert not store.save_queued

    executor.run_next()
    assert executor.pending == []
    assert len(backend.writes) == 2
    assert set(backend.writes[0]) == {"7:00"}
    assert set(backend.writes[1]) == {"7:00", "7:30", "8:00"}
    assert statuses[-1] == SaveStatus.SAVED
    assert not store.is_saving


def test_failed_save_sets_error_status_and_keeps_local_state():
    backend = InMemoryDocumentStore(fail=True)
    statuses = []
    store, _ = _make_store(document_store=backend, on_status=statuses.append)

    store.update_cell_state("7:00", "0", _text("Kowalski"))

    assert store.save_status == SaveStatus.ERROR
    assert statuses == [SaveStatus.SAVING, SaveStatus.ERROR]
    assert store.get_cell_state("7:00", "0").assignment.content == "Kowalski"
    assert not store.is_saving

    backend.fail = False
    store.update_cell_state("7:30", "0", _text("Nowak"))
    assert store.save_status == SaveStatus.SAVED
    assert set(backend.writes[-1]) == {"7:00", "7:30"}


def test_failed_save_in_executor_drops_queued_write():
    executor = ManualExecutor()
    backend = InMemoryDocumentStore(fail=True)
    store, _ = _make_store(document_store=backend, executor=executor)

    store.update_cell_state("7:00", "0", _text("A"))
    store.update_cell_state("7:30", "0", _text("B"))
    executor.run_next()

    assert store.save_status == SaveStatus.ERROR
    assert executor.pending == []
    assert not store.save_queued


def test_load_existing_document():
    backend = InMemoryDocumentStore({"7:00": {"0": {"content": "Kowalski", "isMassage": True}}})
    store, _ = _make_store(document_store=backend)

    grid = store.load()

    assert grid["7:00"]["0"].assignment.is_massage
    assert backend.writes == []
    assert not store.undo()


def test_load_missing_document_creates_it():
    store, backend = _make_store()
    store.load()
    assert backend.writes == [{}]
    assert backend.fetch() is not None


def test_remote_snapshot_applies_only_when_newer():
    stamp = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    backend = InMemoryDocumentStore({"7:00": {"0": {"content": "Kowalski"}}}, updated_at=stamp)
    store, _ = _make_store(document_store=backend)
    store.load()

    older = ScheduleDocument(schedule_cells={"7:00": {"0": {"content": "Old"}}},
                             updated_at=stamp - timedelta(minutes=5))
    assert not store.apply_remote_snapshot(older)
    assert store.get_cell_state("7:00", "0").assignment.content == "Kowalski"

    newer = ScheduleDocument(schedule_cells={"7:00": {"0": {"content": "Nowak"}}},
                             updated_at=stamp + timedelta(minutes=5))
    assert store.apply_remote_snapshot(newer)
    assert store.get_cell_state("7:00", "0").assignment.content == "Nowak"


def test_poll_remote_changes():
    backend = InMemoryDocumentStore({"7:00": {"0": {"content": "Kowalski"}}})
    store, _ = _make_store(document_store=backend)
    store.load()
    assert not store.poll_remote_changes()

    # another client writes to the same document
    backend.merge_set({"7:00": {"0": {"content": "Nowak"}}})
    assert store.poll_remote_changes()
    assert store.get_cell_state("7:00", "0").assignment.content == "Nowak"


def test_replace_schedule_is_undoable():
    store, _ = _make_store()
    store.update_cell_state("7:00", "0", _text("Kowalski"))
    store.replace_schedule({"9:00": {"1": {"content": "Nowak"}}})

    assert store.get_cell_state("7:00", "0") is None
    assert store.get_cell_state("9:00", "1").assignment.content == "Nowak"
    assert store.undo()
    assert store.get_cell_state("7:00", "0").assignment.content == "Kowalski"


class FlakyDocumentStore(InMemoryDocumentStore):
    """Raises a raw transport error on the first write only."""

    def __init__(self):
        super().__init__()
        self.failures = 0

    def merge_set(self, schedule_cells):
        if self.failures == 0:
            self.failures += 1
            raise ConnectionResetError("connection reset by peer")
        return super().merge_set(schedule_cells)


def test_unexpected_write_error_releases_saving_flag():
    backend = FlakyDocumentStore()
    store, _ = _make_store(document_store=backend)

    store.update_cell_state("7:00", "0", _text("Kowalski"))

    assert store.save_status == SaveStatus.ERROR
    assert isinstance(store.last_save_error, ConnectionResetError)
    assert not store.is_saving
    assert not store.save_queued
    assert store.get_cell_state("7:00", "0").assignment.content == "Kowalski"

    store.update_cell_state("7:30", "0", _text("Nowak"))
    assert store.save_status == SaveStatus.SAVED
    assert len(backend.writes) == 1
    assert set(backend.writes[0]) == {"7:00", "7:30"}


def test_history_author_follows_current_user():
    store, _ = _make_store(author_id="anna")
    store.update_cell_state("7:00", "0", _text("Kowalski"))
    store.update_cell_state("7:00", "0", _text("Nowak"))

    store.set_current_user_id("marek")
    store.update_cell_state("7:00", "0", _text("Lis"))
    store.set_current_user_id(None)
    store.update_cell_state("7:00", "0", _text("Wrona"))

    history = store.get_cell_state("7:00", "0").history
    assert [(entry.old_value, entry.author_id) for entry in history] == [
        ("Lis", None), ("Nowak", "marek"), ("Kowalski", "anna"),
    ]


def test_load_resolves_contradictory_cells(caplog):
    backend = InMemoryDocumentStore({
        "7:00": {
            "0": {"isBreak": True, "isSplit": True, "content1": "Lis"},
            "1": {"isSplit": True, "content": "Kowalski", "content1": "Nowak", "content2": "Lis"},
            "2": {"content": "Wrona"},
        }
    })
    store, _ = _make_store(document_store=backend)

    with caplog.at_level("WARNING", logger="core.schedule_store"):
        grid = store.load()

    assert "malformed" in caplog.text
    assert isinstance(grid["7:00"]["0"], BreakCell)
    assert isinstance(grid["7:00"]["1"], SplitCell)
    assert (grid["7:00"]["1"].part1.content, grid["7:00"]["1"].part2.content) == ("Nowak", "Lis")
    assert grid["7:00"]["2"].assignment.content == "Wrona"


def test_history_cap_follows_config():
    store, _ = _make_store(config=ScheduleConfig(max_history_entries=3))
    for i in range(6):
        store.update_cell_state("7:00", "0", _text(f"Patient {i}"))

    history = store.get_cell_state("7:00", "0").history
    assert [entry.old_value for entry in history] == ["Patient 4", "Patient 3", "Patient 2"]


def test_history_cap_cannot_exceed_persisted_limit():
    assert ScheduleConfig(max_history_entries=10).max_history_entries == 10
    with pytest.raises(ValidationError):
        ScheduleConfig(max_history_entries=11)
