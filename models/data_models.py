# =============================================================================
# Data Models for the Clinic Schedule Grid
# =============================================================================

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models.cell_models import Cell
from models.constants import (
    BREAK_TEXT, CONTENT_CELL_COLOR, DEFAULT_CELL_COLOR, MAX_HISTORY_ENTRIES,
    SCHEDULE_END_HOUR, SCHEDULE_START_HOUR, UNDO_MAX_STATES,
)


class SaveStatus(str, Enum):
    """Status of the last persist of the schedule document."""
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


class MoveOutcome(str, Enum):
    """What a drag-and-drop move did to the grid."""
    NOOP = "noop"                  # nothing to move
    MOVED = "moved"                # placed into an empty whole cell or split part
    AUTO_SPLIT = "auto_split"      # target was occupied and got split


class DuplicateChoice(str, Enum):
    """User decision when an edited text already exists elsewhere in the grid."""
    MOVE = "move"
    ADD_ANYWAY = "add_anyway"
    CANCEL = "cancel"


class ScheduleConfig(BaseModel):
    """Runtime configuration of the schedule grid."""
    start_hour: int = Field(SCHEDULE_START_HOUR, ge=0, le=23)
    end_hour: int = Field(SCHEDULE_END_HOUR, ge=0, le=23)
    undo_max_states: int = Field(UNDO_MAX_STATES, ge=1, le=200)
    max_history_entries: int = Field(MAX_HISTORY_ENTRIES, ge=1, le=MAX_HISTORY_ENTRIES)
    break_text: str = BREAK_TEXT
    default_cell_color: str = DEFAULT_CELL_COLOR
    content_cell_color: str = CONTENT_CELL_COLOR
    debug_validation: bool = Field(False, description="Validate the whole grid before every persist")

    @model_validator(mode="after")
    def check_hours(self) -> "ScheduleConfig":
        if self.start_hour > self.end_hour:
            raise ValueError("start_hour must not be after end_hour")
        return self


class CellRef(BaseModel):
    """A (time slot, employee) coordinate, optionally narrowed to a split part."""
    time: str
    employee_id: str
    part: Optional[int] = None

    @field_validator("employee_id", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> str:
        return str(v)

    @field_validator("part")
    @classmethod
    def check_part(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in (1, 2):
            raise ValueError("part must be 1, 2 or None")
        return v

    def same_cell(self, other: "CellRef") -> bool:
        return self.time == other.time and self.employee_id == other.employee_id


class ValidationReport(BaseModel):
    valid: bool = True
    errors: List[str] = Field(default_factory=list)


class PartDisplayData(BaseModel):
    text: str = ""
    classes: List[str] = Field(default_factory=list)
    is_massage: bool = False
    is_pnf: bool = False
    is_every_other_day: bool = False


class CellDisplayData(BaseModel):
    """Renderable shape of a cell produced by the display projector."""
    text: str = ""
    classes: List[str] = Field(default_factory=list)
    styles: Dict[str, str] = Field(default_factory=dict)
    is_split: bool = False
    parts: List[PartDisplayData] = Field(default_factory=list)
    is_break: bool = False


class ScheduleDocument(BaseModel):
    """The remote schedule document: persisted cells plus its update stamp."""
    schedule_cells: Dict[str, Dict[str, Dict[str, Any]]] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None


class DuplicateMatch(BaseModel):
    """Another cell (or split part) already holding the edited text."""
    ref: CellRef
    cell: Cell

    @property
    def source_part(self) -> Optional[int]:
        return self.ref.part


class InteractionState(BaseModel):
    """
    Per-session UI state shared by the controllers: the drag in progress
    and the copied cell.
    """
    dragged: Optional[CellRef] = None
    drop_target: Optional[CellRef] = None
    copied_cell: Optional[Cell] = None

    def clear_drag(self) -> None:
        self.dragged = None
        self.drop_target = None

