# =============================================================================
# Cell Models for the Clinic Schedule Grid
# =============================================================================
"""
A grid cell is one of three shapes: a break, a whole cell holding a single
assignment, or a split cell holding two independent assignments. The shapes
are modelled as a pydantic discriminated union so a cell can never be half
split and half whole.

The persisted (document) shape is the flat camelCase mapping stored under
``scheduleCells[time][employeeId]``; ``cell_to_document`` and
``cell_from_document`` convert between the two.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.constants import FLAG_KEYS
from core.exceptions import CellValidationError


class TreatmentWindow(BaseModel):
    """Active date range of one therapy course."""
    model_config = ConfigDict(populate_by_name=True)

    start_date: Optional[str] = Field(None, alias="startDate")
    extension_days: Optional[int] = Field(None, alias="extensionDays")
    end_date: Optional[str] = Field(None, alias="endDate")
    additional_info: Optional[str] = Field(None, alias="additionalInfo")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class Assignment(BaseModel):
    """Content of a whole cell or of one part of a split cell."""
    content: str = ""
    is_massage: bool = False
    is_pnf: bool = False
    is_every_other_day: bool = False
    treatment: Optional[TreatmentWindow] = None

    @field_validator("content", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> str:
        return "" if v is None else v

    @property
    def is_empty(self) -> bool:
        return self.content.strip() == ""


class HistoryEntry(BaseModel):
    """Previous effective content of a cell, recorded before an overwrite."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    old_value: str = Field(alias="oldValue")
    timestamp: str
    author_id: Optional[str] = Field(None, alias="authorId")


class BreakCell(BaseModel):
    kind: Literal["break"] = "break"
    history: List[HistoryEntry] = Field(default_factory=list)


class WholeCell(BaseModel):
    kind: Literal["whole"] = "whole"
    assignment: Assignment = Field(default_factory=Assignment)
    history: List[HistoryEntry] = Field(default_factory=list)


class SplitCell(BaseModel):
    kind: Literal["split"] = "split"
    part1: Assignment = Field(default_factory=Assignment)
    part2: Assignment = Field(default_factory=Assignment)
    history: List[HistoryEntry] = Field(default_factory=list)

    def part(self, number: int) -> Assignment:
        if number not in (1, 2):
            raise ValueError(f"Split cell part must be 1 or 2, got {number!r}")
        return self.part1 if number == 1 else self.part2

    def with_part(self, number: int, assignment: Assignment) -> "SplitCell":
        if number not in (1, 2):
            raise ValueError(f"Split cell part must be 1 or 2, got {number!r}")
        return self.model_copy(update={f"part{number}": assignment})


Cell = Annotated[Union[BreakCell, WholeCell, SplitCell], Field(discriminator="kind")]

# time slot label -> employee id -> cell
Grid = Dict[str, Dict[str, Cell]]


def empty_cell(history: Optional[List[HistoryEntry]] = None) -> WholeCell:
    """Whole cell with no content, optionally keeping an existing history."""
    return WholeCell(history=list(history or []))


def effective_content(cell: Optional[Cell]) -> Optional[str]:
    """
    The content a history entry records for a cell.
    Whole cells use their content, split cells "content1/content2".
    """
    if cell is None or isinstance(cell, BreakCell):
        return None
    if isinstance(cell, SplitCell):
        return f"{cell.part1.content}/{cell.part2.content}"
    return cell.assignment.content


def is_cell_empty(cell: Optional[Cell]) -> bool:
    if cell is None:
        return True
    if isinstance(cell, BreakCell):
        return False
    if isinstance(cell, SplitCell):
        return cell.part1.is_empty and cell.part2.is_empty
    return cell.assignment.is_empty


def copy_grid(grid: Grid) -> Grid:
    """Deep copy of a grid; cells are copied, never shared."""
    return {
        time: {employee: cell.model_copy(deep=True) for employee, cell in row.items()}
        for time, row in grid.items()
    }


# -----------------------------------------------------------------------------
# Document (persisted shape) conversion
# -----------------------------------------------------------------------------

def _coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _coerce_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _treatment_from_values(start: Any, extension: Any, end: Any, info: Any) -> Optional[TreatmentWindow]:
    if start is None and extension is None and end is None and info is None:
        return None
    return TreatmentWindow(
        start_date=_coerce_str(start),
        extension_days=_coerce_int(extension),
        end_date=_coerce_str(end),
        additional_info=_coerce_str(info),
    )


def _assignment_from_document(doc: Dict[str, Any], suffix: str = "") -> Assignment:
    if suffix:
        data = doc.get(f"treatmentData{suffix}") or {}
        if not isinstance(data, dict):
            data = {}
        treatment = _treatment_from_values(
            data.get("startDate"), data.get("extensionDays"),
            data.get("endDate"), data.get("additionalInfo"),
        )
    else:
        treatment = _treatment_from_values(
            doc.get("treatmentStartDate"), doc.get("treatmentExtensionDays"),
            doc.get("treatmentEndDate"), doc.get("additionalInfo"),
        )

    flags = {attr: bool(doc.get(f"{stem}{suffix}")) for attr, stem in FLAG_KEYS.items()}
    content = doc.get(f"content{suffix}")
    return Assignment(content=_coerce_str(content) or "", treatment=treatment, **flags)


def _assignment_to_document(assignment: Assignment, suffix: str = "") -> Dict[str, Any]:
    doc: Dict[str, Any] = {f"content{suffix}": assignment.content}
    for attr, stem in FLAG_KEYS.items():
        doc[f"{stem}{suffix}"] = getattr(assignment, attr)

    treatment = assignment.treatment
    if treatment is None:
        return doc
    if suffix:
        doc[f"treatmentData{suffix}"] = treatment.to_document()
    else:
        doc["treatmentStartDate"] = treatment.start_date
        doc["treatmentExtensionDays"] = treatment.extension_days
        doc["treatmentEndDate"] = treatment.end_date
        doc["additionalInfo"] = treatment.additional_info
    return doc


def _history_from_document(raw: Any) -> List[HistoryEntry]:
    entries = []
    if not isinstance(raw, list):
        return entries
    for item in raw:
        if not isinstance(item, dict) or item.get("oldValue") is None:
            continue
        entries.append(HistoryEntry(
            old_value=str(item["oldValue"]),
            timestamp=str(item.get("timestamp") or ""),
            # older documents stored the author under "userId"
            author_id=item.get("authorId", item.get("userId")),
        ))
    return entries


def _check_shape(doc: Dict[str, Any]):
    if doc.get("isBreak") and doc.get("isSplit"):
        raise CellValidationError("cell is marked both as a break and as split")
    content = doc.get("content")
    if doc.get("isSplit") and isinstance(content, str) and content.strip():
        raise CellValidationError("split cell must not have content, only content1/content2")


def cell_from_document(doc: Optional[Dict[str, Any]], strict: bool = False) -> Cell:
    """
    Build a typed cell from its persisted mapping.
    A break wins over a split, a split over whole content. With ``strict``
    a shape mixing those meanings raises CellValidationError instead.
    """
    if not doc:
        return WholeCell()

    if strict:
        _check_shape(doc)

    history = _history_from_document(doc.get("history"))

    if doc.get("isBreak"):
        return BreakCell(history=history)

    if doc.get("isSplit"):
        return SplitCell(
            part1=_assignment_from_document(doc, "1"),
            part2=_assignment_from_document(doc, "2"),
            history=history,
        )

    return WholeCell(assignment=_assignment_from_document(doc), history=history)


def cell_to_document(cell: Cell) -> Dict[str, Any]:
    """Flatten a typed cell into its persisted mapping."""
    if isinstance(cell, BreakCell):
        doc: Dict[str, Any] = {"isBreak": True}
    elif isinstance(cell, SplitCell):
        doc = {"isSplit": True}
        doc.update(_assignment_to_document(cell.part1, "1"))
        doc.update(_assignment_to_document(cell.part2, "2"))
    else:
        doc = _assignment_to_document(cell.assignment)

    if cell.history:
        doc["history"] = [entry.model_dump(by_alias=True) for entry in cell.history]
    return doc


def grid_from_document(schedule_cells: Optional[Dict[str, Any]], strict: bool = False) -> Grid:
    grid: Grid = {}
    for time, row in (schedule_cells or {}).items():
        if not isinstance(row, dict):
            continue
        grid[time] = {
            str(employee): cell_from_document(doc if isinstance(doc, dict) else None, strict=strict)
            for employee, doc in row.items()
        }
    return grid


def grid_to_document(grid: Grid) -> Dict[str, Dict[str, Dict[str, Any]]]:
    return {
        time: {employee: cell_to_document(cell) for employee, cell in row.items()}
        for time, row in grid.items()
    }
