# =============================================================================
# Cell Validation and Sanitization
# =============================================================================
"""
Whitelist-based checks on the persisted cell shape.

Validation never blocks a write: callers log the errors and persist the
sanitized best-effort shape instead.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from models.constants import (
    ALLOWED_CELL_KEYS, ALLOWED_TREATMENT_KEYS, BOOLEAN_CELL_KEYS,
    MAX_EXTENSION_DAYS, MAX_FREE_TEXT_LENGTH, MAX_HISTORY_ENTRIES,
)
from models.data_models import ValidationReport
from core.utils import parse_iso_date

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_SLOT_PATTERN = re.compile(r"^\d{1,2}:\d{2}$")
DANGEROUS_PATTERNS = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+=", re.IGNORECASE),
)


def is_valid_date(value: Any) -> bool:
    """YYYY-MM-DD and a real calendar date."""
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        return False
    return parse_iso_date(value) is not None


def is_valid_boolean(value: Any) -> bool:
    return value is None or isinstance(value, bool)


def validate_text_field(value: Any) -> Optional[str]:
    """
    Check a free-text field (content, additional info).
    Returns an error message, or None when the value is acceptable.
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        return "must be text"
    if len(value) > MAX_FREE_TEXT_LENGTH:
        return f"must not exceed {MAX_FREE_TEXT_LENGTH} characters"
    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(value):
            return "contains disallowed markup"
    return None


def _is_valid_extension(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return 0 <= value <= MAX_EXTENSION_DAYS


def validate_treatment_data(data: Any) -> List[str]:
    """Validate a nested treatment window (treatmentData1/2)."""
    if not data or not isinstance(data, dict):
        return []

    errors = []
    for key in data:
        if key not in ALLOWED_TREATMENT_KEYS:
            errors.append(f"unknown treatment key: {key}")

    for key in ("startDate", "endDate"):
        if data.get(key) is not None and not is_valid_date(data[key]):
            errors.append(f"invalid {key} (expected YYYY-MM-DD)")

    if not _is_valid_extension(data.get("extensionDays")):
        errors.append(f"extensionDays must be a number from 0 to {MAX_EXTENSION_DAYS}")

    info_error = validate_text_field(data.get("additionalInfo"))
    if info_error:
        errors.append(f"additionalInfo {info_error}")

    return errors


def validate_cell_state(cell: Any) -> ValidationReport:
    """Validate the persisted shape of one cell."""
    if not isinstance(cell, dict):
        return ValidationReport(valid=False, errors=["cell state must be a mapping"])

    errors: List[str] = []

    for key in cell:
        if key not in ALLOWED_CELL_KEYS:
            errors.append(f"unknown cell key: {key}")

    for key in ("content", "content1", "content2", "additionalInfo"):
        text_error = validate_text_field(cell.get(key))
        if text_error:
            errors.append(f"{key} {text_error}")

    for key in BOOLEAN_CELL_KEYS:
        if key in cell and not is_valid_boolean(cell[key]):
            errors.append(f"{key} must be a boolean or null")

    if cell.get("treatmentStartDate") is not None and not is_valid_date(cell["treatmentStartDate"]):
        errors.append("invalid treatmentStartDate (expected YYYY-MM-DD)")
    if cell.get("treatmentEndDate") is not None and not is_valid_date(cell["treatmentEndDate"]):
        errors.append("invalid treatmentEndDate (expected YYYY-MM-DD)")
    if not _is_valid_extension(cell.get("treatmentExtensionDays")):
        errors.append(f"treatmentExtensionDays must be a number from 0 to {MAX_EXTENSION_DAYS}")

    for key in ("treatmentData1", "treatmentData2"):
        errors.extend(f"{key}: {error}" for error in validate_treatment_data(cell.get(key)))

    history = cell.get("history")
    if history is not None and not isinstance(history, list):
        errors.append("history must be a list")
    elif history and len(history) > MAX_HISTORY_ENTRIES:
        errors.append(f"history has more than {MAX_HISTORY_ENTRIES} entries")

    content = cell.get("content")
    if cell.get("isSplit") and isinstance(content, str) and content.strip():
        errors.append("split cell must not have content, only content1/content2")

    return ValidationReport(valid=not errors, errors=errors)


def validate_schedule_state(schedule_cells: Any) -> ValidationReport:
    """Validate a whole scheduleCells mapping: time-slot keys and every cell."""
    if not isinstance(schedule_cells, dict):
        return ValidationReport(valid=False, errors=["scheduleCells must be a mapping"])

    errors: List[str] = []
    for time, row in schedule_cells.items():
        if not TIME_SLOT_PATTERN.match(str(time)):
            errors.append(f"invalid time slot: {time}")
            continue
        if not isinstance(row, dict):
            errors.append(f"invalid row for time slot {time}")
            continue
        for employee_id, cell in row.items():
            report = validate_cell_state(cell)
            if not report.valid:
                errors.append(f"cell [{time}][{employee_id}]: {', '.join(report.errors)}")

    return ValidationReport(valid=not errors, errors=errors)


def sanitize_treatment_data(data: Any) -> Optional[Dict[str, Any]]:
    """Keep only whitelisted treatment keys; None when nothing survives."""
    if not data or not isinstance(data, dict):
        return None
    sanitized = {key: data[key] for key in ALLOWED_TREATMENT_KEYS if key in data}
    return sanitized or None


def sanitize_cell_state(cell: Any) -> Dict[str, Any]:
    """
    Drop unknown keys, truncate history and clean nested treatment windows.
    Never raises; anything that is not a mapping becomes an empty cell.
    """
    if not isinstance(cell, dict):
        return {}

    sanitized: Dict[str, Any] = {}
    for key in ALLOWED_CELL_KEYS:
        if key not in cell:
            continue
        value = cell[key]
        if key in ("treatmentData1", "treatmentData2"):
            if isinstance(value, dict):
                sanitized[key] = sanitize_treatment_data(value)
        elif key == "history":
            if isinstance(value, list):
                sanitized[key] = value[:MAX_HISTORY_ENTRIES]
        else:
            sanitized[key] = value
    return sanitized


def validate_and_sanitize(cell: Any, location: Tuple[str, str]) -> Dict[str, Any]:
    """Log validation problems for the cell at ``location`` and return its sanitized shape."""
    report = validate_cell_state(cell)
    if not report.valid:
        time, employee_id = location
        logger.warning(f"Cell [{time}][{employee_id}] failed validation: {report.errors}")
    return sanitize_cell_state(cell)
