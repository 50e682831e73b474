"""
Data Manager for the Clinic Schedule Grid
Document stores for the schedule, settings persistence and backups
"""
import copy
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from models.constants import DATA_DIR
from models.data_models import ScheduleConfig, ScheduleDocument
from core.exceptions import PersistenceError

logger = logging.getLogger(__name__)

# Data file paths
SCHEDULE_FILE = os.path.join(DATA_DIR, "schedule.json")
BACKUP_FILE = os.path.join(DATA_DIR, "backup.json")
SETTINGS_FILE = os.path.join(DATA_DIR, "settings.json")

ScheduleCells = Dict[str, Dict[str, Dict[str, Any]]]


def ensure_data_directory(path: str = DATA_DIR):
    """Ensure the data directory exists."""
    if path and not os.path.exists(path):
        os.makedirs(path)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Document stores
# =============================================================================

class ScheduleDocumentStore:
    """
    Storage for one schedule document holding ``scheduleCells``.

    ``fetch`` returns None when the document does not exist. ``merge_set``
    replaces the ``scheduleCells`` field (other fields of the document are
    kept) and returns the update stamp written. Both raise PersistenceError.
    """

    def fetch(self) -> Optional[ScheduleDocument]:
        raise NotImplementedError

    def merge_set(self, schedule_cells: ScheduleCells) -> Optional[datetime]:
        raise NotImplementedError


class InMemoryDocumentStore(ScheduleDocumentStore):
    """Document store kept in memory. ``fail = True`` makes every write raise."""

    def __init__(self, schedule_cells: Optional[ScheduleCells] = None,
                 updated_at: Optional[datetime] = None, fail: bool = False):
        self.document: Optional[ScheduleDocument] = None
        if schedule_cells is not None:
            self.document = ScheduleDocument(schedule_cells=copy.deepcopy(schedule_cells),
                                             updated_at=updated_at or _utcnow())
        self.fail = fail
        self.writes: List[ScheduleCells] = []

    def fetch(self) -> Optional[ScheduleDocument]:
        if self.document is None:
            return None
        return self.document.model_copy(deep=True)

    def merge_set(self, schedule_cells: ScheduleCells) -> Optional[datetime]:
        if self.fail:
            raise PersistenceError("Document store is unavailable")

        stamp = _utcnow()
        previous = self.document.updated_at if self.document is not None else None
        if previous is not None and stamp <= previous:
            stamp = previous + timedelta(microseconds=1)

        self.writes.append(copy.deepcopy(schedule_cells))
        self.document = ScheduleDocument(schedule_cells=copy.deepcopy(schedule_cells), updated_at=stamp)
        return stamp


class JsonFileDocumentStore(ScheduleDocumentStore):
    """Schedule document kept in a JSON file under the data directory."""

    def __init__(self, path: str = SCHEDULE_FILE):
        self.path = path

    def _read_raw(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read schedule document {self.path}: {e}")
            raise PersistenceError(f"Failed to read schedule document: {e}")
        if not isinstance(data, dict):
            raise PersistenceError(f"Schedule document {self.path} is not a JSON object")
        return data

    def fetch(self) -> Optional[ScheduleDocument]:
        data = self._read_raw()
        if data is None:
            return None

        updated_at = None
        if data.get("lastUpdated"):
            try:
                updated_at = datetime.fromisoformat(data["lastUpdated"])
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid lastUpdated in {self.path}: {data['lastUpdated']!r}")

        cells = data.get("scheduleCells")
        return ScheduleDocument(schedule_cells=cells if isinstance(cells, dict) else {},
                                updated_at=updated_at)

    def merge_set(self, schedule_cells: ScheduleCells) -> Optional[datetime]:
        data = self._read_raw() or {}
        stamp = _utcnow()
        data["scheduleCells"] = schedule_cells
        data["lastUpdated"] = stamp.isoformat()

        try:
            ensure_data_directory(os.path.dirname(self.path))
            tmp_path = self.path + ".tmp"
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save schedule document {self.path}: {e}")
            raise PersistenceError(f"Failed to save schedule document: {e}")
        return stamp


# =============================================================================
# Settings
# =============================================================================

def save_settings(settings: Dict, path: str = SETTINGS_FILE) -> None:
    """Save app settings to JSON file."""
    ensure_data_directory(os.path.dirname(path))

    data = {
        "settings": settings,
        "last_updated": datetime.now().isoformat()
    }

    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)
    except OSError as e:
        logger.error(f"Failed to save settings: {e}")
        raise PersistenceError(f"Failed to save settings: {e}")


def load_settings(path: str = SETTINGS_FILE) -> Dict:
    """Load app settings from JSON file."""
    if not os.path.exists(path):
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        settings = data.get("settings", {}) if isinstance(data, dict) else {}
        return settings if isinstance(settings, dict) else {}
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Error loading settings: {e}")
        return {}


def load_schedule_config(path: str = SETTINGS_FILE) -> ScheduleConfig:
    """Build the grid configuration from saved settings, falling back to defaults."""
    settings = load_settings(path)
    try:
        return ScheduleConfig(**settings.get("schedule", {}))
    except (TypeError, ValidationError) as e:
        logger.warning(f"Invalid schedule settings, using defaults: {e}")
        return ScheduleConfig()


# =============================================================================
# Backups
# =============================================================================

def perform_backup(source: ScheduleDocumentStore, backup_store: ScheduleDocumentStore) -> bool:
    """Copy the current schedule document into the backup document."""
    try:
        document = source.fetch()
        schedule_cells = document.schedule_cells if document is not None else {}
        backup_store.merge_set(schedule_cells)
    except PersistenceError as e:
        logger.error(f"Backup failed: {e}")
        return False

    logger.info(f"Backup created with {len(schedule_cells)} time slots")
    return True


def get_last_backup_date(backup_store: ScheduleDocumentStore) -> Optional[datetime]:
    """Date of the latest backup, or None when there is none (or it cannot be read)."""
    try:
        document = backup_store.fetch()
    except PersistenceError as e:
        logger.error(f"Failed to read backup date: {e}")
        return None
    return document.updated_at if document is not None else None


def restore_backup(backup_store: ScheduleDocumentStore) -> ScheduleDocument:
    """Read the latest backup document. Raises PersistenceError when none exists."""
    document = backup_store.fetch()
    if document is None:
        raise PersistenceError("No backup found")
    return document
