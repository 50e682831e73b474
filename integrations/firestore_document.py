# =============================================================================
# Firestore Document Store for the Clinic Schedule Grid
# =============================================================================

import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

import httplib2
from dateutil.parser import isoparse
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from models.constants import (
    FIRESTORE_SCOPES, FIRESTORE_TOKEN_FILE, MAIN_SCHEDULE_DOC, SCHEDULES_COLLECTION,
)
from models.data_models import ScheduleDocument
from core.data_manager import ScheduleCells, ScheduleDocumentStore
from core.exceptions import PersistenceError

logger = logging.getLogger(__name__)

# Failures below the HTTP layer: sockets, httplib2 transport, token refresh
TRANSPORT_ERRORS = (OSError, httplib2.HttpLib2Error, GoogleAuthError)


# -----------------------------------------------------------------------------
# Credentials
# -----------------------------------------------------------------------------

def _save_creds(creds: Credentials, token_file: str) -> None:
    os.makedirs(os.path.dirname(token_file) or ".", exist_ok=True)
    with open(token_file, "w", encoding="utf-8") as f:
        f.write(creds.to_json())


def load_credentials(token_file: str = FIRESTORE_TOKEN_FILE) -> Optional[Credentials]:
    """Stored user credentials, refreshed when expired. None when not signed in."""
    if not os.path.exists(token_file):
        return None
    creds = Credentials.from_authorized_user_file(token_file, scopes=FIRESTORE_SCOPES)
    if creds.expired and creds.refresh_token:
        creds.refresh(Request())
        _save_creds(creds, token_file)
    return creds


def sign_in(client_config: Dict[str, Any], token_file: str = FIRESTORE_TOKEN_FILE) -> Credentials:
    """Interactive OAuth sign-in; stores the token on success."""
    flow = InstalledAppFlow.from_client_config(client_config, scopes=FIRESTORE_SCOPES)
    creds = flow.run_local_server(port=0)
    _save_creds(creds, token_file)
    return creds


def client_config_from_env() -> Optional[Dict[str, Any]]:
    """OAuth client config from FIRESTORE_CLIENT_ID / FIRESTORE_CLIENT_SECRET."""
    client_id = os.environ.get("FIRESTORE_CLIENT_ID")
    client_secret = os.environ.get("FIRESTORE_CLIENT_SECRET")
    if not client_id or not client_secret:
        return None
    return {
        "installed": {
            "client_id": client_id,
            "client_secret": client_secret,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "redirect_uris": ["http://localhost", "http://localhost:8501/"],
        }
    }


# -----------------------------------------------------------------------------
# Firestore Value JSON
# -----------------------------------------------------------------------------

def to_firestore_value(value: Any) -> Dict[str, Any]:
    """Encode a plain Python value as a Firestore REST ``Value``."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, dict):
        return {"mapValue": {"fields": {str(k): to_firestore_value(v) for k, v in value.items()}}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [to_firestore_value(v) for v in value]}}
    if isinstance(value, datetime):
        return {"timestampValue": value.isoformat()}
    raise TypeError(f"Cannot store {type(value).__name__} in Firestore")


def from_firestore_value(value: Dict[str, Any]) -> Any:
    """Decode a Firestore REST ``Value`` into a plain Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return value["timestampValue"]
    if "mapValue" in value:
        fields = value["mapValue"].get("fields", {})
        return {k: from_firestore_value(v) for k, v in fields.items()}
    if "arrayValue" in value:
        return [from_firestore_value(v) for v in value["arrayValue"].get("values", [])]
    logger.warning(f"Unsupported Firestore value ignored: {list(value)}")
    return None


# -----------------------------------------------------------------------------
# Document store
# -----------------------------------------------------------------------------

class FirestoreDocumentStore(ScheduleDocumentStore):
    """One Firestore document, accessed through the Firestore REST API."""

    def __init__(self, project_id: str, service=None, credentials: Optional[Credentials] = None,
                 collection: str = SCHEDULES_COLLECTION, document_id: str = MAIN_SCHEDULE_DOC,
                 database: str = "(default)"):
        if service is None:
            if credentials is None:
                credentials = load_credentials()
            if credentials is None:
                raise PersistenceError("Not signed in to Firestore")
            service = build("firestore", "v1", credentials=credentials, cache_discovery=False)
        self.service = service
        self.name = f"projects/{project_id}/databases/{database}/documents/{collection}/{document_id}"

    def _documents(self):
        return self.service.projects().databases().documents()

    def fetch(self) -> Optional[ScheduleDocument]:
        try:
            raw = self._documents().get(name=self.name).execute()
        except HttpError as e:
            if e.resp.status == 404:
                return None
            logger.error(f"Failed to fetch {self.name}: {e}")
            raise PersistenceError(f"Failed to fetch schedule document: {e}")
        except TRANSPORT_ERRORS as e:
            logger.error(f"Failed to reach Firestore for {self.name}: {e}")
            raise PersistenceError(f"Failed to fetch schedule document: {e}")

        fields = raw.get("fields", {})
        cells = from_firestore_value(fields["scheduleCells"]) if "scheduleCells" in fields else {}
        updated_at = isoparse(raw["updateTime"]) if raw.get("updateTime") else None
        return ScheduleDocument(schedule_cells=cells if isinstance(cells, dict) else {},
                                updated_at=updated_at)

    def merge_set(self, schedule_cells: ScheduleCells) -> Optional[datetime]:
        body = {"fields": {"scheduleCells": to_firestore_value(schedule_cells)}}
        try:
            raw = self._documents().patch(
                name=self.name, body=body, updateMask_fieldPaths=["scheduleCells"],
            ).execute()
        except HttpError as e:
            logger.error(f"Failed to save {self.name}: {e}")
            raise PersistenceError(f"Failed to save schedule document: {e}")
        except TRANSPORT_ERRORS as e:
            logger.error(f"Failed to reach Firestore for {self.name}: {e}")
            raise PersistenceError(f"Failed to save schedule document: {e}")
        return isoparse(raw["updateTime"]) if raw.get("updateTime") else None
