# =============================================================================
# Constants and Configuration for the Clinic Schedule Grid
# =============================================================================

import os

# Remote document store (Firestore) configuration
FIRESTORE_SCOPES = ['https://www.googleapis.com/auth/datastore']
FIRESTORE_TOKEN_FILE = os.path.join('data', 'tokens', 'firestore_token.json')
SCHEDULES_COLLECTION = 'schedules'
MAIN_SCHEDULE_DOC = 'mainSchedule'
BACKUP_COLLECTION = 'backup'
BACKUP_DOC = 'latest'

# Local data directory (JSON document store, settings, backups)
DATA_DIR = 'data'

# Grid layout
SCHEDULE_START_HOUR = 7
SCHEDULE_END_HOUR = 17          # last slot is "17:00", no "17:30"
SLOT_MINUTES = (0, 30)

# Cell display
BREAK_TEXT = 'Przerwa'
DEFAULT_CELL_COLOR = '#e0e0e0'
CONTENT_CELL_COLOR = '#ffffff'

# CSS-style tags emitted by the display projector
BREAK_CLASS = 'break-cell'
SPLIT_CLASS = 'split-cell'
MASSAGE_CLASS = 'massage-text'
PNF_CLASS = 'pnf-text'
EVERY_OTHER_DAY_CLASS = 'every-other-day-text'
TREATMENT_END_CLASS = 'treatment-end-marker'

# Limits
MAX_CELL_TEXT_LENGTH = 35       # enforced when the user commits an edit
MAX_FREE_TEXT_LENGTH = 50       # enforced by validation before persistence
MAX_HISTORY_ENTRIES = 10
UNDO_MAX_STATES = 20
MAX_EXTENSION_DAYS = 365

# Treatment window: a course lasts this many business days before extensions
BASE_TREATMENT_DAYS = 15

# Whitelists for the persisted cell shape
ALLOWED_CELL_KEYS = (
    'content',
    'content1',
    'content2',
    'isSplit',
    'isBreak',
    'isMassage',
    'isMassage1',
    'isMassage2',
    'isPnf',
    'isPnf1',
    'isPnf2',
    'isEveryOtherDay',
    'isEveryOtherDay1',
    'isEveryOtherDay2',
    'treatmentStartDate',
    'treatmentExtensionDays',
    'treatmentEndDate',
    'additionalInfo',
    'treatmentData1',
    'treatmentData2',
    'history',
)

ALLOWED_TREATMENT_KEYS = ('startDate', 'extensionDays', 'endDate', 'additionalInfo')

BOOLEAN_CELL_KEYS = (
    'isSplit', 'isBreak',
    'isMassage', 'isMassage1', 'isMassage2',
    'isPnf', 'isPnf1', 'isPnf2',
    'isEveryOtherDay', 'isEveryOtherDay1', 'isEveryOtherDay2',
)

# Special-style flags: attribute name on Assignment -> persisted key stem
FLAG_KEYS = {
    'is_massage': 'isMassage',
    'is_pnf': 'isPnf',
    'is_every_other_day': 'isEveryOtherDay',
}
