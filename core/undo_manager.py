# =============================================================================
# Undo Manager
# =============================================================================

import copy
import logging
from typing import Any, Callable, List, Optional

from models.constants import UNDO_MAX_STATES

logger = logging.getLogger(__name__)


class UndoManager:
    """
    Bounded stack of deep-copied snapshots with a cursor.
    There is no redo: a push after an undo discards the entries above the cursor.
    """

    def __init__(self, max_states: int = UNDO_MAX_STATES,
                 on_update: Optional[Callable[["UndoManager"], None]] = None):
        if max_states < 1:
            raise ValueError("max_states must be at least 1")
        self.max_states = max_states
        self.on_update = on_update
        self.stack: List[Any] = []
        self.current_index = -1

    def _notify(self):
        if self.on_update is not None:
            self.on_update(self)

    def initialize(self, state: Any):
        """Reset to a single snapshot."""
        self.stack = [copy.deepcopy(state)]
        self.current_index = 0
        self._notify()

    def push_state(self, state: Any):
        """Append a snapshot, evicting the oldest once capacity is exceeded."""
        if self.current_index < len(self.stack) - 1:
            self.stack = self.stack[:self.current_index + 1]
        self.stack.append(copy.deepcopy(state))
        if len(self.stack) > self.max_states:
            self.stack.pop(0)
        self.current_index = len(self.stack) - 1
        self._notify()

    def peek(self) -> Optional[Any]:
        """Snapshot at the cursor (not copied; do not mutate)."""
        if self.current_index < 0:
            return None
        return self.stack[self.current_index]

    def can_undo(self) -> bool:
        return self.current_index > 0

    def undo(self) -> Optional[Any]:
        """Step back one snapshot; None when there is nothing to undo."""
        if not self.can_undo():
            logger.debug("Nothing to undo")
            return None
        self.current_index -= 1
        self._notify()
        return copy.deepcopy(self.stack[self.current_index])

    def __len__(self) -> int:
        return len(self.stack)
