# =============================================================================
# Activity Log for Streamlit
# =============================================================================

import logging
import time
from typing import List, Optional

logger = logging.getLogger(__name__)


class ActivityLog:
    """Collects user-facing messages (confirmations, rejections, save errors) for display."""

    def __init__(self, max_messages: int = 50):
        self.messages: List[str] = []
        self.max_messages = max_messages
        self.start_time = time.time()

    def log(self, message: str, level: int = logging.INFO):
        """Add a message with elapsed-time stamp."""
        elapsed = time.time() - self.start_time
        self.messages.append(f"[{elapsed:.2f}s] {message}")
        if len(self.messages) > self.max_messages:
            self.messages = self.messages[-self.max_messages:]
        logger.log(level, message)

    def warn(self, message: str):
        self.log(message, logging.WARNING)

    def last(self) -> Optional[str]:
        return self.messages[-1] if self.messages else None

    def get_messages(self) -> List[str]:
        """Get all collected messages."""
        return list(self.messages)

    def get_log_text(self) -> str:
        """Get all messages as a single text string."""
        return "\n".join(self.messages)

    def clear(self):
        """Clear all messages."""
        self.messages = []
        self.start_time = time.time()


# Global activity log instance
activity_log = ActivityLog()
