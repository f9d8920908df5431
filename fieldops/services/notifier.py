"""User-facing message channel passed explicitly to the draft services."""
import logging
from typing import List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Capability the view layer hands to a service to surface messages."""

    def message(self, text: Optional[str]) -> None:
        """Show (or with None, clear) a success/info message."""

    def error(self, text: Optional[str]) -> None:
        """Show (or with None, clear) an error message."""


class LoggingNotifier:
    """Notifier used when nobody is listening: messages go to the log only."""

    def message(self, text: Optional[str]) -> None:
        if text:
            logger.info(f"[NOTIFY] {text}")

    def error(self, text: Optional[str]) -> None:
        if text:
            logger.warning(f"[NOTIFY] {text}")


class RecordingNotifier:
    """Keeps the latest message/error so the JSON adapter can return them with state."""

    def __init__(self):
        self.last_message: Optional[str] = None
        self.last_error: Optional[str] = None
        self.history: List[Tuple[str, str]] = []

    def message(self, text: Optional[str]) -> None:
        self.last_message = text
        if text:
            self.history.append(('message', text))

    def error(self, text: Optional[str]) -> None:
        self.last_error = text
        if text:
            self.history.append(('error', text))

    def clear(self) -> None:
        self.last_message = None
        self.last_error = None

    def to_dict(self):
        return {'message': self.last_message, 'error': self.last_error}
