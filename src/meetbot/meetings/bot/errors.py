"""Exceptions raised by the meeting bot subsystem.

Two families:
- RecallError: failures talking to the Recall.ai API. Poll paths treat
  them as "try again next tick"; on-demand paths surface them.
- BotError: request-level rejections from BotManager (non-retryable).
"""

from __future__ import annotations


# -- Recall.ai ----------------------------------------------------------------


class RecallError(Exception):
    """Base class for Recall.ai client failures."""


class RecallAPIError(RecallError):
    """Recall.ai answered with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by Recall.ai.
        message: Provider message/detail if present, else the HTTP reason.
    """

    def __init__(self, status_code: int, message: str, operation: str = "") -> None:
        self.status_code = status_code
        self.message = message
        self.operation = operation
        prefix = f"Recall.ai {operation} failed" if operation else "Recall.ai request failed"
        super().__init__(f"{prefix} ({status_code}): {message}")


class BotNotFoundError(RecallAPIError):
    """Recall.ai no longer recognizes the bot (404)."""


class RecallTimeoutError(RecallError):
    """A Recall.ai request exceeded its timeout. Means "not ready yet"."""

    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"Recall.ai {operation} timed out after {timeout}s")


# -- Bot lifecycle ------------------------------------------------------------


class BotError(Exception):
    """Base class for bot lifecycle request errors."""


class MeetingNotFoundError(BotError):
    """No meeting (or no meeting tracking the given bot) exists."""


class UnsupportedPlatformError(BotError):
    """The meeting URL is missing or its host is not allow-listed."""

    def __init__(self, meeting_url: str | None) -> None:
        self.meeting_url = meeting_url
        if not meeting_url:
            super().__init__("Meeting URL not found - cannot create bot")
        else:
            super().__init__(f"Meeting platform not supported by Recall.ai: {meeting_url}")


class BotAlreadyTrackedError(BotError):
    """The meeting already has a linked bot; remove tracking first."""

    def __init__(self, meeting_id: str, bot_id: str) -> None:
        self.meeting_id = meeting_id
        self.bot_id = bot_id
        super().__init__(f"Bot already exists for meeting {meeting_id}: {bot_id}")
