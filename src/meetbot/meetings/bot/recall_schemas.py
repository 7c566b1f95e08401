"""Pydantic models for the Recall.ai bot API responses.

Only the fields the reconciliation flow depends on are declared; everything
else Recall.ai returns is preserved through extra="allow" and ignored.
Recall.ai populates these fields inconsistently across recording and
API versions, so every field is optional.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RecallStatusChange(BaseModel):
    """One entry of a bot's status_changes history."""

    model_config = ConfigDict(extra="allow")

    code: str
    message: str | None = None
    sub_code: str | None = None
    created_at: str | None = None


class RecallMediaStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: str | None = None


class RecallMediaData(BaseModel):
    model_config = ConfigDict(extra="allow")

    download_url: str | None = None


class RecallMediaShortcut(BaseModel):
    """A media artifact (transcript, mixed video) attached to a recording."""

    model_config = ConfigDict(extra="allow")

    status: RecallMediaStatus | None = None
    data: RecallMediaData | None = None


class RecallMediaShortcuts(BaseModel):
    model_config = ConfigDict(extra="allow")

    transcript: RecallMediaShortcut | None = None
    video_mixed_mp4: RecallMediaShortcut | None = None


class RecallRecording(BaseModel):
    """A recording produced by a bot, optionally carrying a transcript."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    status: Any = None
    media_shortcuts: RecallMediaShortcuts | None = None
    created_at: str | None = None

    @property
    def transcript_status_code(self) -> str | None:
        shortcut = self.media_shortcuts.transcript if self.media_shortcuts else None
        if shortcut is None or shortcut.status is None:
            return None
        return shortcut.status.code

    @property
    def transcript_download_url(self) -> str | None:
        shortcut = self.media_shortcuts.transcript if self.media_shortcuts else None
        if shortcut is None or shortcut.data is None:
            return None
        return shortcut.data.download_url or None


class RecallBot(BaseModel):
    """Recall.ai bot as returned by POST /bot/ and GET /bot/{id}/."""

    model_config = ConfigDict(extra="allow")

    id: str
    meeting_url: Any = None
    bot_name: str | None = None
    # A plain code on older API versions, {"code": ...} on newer ones
    status: Any = None
    status_changes: list[RecallStatusChange] = Field(default_factory=list)
    recordings: list[RecallRecording] = Field(default_factory=list)
    join_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def latest_status(self) -> str:
        """Effective status: last status_changes entry, else the top-level field.

        The history is more up to date than the top-level status field.
        """
        if self.status_changes:
            return self.status_changes[-1].code
        status = self.status
        if isinstance(status, dict):
            status = status.get("code")
        return str(status) if status else "unknown"
