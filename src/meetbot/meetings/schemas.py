"""Pydantic v2 schemas for the meeting bot domain.

Defines the data contracts for meetings, recording jobs (Recall.ai bots
tracked locally), and normalized transcripts. The bot client, readiness
oracle, lifecycle manager and poller all import from this module.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Lifecycle status of a meeting from scheduling through transcript."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"

    def can_transition_to(self, target: MeetingStatus) -> bool:
        """Forward-only transitions; the reset on tracking removal bypasses this."""
        return target in _FORWARD_TRANSITIONS[self]


_FORWARD_TRANSITIONS: dict[MeetingStatus, frozenset[MeetingStatus]] = {
    MeetingStatus.SCHEDULED: frozenset(
        {MeetingStatus.IN_PROGRESS, MeetingStatus.COMPLETED, MeetingStatus.ERROR}
    ),
    MeetingStatus.IN_PROGRESS: frozenset({MeetingStatus.COMPLETED, MeetingStatus.ERROR}),
    MeetingStatus.COMPLETED: frozenset({MeetingStatus.ERROR}),
    MeetingStatus.ERROR: frozenset(),
}


class Platform(str, Enum):
    """Video platforms a Recall.ai bot can join."""

    ZOOM = "zoom"
    GOOGLE_MEET = "meet"
    TEAMS = "teams"


# Statuses whose meetings are still polled for a transcript
POLLABLE_STATUSES = (
    MeetingStatus.SCHEDULED,
    MeetingStatus.IN_PROGRESS,
    MeetingStatus.COMPLETED,
)


# ── Meeting ──────────────────────────────────────────────────────────────────


class Meeting(BaseModel):
    """Meeting owned by a user, created by calendar sync."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    owner_id: uuid.UUID
    title: str
    scheduled_start: datetime
    scheduled_end: datetime
    meeting_url: str | None = None
    platform: Platform | None = None
    status: MeetingStatus = MeetingStatus.SCHEDULED
    bot_id: str | None = None
    created_at: datetime
    updated_at: datetime


class MeetingCreate(BaseModel):
    """Request schema for creating a meeting (calendar sync boundary)."""

    owner_id: uuid.UUID
    title: str
    scheduled_start: datetime
    scheduled_end: datetime
    meeting_url: str | None = None
    platform: Platform | None = None


# ── Recording Job ────────────────────────────────────────────────────────────


class RecordingJob(BaseModel):
    """Local mirror of a Recall.ai bot.

    Keyed by the provider bot id; (owner_id, meeting_url) is the dedup key,
    where meeting_url is always the cleaned URL.
    """

    id: str
    owner_id: uuid.UUID
    meeting_url: str
    bot_name: str | None = None
    platform: Platform | None = None
    status: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Transcript Models ────────────────────────────────────────────────────────


class TranscriptWord(BaseModel):
    """A single timed word. Times are seconds relative to recording start."""

    text: str
    start_time: float = 0.0
    end_time: float = 0.0
    speaker: str | None = None


class Speaker(BaseModel):
    """A distinct meeting participant heard in the transcript."""

    id: str
    name: str


class CanonicalTranscript(BaseModel):
    """Normalized transcript, independent of the raw payload shape."""

    text: str = ""
    words: list[TranscriptWord] = Field(default_factory=list)
    speakers: list[Speaker] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text


class Transcript(BaseModel):
    """Persisted transcript. At most one per meeting, immutable once stored."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    meeting_id: uuid.UUID
    bot_id: str | None = None
    content: str = ""
    speakers: list[Speaker] = Field(default_factory=list)
    words: list[TranscriptWord] = Field(default_factory=list)
    duration: int = 0
    processed_at: datetime
    created_at: datetime | None = None
