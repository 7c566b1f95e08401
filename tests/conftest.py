"""Shared fixtures for meeting bot tests.

Provides:
- InMemoryMeetingRepository: test double for MeetingRepository that
  enforces both uniqueness rules (one recording job per owner + cleaned
  URL, one transcript per meeting) the way the database does
- Builders for Recall.ai bot payloads and participant-keyed transcripts
- Meeting factory, mocked Recall.ai client and settings
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from src.meetbot.meetings.bot.recall_schemas import RecallBot
from src.meetbot.meetings.schemas import (
    POLLABLE_STATUSES,
    Meeting,
    MeetingCreate,
    MeetingStatus,
    RecordingJob,
    Transcript,
)


# ── In-memory repository ─────────────────────────────────────────────────────


class InMemoryMeetingRepository:
    """In-memory test double for MeetingRepository."""

    def __init__(self) -> None:
        self.meetings: dict[uuid.UUID, Meeting] = {}
        self.jobs: dict[str, RecordingJob] = {}
        self.transcripts: dict[uuid.UUID, Transcript] = {}
        self.save_attempts = 0

    # Meetings

    async def create_meeting(self, data: MeetingCreate) -> Meeting:
        now = datetime.now(timezone.utc)
        meeting = Meeting(
            owner_id=data.owner_id,
            title=data.title,
            scheduled_start=data.scheduled_start,
            scheduled_end=data.scheduled_end,
            meeting_url=data.meeting_url,
            platform=data.platform,
            created_at=now,
            updated_at=now,
        )
        self.meetings[meeting.id] = meeting
        return meeting

    async def get_meeting(self, meeting_id: uuid.UUID | str) -> Meeting | None:
        return self.meetings.get(uuid.UUID(str(meeting_id)))

    async def get_meeting_by_bot_id(self, bot_id: str) -> Meeting | None:
        for m in self.meetings.values():
            if m.bot_id == bot_id:
                return m
        return None

    async def list_meetings_with_active_bots(self) -> list[Meeting]:
        results = [
            m
            for m in self.meetings.values()
            if m.bot_id is not None and m.status in POLLABLE_STATUSES
        ]
        return sorted(results, key=lambda m: (m.scheduled_start, str(m.id)))

    async def update_meeting_status(
        self, meeting_id: uuid.UUID | str, status: MeetingStatus
    ) -> Meeting:
        return self._update_meeting(meeting_id, status=status)

    async def link_bot(
        self,
        meeting_id: uuid.UUID | str,
        bot_id: str,
        status: MeetingStatus = MeetingStatus.IN_PROGRESS,
    ) -> Meeting:
        return self._update_meeting(meeting_id, bot_id=bot_id, status=status)

    async def clear_bot(self, meeting_id: uuid.UUID | str) -> Meeting:
        return self._update_meeting(meeting_id, bot_id=None, status=MeetingStatus.SCHEDULED)

    def _update_meeting(self, meeting_id: uuid.UUID | str, **changes) -> Meeting:
        key = uuid.UUID(str(meeting_id))
        m = self.meetings.get(key)
        if m is None:
            raise ValueError(f"Meeting not found: id={meeting_id}")
        updated = m.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})
        self.meetings[key] = updated
        return updated

    # Recording jobs

    async def get_recording_job(self, bot_id: str) -> RecordingJob | None:
        return self.jobs.get(bot_id)

    async def find_recording_job(
        self, owner_id: uuid.UUID | str, meeting_url: str
    ) -> RecordingJob | None:
        for job in self.jobs.values():
            if str(job.owner_id) == str(owner_id) and job.meeting_url == meeting_url:
                return job
        return None

    async def create_recording_job(self, job: RecordingJob) -> RecordingJob:
        existing = await self.find_recording_job(job.owner_id, job.meeting_url)
        if existing is not None:
            return existing
        self.jobs[job.id] = job
        return job

    async def update_recording_job_status(
        self, bot_id: str, status: str
    ) -> RecordingJob | None:
        job = self.jobs.get(bot_id)
        if job is None:
            return None
        job = job.model_copy(update={"status": status})
        self.jobs[bot_id] = job
        return job

    async def delete_recording_job(self, bot_id: str) -> None:
        self.jobs.pop(bot_id, None)

    # Transcripts

    async def get_transcript(self, meeting_id: uuid.UUID | str) -> Transcript | None:
        return self.transcripts.get(uuid.UUID(str(meeting_id)))

    async def has_transcript(self, meeting_id: uuid.UUID | str) -> bool:
        return uuid.UUID(str(meeting_id)) in self.transcripts

    async def save_transcript(self, transcript: Transcript) -> Transcript | None:
        self.save_attempts += 1
        if transcript.meeting_id in self.transcripts:
            return None
        self.transcripts[transcript.meeting_id] = transcript
        return transcript


# ── Recall.ai payload builders ───────────────────────────────────────────────


def make_bot(
    bot_id: str = "bot-1",
    statuses: tuple[str, ...] = ("ready",),
    recordings: list[dict] | None = None,
    status: str | None = None,
) -> RecallBot:
    """RecallBot with a status history and optional recordings."""
    return RecallBot.model_validate(
        {
            "id": bot_id,
            "status": status,
            "status_changes": [{"code": code} for code in statuses],
            "recordings": recordings or [],
        }
    )


def make_recording(
    transcript_status: str | None = "done",
    download_url: str | None = "https://recall.example.com/transcript.json",
) -> dict:
    """Recording dict with a transcript media shortcut."""
    shortcut: dict = {}
    if transcript_status is not None:
        shortcut["status"] = {"code": transcript_status}
    if download_url is not None:
        shortcut["data"] = {"download_url": download_url}
    return {"id": "rec-1", "media_shortcuts": {"transcript": shortcut}}


def participant_payload(*segments: tuple[int, str, list[tuple[str, float, float]]]) -> list:
    """Participant-keyed transcript payload from (id, name, [(text, start, end)]) tuples."""
    return [
        {
            "participant": {"id": pid, "name": name},
            "words": [
                {
                    "text": text,
                    "start_timestamp": {"relative": start},
                    "end_timestamp": {"relative": end},
                }
                for text, start, end in words
            ],
        }
        for pid, name, words in segments
    ]


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def repository():
    return InMemoryMeetingRepository()


@pytest.fixture
def owner_id():
    return uuid.uuid4()


@pytest.fixture
def mock_settings():
    """Mock settings with bot config."""
    return SimpleNamespace(APP_NAME="MeetBot", DEFAULT_JOIN_MINUTES_BEFORE=2)


@pytest.fixture
def mock_recall():
    """Mocked RecallClient; tests set return values per call."""
    recall = AsyncMock()
    recall.get_bot = AsyncMock()
    recall.create_bot = AsyncMock()
    recall.get_bot_transcript = AsyncMock(return_value=None)
    return recall


@pytest.fixture
def make_meeting(repository, owner_id):
    """Factory that stores a meeting in the in-memory repository."""

    async def _make(
        meeting_url: str | None = "https://meet.google.com/abc-defg-hij",
        title: str = "Weekly Sync",
        start_in: timedelta = timedelta(hours=1),
        owner: uuid.UUID | None = None,
    ) -> Meeting:
        start = datetime.now(timezone.utc) + start_in
        return await repository.create_meeting(
            MeetingCreate(
                owner_id=owner or owner_id,
                title=title,
                scheduled_start=start,
                scheduled_end=start + timedelta(hours=1),
                meeting_url=meeting_url,
            )
        )

    return _make


@pytest.fixture
def bot_factory():
    return make_bot


@pytest.fixture
def recording_factory():
    return make_recording


@pytest.fixture
def transcript_payload():
    return participant_payload
