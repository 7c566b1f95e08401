"""MeetingRepository tests against SQLite (aiosqlite).

Exercises the SQLAlchemy models and both uniqueness constraints: a
conflicting recording job insert resolves to the existing row, and a
second transcript for a meeting is ignored.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from src.meetbot.core.database import Base
from src.meetbot.meetings import models  # noqa: F401
from src.meetbot.meetings.repository import MeetingRepository
from src.meetbot.meetings.schemas import (
    MeetingCreate,
    MeetingStatus,
    Platform,
    RecordingJob,
    Speaker,
    Transcript,
    TranscriptWord,
)


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """File-backed SQLite engine so every session sees the same database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'meetbot.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def sql_repository(test_engine):
    async def session_factory():
        async with AsyncSession(test_engine, expire_on_commit=False) as session:
            yield session

    return MeetingRepository(session_factory=session_factory)


@pytest.fixture
def meeting_data():
    start = datetime.now(timezone.utc) + timedelta(hours=1)
    return MeetingCreate(
        owner_id=uuid.uuid4(),
        title="Design Review",
        scheduled_start=start,
        scheduled_end=start + timedelta(hours=1),
        meeting_url="https://zoom.us/j/123?pwd=abc",
        platform=Platform.ZOOM,
    )


def _transcript(meeting_id: uuid.UUID, content: str = "Hi") -> Transcript:
    return Transcript(
        meeting_id=meeting_id,
        bot_id="bot-1",
        content=content,
        speakers=[Speaker(id="1", name="Ana")],
        words=[TranscriptWord(text="Hi", start_time=0, end_time=0.5, speaker="1")],
        duration=0,
        processed_at=datetime.now(timezone.utc),
    )


# ── Meetings ────────────────────────────────────────────────────────────────


class TestMeetings:
    @pytest.mark.asyncio
    async def test_create_and_get(self, sql_repository, meeting_data):
        meeting = await sql_repository.create_meeting(meeting_data)
        fetched = await sql_repository.get_meeting(meeting.id)

        assert fetched.title == "Design Review"
        assert fetched.platform == Platform.ZOOM
        assert fetched.status == MeetingStatus.SCHEDULED
        assert fetched.bot_id is None

    @pytest.mark.asyncio
    async def test_get_missing(self, sql_repository):
        assert await sql_repository.get_meeting(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_link_and_clear_bot(self, sql_repository, meeting_data):
        meeting = await sql_repository.create_meeting(meeting_data)

        linked = await sql_repository.link_bot(meeting.id, "bot-1")
        assert linked.bot_id == "bot-1"
        assert linked.status == MeetingStatus.IN_PROGRESS
        assert (await sql_repository.get_meeting_by_bot_id("bot-1")).id == meeting.id

        cleared = await sql_repository.clear_bot(meeting.id)
        assert cleared.bot_id is None
        assert cleared.status == MeetingStatus.SCHEDULED
        assert await sql_repository.get_meeting_by_bot_id("bot-1") is None

    @pytest.mark.asyncio
    async def test_update_missing_meeting_raises(self, sql_repository):
        with pytest.raises(ValueError):
            await sql_repository.update_meeting_status(uuid.uuid4(), MeetingStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_active_bot_listing(self, sql_repository, meeting_data):
        no_bot = await sql_repository.create_meeting(meeting_data)
        active = await sql_repository.create_meeting(meeting_data)
        completed = await sql_repository.create_meeting(meeting_data)
        errored = await sql_repository.create_meeting(meeting_data)
        await sql_repository.link_bot(active.id, "bot-a")
        await sql_repository.link_bot(completed.id, "bot-c", MeetingStatus.COMPLETED)
        await sql_repository.link_bot(errored.id, "bot-e", MeetingStatus.ERROR)

        listed = await sql_repository.list_meetings_with_active_bots()

        ids = {m.id for m in listed}
        assert ids == {active.id, completed.id}
        assert no_bot.id not in ids


# ── Recording jobs ──────────────────────────────────────────────────────────


class TestRecordingJobs:
    @pytest.mark.asyncio
    async def test_create_find_update_delete(self, sql_repository):
        owner = uuid.uuid4()
        job = await sql_repository.create_recording_job(
            RecordingJob(
                id="bot-1",
                owner_id=owner,
                meeting_url="https://zoom.us/j/123?pwd=abc",
                platform=Platform.ZOOM,
                status="ready",
            )
        )
        assert job.id == "bot-1"

        found = await sql_repository.find_recording_job(owner, "https://zoom.us/j/123?pwd=abc")
        assert found.id == "bot-1"
        assert await sql_repository.find_recording_job(uuid.uuid4(), found.meeting_url) is None

        updated = await sql_repository.update_recording_job_status("bot-1", "call_ended")
        assert updated.status == "call_ended"
        assert await sql_repository.update_recording_job_status("bot-x", "done") is None

        await sql_repository.delete_recording_job("bot-1")
        assert await sql_repository.get_recording_job("bot-1") is None

    @pytest.mark.asyncio
    async def test_conflict_returns_existing_row(self, sql_repository):
        owner = uuid.uuid4()
        url = "https://meet.google.com/abc-defg-hij"
        await sql_repository.create_recording_job(
            RecordingJob(id="bot-first", owner_id=owner, meeting_url=url)
        )

        winner = await sql_repository.create_recording_job(
            RecordingJob(id="bot-second", owner_id=owner, meeting_url=url)
        )

        assert winner.id == "bot-first"
        assert await sql_repository.get_recording_job("bot-second") is None


# ── Transcripts ─────────────────────────────────────────────────────────────


class TestTranscripts:
    @pytest.mark.asyncio
    async def test_save_and_read_back(self, sql_repository, meeting_data):
        meeting = await sql_repository.create_meeting(meeting_data)

        saved = await sql_repository.save_transcript(_transcript(meeting.id))

        assert saved is not None
        assert await sql_repository.has_transcript(meeting.id)
        stored = await sql_repository.get_transcript(meeting.id)
        assert stored.content == "Hi"
        assert stored.speakers == [Speaker(id="1", name="Ana")]
        assert stored.words[0].end_time == 0.5

    @pytest.mark.asyncio
    async def test_duplicate_is_ignored(self, sql_repository, meeting_data):
        meeting = await sql_repository.create_meeting(meeting_data)

        first = await sql_repository.save_transcript(_transcript(meeting.id, "first"))
        second = await sql_repository.save_transcript(_transcript(meeting.id, "second"))

        assert first is not None
        assert second is None
        assert (await sql_repository.get_transcript(meeting.id)).content == "first"
