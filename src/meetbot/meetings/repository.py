"""Meeting repository -- async CRUD for meetings, recording jobs and transcripts.

Provides MeetingRepository with the session_factory callable pattern and
handles serialization between Pydantic schemas and SQLAlchemy models.

Two writes are "insert if not exists" and lean on database uniqueness
instead of application locks:
- create_recording_job: a conflict on (owner_id, meeting_url) returns the
  row that won the race.
- save_transcript: a conflict on meeting_id is a benign duplicate and
  returns None.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.meetbot.meetings.models import (
    MeetingModel,
    RecordingJobModel,
    TranscriptModel,
)
from src.meetbot.meetings.schemas import (
    POLLABLE_STATUSES,
    Meeting,
    MeetingCreate,
    MeetingStatus,
    Platform,
    RecordingJob,
    Speaker,
    Transcript,
    TranscriptWord,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        owner_id=model.owner_id,
        title=model.title,
        scheduled_start=model.scheduled_start,
        scheduled_end=model.scheduled_end,
        meeting_url=model.meeting_url,
        platform=Platform(model.platform) if model.platform else None,
        status=MeetingStatus(model.status),
        bot_id=model.bot_id,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_recording_job(model: RecordingJobModel) -> RecordingJob:
    """Convert RecordingJobModel to RecordingJob schema."""
    return RecordingJob(
        id=model.id,
        owner_id=model.owner_id,
        meeting_url=model.meeting_url,
        bot_name=model.bot_name,
        platform=Platform(model.platform) if model.platform else None,
        status=model.status,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_transcript(model: TranscriptModel) -> Transcript:
    """Convert TranscriptModel to Transcript schema."""
    return Transcript(
        id=model.id,
        meeting_id=model.meeting_id,
        bot_id=model.bot_id,
        content=model.content or "",
        speakers=[Speaker.model_validate(s) for s in (model.speakers_data or [])],
        words=[TranscriptWord.model_validate(w) for w in (model.words_data or [])],
        duration=model.duration or 0,
        processed_at=model.processed_at,
        created_at=model.created_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async CRUD operations for meetings, recording jobs and transcripts.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(self, data: MeetingCreate) -> Meeting:
        """Create a meeting from calendar event data."""
        async for session in self._session_factory():
            model = MeetingModel(
                owner_id=data.owner_id,
                title=data.title,
                scheduled_start=data.scheduled_start,
                scheduled_end=data.scheduled_end,
                meeting_url=data.meeting_url,
                platform=data.platform.value if data.platform else None,
                status=MeetingStatus.SCHEDULED.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    async def get_meeting(self, meeting_id: uuid.UUID | str) -> Meeting | None:
        """Get a meeting by ID."""
        async for session in self._session_factory():
            model = await session.get(MeetingModel, _as_uuid(meeting_id))
            if model is None:
                return None
            return _model_to_meeting(model)

    async def get_meeting_by_bot_id(self, bot_id: str) -> Meeting | None:
        """Get the meeting currently tracking a Recall.ai bot."""
        async for session in self._session_factory():
            stmt = select(MeetingModel).where(MeetingModel.bot_id == bot_id)
            result = await session.execute(stmt)
            model = result.scalars().first()
            if model is None:
                return None
            return _model_to_meeting(model)

    async def list_meetings_with_active_bots(self) -> list[Meeting]:
        """Meetings with a linked bot whose status may still yield a transcript.

        Ordered by scheduled_start then id so a poll tick visits meetings
        in a stable order.
        """
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel)
                .where(
                    MeetingModel.bot_id.is_not(None),
                    MeetingModel.status.in_([s.value for s in POLLABLE_STATUSES]),
                )
                .order_by(MeetingModel.scheduled_start, MeetingModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_meeting(m) for m in result.scalars().all()]

    async def update_meeting_status(
        self, meeting_id: uuid.UUID | str, status: MeetingStatus
    ) -> Meeting:
        """Update a meeting's lifecycle status.

        Raises:
            ValueError: If meeting not found.
        """
        async for session in self._session_factory():
            model = await self._require_meeting(session, meeting_id)
            model.status = status.value
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    async def link_bot(
        self,
        meeting_id: uuid.UUID | str,
        bot_id: str,
        status: MeetingStatus = MeetingStatus.IN_PROGRESS,
    ) -> Meeting:
        """Attach a Recall.ai bot to a meeting and move it to `status`.

        Raises:
            ValueError: If meeting not found.
        """
        async for session in self._session_factory():
            model = await self._require_meeting(session, meeting_id)
            model.bot_id = bot_id
            model.status = status.value
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    async def clear_bot(self, meeting_id: uuid.UUID | str) -> Meeting:
        """Remove bot tracking from a meeting and reset it to scheduled.

        Raises:
            ValueError: If meeting not found.
        """
        async for session in self._session_factory():
            model = await self._require_meeting(session, meeting_id)
            model.bot_id = None
            model.status = MeetingStatus.SCHEDULED.value
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    @staticmethod
    async def _require_meeting(
        session: AsyncSession, meeting_id: uuid.UUID | str
    ) -> MeetingModel:
        model = await session.get(MeetingModel, _as_uuid(meeting_id))
        if model is None:
            raise ValueError(f"Meeting not found: id={meeting_id}")
        return model

    # ── Recording Jobs ───────────────────────────────────────────────────

    async def get_recording_job(self, bot_id: str) -> RecordingJob | None:
        """Get a recording job by Recall.ai bot id."""
        async for session in self._session_factory():
            model = await session.get(RecordingJobModel, bot_id)
            if model is None:
                return None
            return _model_to_recording_job(model)

    async def find_recording_job(
        self, owner_id: uuid.UUID | str, meeting_url: str
    ) -> RecordingJob | None:
        """Look up a recording job by its dedup key (owner, cleaned URL)."""
        async for session in self._session_factory():
            stmt = select(RecordingJobModel).where(
                RecordingJobModel.owner_id == _as_uuid(owner_id),
                RecordingJobModel.meeting_url == meeting_url,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_recording_job(model)

    async def create_recording_job(self, job: RecordingJob) -> RecordingJob:
        """Insert a recording job, or return the existing row for its dedup key.

        When a concurrent caller already inserted a job for the same
        (owner_id, meeting_url), the unique constraint rejects this insert
        and the winning row is returned instead.
        """
        async for session in self._session_factory():
            model = RecordingJobModel(
                id=job.id,
                owner_id=job.owner_id,
                meeting_url=job.meeting_url,
                bot_name=job.bot_name,
                platform=job.platform.value if job.platform else None,
                status=job.status,
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                stmt = select(RecordingJobModel).where(
                    RecordingJobModel.owner_id == job.owner_id,
                    RecordingJobModel.meeting_url == job.meeting_url,
                )
                result = await session.execute(stmt)
                existing = result.scalar_one_or_none()
                if existing is None:
                    raise
                logger.info(
                    "recording_job.conflict_resolved",
                    attempted_bot_id=job.id,
                    existing_bot_id=existing.id,
                )
                return _model_to_recording_job(existing)
            await session.refresh(model)
            return _model_to_recording_job(model)

    async def update_recording_job_status(
        self, bot_id: str, status: str
    ) -> RecordingJob | None:
        """Mirror the latest provider status onto the local job row."""
        async for session in self._session_factory():
            model = await session.get(RecordingJobModel, bot_id)
            if model is None:
                return None
            if model.status != status:
                model.status = status
                model.updated_at = datetime.now(timezone.utc)
                await session.commit()
                await session.refresh(model)
            return _model_to_recording_job(model)

    async def delete_recording_job(self, bot_id: str) -> None:
        """Drop a local job row the provider no longer recognizes."""
        async for session in self._session_factory():
            await session.execute(
                delete(RecordingJobModel).where(RecordingJobModel.id == bot_id)
            )
            await session.commit()

    # ── Transcripts ──────────────────────────────────────────────────────

    async def get_transcript(self, meeting_id: uuid.UUID | str) -> Transcript | None:
        """Get the transcript for a meeting."""
        async for session in self._session_factory():
            stmt = select(TranscriptModel).where(
                TranscriptModel.meeting_id == _as_uuid(meeting_id)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_transcript(model)

    async def has_transcript(self, meeting_id: uuid.UUID | str) -> bool:
        """Cheap existence check used to skip meetings before polling."""
        async for session in self._session_factory():
            stmt = select(TranscriptModel.id).where(
                TranscriptModel.meeting_id == _as_uuid(meeting_id)
            )
            result = await session.execute(stmt)
            return result.first() is not None

    async def save_transcript(self, transcript: Transcript) -> Transcript | None:
        """Insert a transcript unless one already exists for the meeting.

        Returns:
            The persisted Transcript, or None when another writer already
            stored one for this meeting (benign duplicate).
        """
        async for session in self._session_factory():
            model = TranscriptModel(
                id=transcript.id,
                meeting_id=transcript.meeting_id,
                bot_id=transcript.bot_id,
                content=transcript.content,
                speakers_data=[s.model_dump(mode="json") for s in transcript.speakers],
                words_data=[w.model_dump(mode="json") for w in transcript.words],
                duration=transcript.duration,
                processed_at=transcript.processed_at,
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "transcript.duplicate_ignored",
                    meeting_id=str(transcript.meeting_id),
                    bot_id=transcript.bot_id,
                )
                return None
            await session.refresh(model)
            return _model_to_transcript(model)
