"""Meeting persistence models.

Three SQLAlchemy models:
- MeetingModel: Meetings synced from the calendar, with the linked bot id
- RecordingJobModel: Recall.ai bots created by BotManager
- TranscriptModel: Normalized transcripts, one per meeting

Both uniqueness invariants of the reconciliation flow live here as
database constraints:
- uq_recording_jobs_owner_url: one bot per (owner, cleaned meeting URL)
- uq_transcripts_meeting: one transcript per meeting

Column types are dialect-neutral (Uuid, JSON) so the same models run on
PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.meetbot.core.database import Base


class MeetingModel(Base):
    """Meeting owned by a user.

    bot_id is the Recall.ai bot currently tracking this meeting; cleared
    (and status reset to scheduled) when tracking is removed.
    """

    __tablename__ = "meetings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    scheduled_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    scheduled_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    meeting_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    platform: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default="scheduled",
        server_default="scheduled",
        index=True,
    )
    bot_id: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class RecordingJobModel(Base):
    """Recall.ai bot tracked locally, keyed by the provider bot id.

    status mirrors the latest provider status code seen by the poller.
    Rows are never deleted by the normal flow; a row is only dropped when
    the provider no longer recognizes the bot or reports it failed.
    """

    __tablename__ = "recording_jobs"
    __table_args__ = (
        UniqueConstraint(
            "owner_id",
            "meeting_url",
            name="uq_recording_jobs_owner_url",
        ),
    )

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    meeting_url: Mapped[str] = mapped_column(Text, nullable=False)
    bot_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class TranscriptModel(Base):
    """Normalized meeting transcript.

    Speakers and words stored as JSON arrays; content is the full text
    used by downstream content generation.
    """

    __tablename__ = "transcripts"
    __table_args__ = (
        UniqueConstraint("meeting_id", name="uq_transcripts_meeting"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    bot_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    content: Mapped[str] = mapped_column(Text, default="", server_default="")
    speakers_data: Mapped[list] = mapped_column(JSON, default=list)
    words_data: Mapped[list] = mapped_column(JSON, default=list)
    duration: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
