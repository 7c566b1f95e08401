"""TranscriptRecorder -- persists a finished bot's transcript at most once.

Shared by BotPoller (scheduled and forced ticks) and BotManager (manual
status checks). The existence check before insert only saves a provider
round trip; exactly-once comes from the unique constraint on
transcripts.meeting_id, surfaced by MeetingRepository.save_transcript
returning None on conflict.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from src.meetbot.meetings.bot.normalizer import transcript_duration_minutes
from src.meetbot.meetings.bot.readiness import Readiness
from src.meetbot.meetings.schemas import CanonicalTranscript, Meeting, Transcript

if TYPE_CHECKING:
    from src.meetbot.meetings.bot.recall_client import RecallClient
    from src.meetbot.meetings.repository import MeetingRepository

logger = structlog.get_logger(__name__)


def build_transcript(
    meeting: Meeting, bot_id: str, canonical: CanonicalTranscript
) -> Transcript:
    """Build the persisted Transcript from a normalized body."""
    return Transcript(
        meeting_id=meeting.id,
        bot_id=bot_id,
        content=canonical.text,
        speakers=list(canonical.speakers),
        words=list(canonical.words),
        duration=transcript_duration_minutes(canonical.words),
        processed_at=datetime.now(timezone.utc),
    )


class TranscriptRecorder:
    """Fetches (if needed), normalizes and stores transcripts.

    Args:
        recall_client: RecallClient for transcript downloads.
        repository: MeetingRepository for the check-then-insert write.
    """

    def __init__(
        self, recall_client: RecallClient, repository: MeetingRepository
    ) -> None:
        self._recall = recall_client
        self._repository = repository

    async def record(self, meeting: Meeting, readiness: Readiness) -> Transcript | None:
        """Store the transcript for a ready bot unless one already exists.

        Uses the body the readiness check already fetched when available,
        otherwise downloads it. An empty body is not stored: the next
        poll tries again.

        Returns:
            The newly stored Transcript, or None if nothing was written
            (not ready, no body yet, or another writer got there first).

        Raises:
            RecallError: If the transcript download fails.
        """
        if not (readiness.is_ready and readiness.has_transcript):
            return None

        if await self._repository.has_transcript(meeting.id):
            logger.debug("transcript.already_stored", meeting_id=str(meeting.id))
            return None

        canonical = readiness.transcript
        if canonical is None:
            canonical = await self._recall.get_bot_transcript(readiness.bot_id)

        if canonical is None or canonical.is_empty:
            logger.info(
                "transcript.body_not_ready",
                meeting_id=str(meeting.id),
                bot_id=readiness.bot_id,
            )
            return None

        saved = await self._repository.save_transcript(
            build_transcript(meeting, readiness.bot_id, canonical)
        )
        if saved is not None:
            logger.info(
                "transcript.saved",
                meeting_id=str(meeting.id),
                bot_id=readiness.bot_id,
                duration_minutes=saved.duration,
                speaker_count=len(saved.speakers),
            )
        return saved
