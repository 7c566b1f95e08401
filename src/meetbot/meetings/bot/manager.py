"""BotManager for meeting bot lifecycle management.

The only place new Recall.ai bots are created. Handles:
- ensure_bot: validate the meeting URL, dedup on (owner, cleaned URL),
  reuse a live bot or create a new one, link it to the meeting
- remove_bot: drop local tracking (the Recall.ai bot itself is untouched)
- check_meeting: manual on-demand status check that may store the transcript

Dedup relies on the recording_jobs unique constraint: if two ensure_bot
calls race past the lookup, the second insert resolves to the first row.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from src.meetbot.meetings.bot.errors import (
    BotAlreadyTrackedError,
    BotNotFoundError,
    MeetingNotFoundError,
    RecallTimeoutError,
    UnsupportedPlatformError,
)
from src.meetbot.meetings.bot.readiness import (
    FAILED_STATUSES,
    READY_STATUSES,
    TIMEOUT_STATUS,
    ReadinessOracle,
)
from src.meetbot.meetings.bot.transcripts import TranscriptRecorder
from src.meetbot.meetings.bot.urls import (
    clean_meeting_url,
    detect_platform,
    extract_meeting_id,
    is_supported_meeting_url,
)
from src.meetbot.meetings.schemas import (
    Meeting,
    MeetingStatus,
    RecordingJob,
    Transcript,
)

if TYPE_CHECKING:
    from src.meetbot.meetings.bot.recall_client import RecallClient
    from src.meetbot.meetings.repository import MeetingRepository

logger = structlog.get_logger(__name__)

# Default minutes before start the bot joins
DEFAULT_JOIN_MINUTES_BEFORE = 2

# A bot in one of these states will never join another call
TERMINAL_STATUSES = READY_STATUSES | FAILED_STATUSES


class BotCheckResult(BaseModel):
    """Outcome of a manual bot status check."""

    bot_id: str
    status: str
    is_ready: bool
    has_transcript: bool
    meeting: Meeting
    transcript: Transcript | None = None


class BotManager:
    """Manages Recall.ai bot creation, reuse and tracking for meetings.

    Args:
        recall_client: RecallClient for Recall.ai API calls.
        repository: MeetingRepository for meetings, jobs and transcripts.
        settings: Application settings (APP_NAME for the bot display name).
        oracle: ReadinessOracle shared with the poller.
        recorder: TranscriptRecorder shared with the poller.
    """

    def __init__(
        self,
        recall_client: RecallClient,
        repository: MeetingRepository,
        settings: object,
        oracle: ReadinessOracle | None = None,
        recorder: TranscriptRecorder | None = None,
    ) -> None:
        self._recall = recall_client
        self._repository = repository
        self._settings = settings
        self._oracle = oracle or ReadinessOracle(recall_client)
        self._recorder = recorder or TranscriptRecorder(recall_client, repository)

    # ── Creation ─────────────────────────────────────────────────────────

    async def ensure_bot(
        self,
        meeting_id: uuid.UUID | str,
        join_lead_minutes: int = DEFAULT_JOIN_MINUTES_BEFORE,
    ) -> RecordingJob:
        """Attach a recording bot to a meeting, reusing one when possible.

        Args:
            meeting_id: Meeting to record.
            join_lead_minutes: How many minutes before start the bot joins.

        Returns:
            The RecordingJob now linked to the meeting.

        Raises:
            MeetingNotFoundError: Unknown meeting.
            UnsupportedPlatformError: Missing or non-allow-listed URL.
            BotAlreadyTrackedError: The meeting already has a bot.
            RecallError: Recall.ai rejected or timed out on create/lookup.
        """
        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError(f"Meeting not found: {meeting_id}")

        if not is_supported_meeting_url(meeting.meeting_url):
            raise UnsupportedPlatformError(meeting.meeting_url)

        if meeting.bot_id:
            raise BotAlreadyTrackedError(str(meeting.id), meeting.bot_id)

        cleaned_url = clean_meeting_url(meeting.meeting_url)

        job = await self._reuse_existing_bot(meeting.owner_id, cleaned_url)
        if job is None:
            job = await self._create_bot(meeting, cleaned_url, join_lead_minutes)

        await self._repository.link_bot(meeting.id, job.id, MeetingStatus.IN_PROGRESS)
        logger.info(
            "bot.linked",
            bot_id=job.id,
            meeting_id=str(meeting.id),
            platform_meeting_id=extract_meeting_id(cleaned_url),
        )
        return job

    async def _reuse_existing_bot(
        self, owner_id: uuid.UUID, cleaned_url: str
    ) -> RecordingJob | None:
        """Return the live bot for (owner, cleaned URL), or None.

        A bot Recall.ai no longer knows, or one that already finished or
        failed, is not reusable: a recurring meeting keeps the same URL, and
        last occurrence's bot must not record this one. Its local row is
        dropped so a fresh bot can take the key.
        """
        existing = await self._repository.find_recording_job(owner_id, cleaned_url)
        if existing is None:
            return None

        try:
            bot = await self._recall.get_bot(existing.id)
        except BotNotFoundError:
            logger.info("bot.reuse_miss", bot_id=existing.id, reason="not_found")
            await self._repository.delete_recording_job(existing.id)
            return None

        status = bot.latest_status
        if status in TERMINAL_STATUSES:
            logger.info("bot.reuse_miss", bot_id=existing.id, reason=status)
            await self._repository.delete_recording_job(existing.id)
            return None

        job = await self._repository.update_recording_job_status(existing.id, status)
        logger.info("bot.reused", bot_id=existing.id, status=status)
        return job or existing

    async def _create_bot(
        self, meeting: Meeting, cleaned_url: str, join_lead_minutes: int
    ) -> RecordingJob:
        """Create a Recall.ai bot and persist its RecordingJob row."""
        app_name = getattr(self._settings, "APP_NAME", "MeetBot")
        bot_name = f"{app_name} Bot - {meeting.title}"
        join_at = self._join_at(meeting, join_lead_minutes)

        bot = await self._recall.create_bot(
            meeting_url=cleaned_url,
            bot_name=bot_name,
            join_at=join_at.isoformat() if join_at else None,
        )

        job = await self._repository.create_recording_job(
            RecordingJob(
                id=bot.id,
                owner_id=meeting.owner_id,
                meeting_url=cleaned_url,
                bot_name=bot_name,
                platform=detect_platform(cleaned_url),
                status=bot.latest_status,
            )
        )
        if job.id != bot.id:
            # Lost a concurrent ensure_bot race; the winner's bot is used
            logger.warning(
                "bot.duplicate_discarded",
                discarded_bot_id=bot.id,
                bot_id=job.id,
                meeting_id=str(meeting.id),
            )
        else:
            logger.info(
                "bot.created",
                bot_id=bot.id,
                meeting_id=str(meeting.id),
                join_at=join_at.isoformat() if join_at else None,
            )
        return job

    @staticmethod
    def _join_at(meeting: Meeting, join_lead_minutes: int) -> datetime | None:
        """Scheduled join time, or None to join immediately."""
        start = meeting.scheduled_start
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        join_at = start - timedelta(minutes=join_lead_minutes)
        if join_at <= datetime.now(timezone.utc):
            return None
        return join_at

    # ── Tracking ─────────────────────────────────────────────────────────

    async def remove_bot(self, bot_id: str) -> Meeting:
        """Stop tracking a bot locally and reset its meeting to scheduled.

        The bot keeps running on Recall.ai and its RecordingJob row stays,
        so a later ensure_bot for the same URL reuses it.

        Raises:
            MeetingNotFoundError: No meeting tracks this bot.
        """
        meeting = await self._repository.get_meeting_by_bot_id(bot_id)
        if meeting is None:
            raise MeetingNotFoundError(f"Bot not found: {bot_id}")

        updated = await self._repository.clear_bot(meeting.id)
        self._oracle.forget(bot_id)
        logger.info("bot.tracking_removed", bot_id=bot_id, meeting_id=str(meeting.id))
        return updated

    # ── Manual check ─────────────────────────────────────────────────────

    async def check_bot(self, bot_id: str) -> BotCheckResult:
        """check_meeting for whichever meeting tracks this bot.

        Raises:
            MeetingNotFoundError: No meeting tracks this bot.
        """
        meeting = await self._repository.get_meeting_by_bot_id(bot_id)
        if meeting is None:
            raise MeetingNotFoundError(f"Bot not found: {bot_id}")
        return await self.check_meeting(meeting.id)

    async def check_meeting(self, meeting_id: uuid.UUID | str) -> BotCheckResult:
        """On-demand status check for a meeting's bot.

        Returns the stored transcript if there is one. Otherwise asks the
        readiness oracle, advances the meeting status and stores the
        transcript at most once. A lookup timeout reports status "timeout"
        and leaves the meeting untouched. Never creates bots; other errors
        propagate.

        Raises:
            MeetingNotFoundError: Unknown meeting, or it has no bot.
            RecallError: Recall.ai rejected the lookup, or the transcript
                download failed.
        """
        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError(f"Meeting not found: {meeting_id}")
        if not meeting.bot_id:
            raise MeetingNotFoundError(f"Meeting has no bot: {meeting_id}")
        bot_id = meeting.bot_id

        try:
            bot = await self._recall.get_bot(bot_id)
        except RecallTimeoutError:
            return await self._timed_out_check(meeting)
        await self._repository.update_recording_job_status(bot_id, bot.latest_status)

        existing = await self._repository.get_transcript(meeting.id)
        if existing is not None:
            return BotCheckResult(
                bot_id=bot_id,
                status=bot.latest_status,
                is_ready=True,
                has_transcript=True,
                meeting=meeting,
                transcript=existing,
            )

        readiness = await self._oracle.evaluate(bot)

        if readiness.is_ready:
            transcript = await self._recorder.record(meeting, readiness)
            if transcript is None and readiness.has_transcript:
                # Another writer may have stored it meanwhile
                transcript = await self._repository.get_transcript(meeting.id)
            if meeting.status.can_transition_to(MeetingStatus.COMPLETED):
                meeting = await self._repository.update_meeting_status(
                    meeting.id, MeetingStatus.COMPLETED
                )
        else:
            transcript = None
            if readiness.failed and meeting.status.can_transition_to(MeetingStatus.ERROR):
                meeting = await self._repository.update_meeting_status(
                    meeting.id, MeetingStatus.ERROR
                )

        logger.info(
            "bot.checked",
            bot_id=bot_id,
            status=readiness.status,
            is_ready=readiness.is_ready,
            transcript_stored=transcript is not None,
        )
        return BotCheckResult(
            bot_id=bot_id,
            status=readiness.status,
            is_ready=readiness.is_ready,
            has_transcript=transcript is not None,
            meeting=meeting,
            transcript=transcript,
        )

    async def _timed_out_check(self, meeting: Meeting) -> BotCheckResult:
        """Report a lookup timeout from what is already known locally."""
        bot_id = meeting.bot_id
        existing = await self._repository.get_transcript(meeting.id)
        is_ready = existing is not None or self._oracle.seen_ready(bot_id)
        logger.info("bot.check_timeout", bot_id=bot_id, is_ready=is_ready)
        return BotCheckResult(
            bot_id=bot_id,
            status=TIMEOUT_STATUS,
            is_ready=is_ready,
            has_transcript=existing is not None,
            meeting=meeting,
            transcript=existing,
        )
