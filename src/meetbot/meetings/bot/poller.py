"""BotPoller -- periodic reconciliation of tracked bots against Recall.ai.

Webhooks are unavailable, so bot completion is discovered by polling.
Each tick:
1. Lists meetings with a bot whose status is scheduled/in_progress/completed.
2. Skips meetings that already have a stored transcript.
3. Reconciles the rest one at a time (bounds request volume against the
   rate-limited Recall.ai API): readiness check, job status mirror,
   meeting status transition, transcript storage.

A failure on one meeting becomes an error result for that meeting; it
never aborts the tick. Ticks in one process are serialized by a lock, so
a forced tick waits for an in-flight scheduled one. Stopping never
interrupts a tick: the loop is cancelled only while it sleeps.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from src.meetbot.meetings.bot.readiness import TIMEOUT_STATUS, ReadinessOracle
from src.meetbot.meetings.bot.transcripts import TranscriptRecorder
from src.meetbot.meetings.schemas import Meeting, MeetingStatus

if TYPE_CHECKING:
    from src.meetbot.meetings.repository import MeetingRepository

logger = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 30


# ── Results ──────────────────────────────────────────────────────────────────


class BotPollResult(BaseModel):
    """Outcome of reconciling one meeting in a tick.

    status is "completed", "processing" or "error".
    """

    meeting_id: uuid.UUID
    bot_id: str
    status: str
    bot_status: str | None = None
    is_ready: bool = False
    has_transcript: bool = False
    transcript_saved: bool = False
    error: str | None = None


class PollSummary(BaseModel):
    """Aggregate counts for one tick."""

    completed: int = 0
    processing: int = 0
    errored: int = 0
    transcripts_saved: int = 0
    results: list[BotPollResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[BotPollResult]) -> PollSummary:
        return cls(
            completed=sum(1 for r in results if r.status == "completed"),
            processing=sum(1 for r in results if r.status == "processing"),
            errored=sum(1 for r in results if r.status == "error"),
            transcripts_saved=sum(1 for r in results if r.transcript_saved),
            results=results,
        )


class PollerStatus(BaseModel):
    running: bool
    interval_seconds: float
    last_tick_at: datetime | None = None
    last_summary: PollSummary | None = None


# ── Poller ───────────────────────────────────────────────────────────────────


class BotPoller:
    """Single long-lived poller, built once by the app factory.

    Args:
        repository: MeetingRepository for meetings, jobs and transcripts.
        oracle: ReadinessOracle (shared with BotManager so readiness stays
            monotonic across manual checks and ticks).
        recorder: TranscriptRecorder for exactly-once transcript storage.
        interval_seconds: Delay between the end of one tick and the next.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        oracle: ReadinessOracle,
        recorder: TranscriptRecorder,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._repository = repository
        self._oracle = oracle
        self._recorder = recorder
        self._interval = interval_seconds
        self._running = False
        self._ticking = False
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._last_tick_at: datetime | None = None
        self._last_summary: PollSummary | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ── Control ──────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start polling: one immediate tick, then one per interval.

        No-op if already running. Must be called from a running event loop.
        """
        if self._running:
            return
        self._running = True
        # A loop stopped mid-tick is still alive; it picks the flag back up
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name="bot-poller"
            )
        logger.info("poller.started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop polling. No-op if already stopped.

        An in-flight tick runs to completion; only the sleep is cancelled.
        """
        if not self._running:
            return
        self._running = False
        task = self._task
        if task is not None and not task.done() and not self._ticking:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("poller.stopped", tick_in_flight=self._ticking)

    async def force_poll(self) -> PollSummary:
        """Run one tick now, independent of the timer."""
        logger.info("poller.force_poll")
        return await self.poll_active_bots()

    def status(self) -> PollerStatus:
        return PollerStatus(
            running=self._running,
            interval_seconds=self._interval,
            last_tick_at=self._last_tick_at,
            last_summary=self._last_summary,
        )

    async def _run(self) -> None:
        while self._running:
            self._ticking = True
            try:
                await self.poll_active_bots()
            except Exception:
                logger.exception("poller.tick_error")
            finally:
                self._ticking = False

            if not self._running:
                break
            await asyncio.sleep(self._interval)

    # ── Tick ─────────────────────────────────────────────────────────────

    async def poll_active_bots(self) -> PollSummary:
        """One reconciliation pass over all meetings with an active bot."""
        async with self._lock:
            meetings = await self._repository.list_meetings_with_active_bots()
            results: list[BotPollResult] = []
            skipped = 0

            for meeting in meetings:
                try:
                    if await self._repository.has_transcript(meeting.id):
                        skipped += 1
                        continue
                    result = await self._poll_single_bot(meeting)
                except Exception as exc:
                    logger.warning(
                        "poller.bot_poll_failed",
                        meeting_id=str(meeting.id),
                        bot_id=meeting.bot_id,
                        exc_info=True,
                    )
                    result = BotPollResult(
                        meeting_id=meeting.id,
                        bot_id=meeting.bot_id or "",
                        status="error",
                        error=str(exc) or type(exc).__name__,
                    )
                results.append(result)

            summary = PollSummary.from_results(results)
            self._last_tick_at = datetime.now(timezone.utc)
            self._last_summary = summary

        logger.info(
            "poller.tick_complete",
            polled=len(results),
            skipped=skipped,
            completed=summary.completed,
            processing=summary.processing,
            errored=summary.errored,
            transcripts_saved=summary.transcripts_saved,
        )
        return summary

    async def _poll_single_bot(self, meeting: Meeting) -> BotPollResult:
        """Reconcile one meeting with its bot's state on Recall.ai."""
        bot_id = meeting.bot_id or ""
        readiness = await self._oracle.check(bot_id)

        if readiness.status != TIMEOUT_STATUS:
            await self._repository.update_recording_job_status(bot_id, readiness.status)

        if readiness.is_ready:
            if meeting.status.can_transition_to(MeetingStatus.COMPLETED):
                await self._repository.update_meeting_status(
                    meeting.id, MeetingStatus.COMPLETED
                )
                logger.info("poller.meeting_completed", meeting_id=str(meeting.id))

            saved = await self._recorder.record(meeting, readiness)
            if saved is not None or await self._repository.has_transcript(meeting.id):
                self._oracle.forget(bot_id)

            return BotPollResult(
                meeting_id=meeting.id,
                bot_id=bot_id,
                status="completed",
                bot_status=readiness.status,
                is_ready=True,
                has_transcript=readiness.has_transcript,
                transcript_saved=saved is not None,
            )

        if readiness.failed:
            if meeting.status.can_transition_to(MeetingStatus.ERROR):
                await self._repository.update_meeting_status(
                    meeting.id, MeetingStatus.ERROR
                )
            return BotPollResult(
                meeting_id=meeting.id,
                bot_id=bot_id,
                status="error",
                bot_status=readiness.status,
                error=f"Bot ended with status {readiness.status}",
            )

        return BotPollResult(
            meeting_id=meeting.id,
            bot_id=bot_id,
            status="processing",
            bot_status=readiness.status,
        )
