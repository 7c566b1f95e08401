"""Tests for BotPoller: tick reconciliation, exactly-once transcripts, loop control."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.meetbot.meetings.bot.errors import RecallAPIError, RecallTimeoutError
from src.meetbot.meetings.bot.normalizer import normalize_transcript
from src.meetbot.meetings.bot.poller import BotPoller, PollSummary
from src.meetbot.meetings.bot.readiness import ReadinessOracle
from src.meetbot.meetings.bot.transcripts import TranscriptRecorder
from src.meetbot.meetings.schemas import CanonicalTranscript, MeetingStatus, RecordingJob


# ── Fixtures ────────────────────────────────────────────────────────────────


def _make_poller(recall, repository, interval: float = 30) -> BotPoller:
    return BotPoller(
        repository=repository,
        oracle=ReadinessOracle(recall),
        recorder=TranscriptRecorder(recall, repository),
        interval_seconds=interval,
    )


@pytest.fixture
def poller(mock_recall, repository):
    return _make_poller(mock_recall, repository)


@pytest.fixture
def tracked_meeting(repository, make_meeting, owner_id):
    """A meeting linked to bot-1 with its RecordingJob row."""

    async def _make(bot_id: str = "bot-1", url: str = "https://meet.google.com/abc-defg-hij"):
        meeting = await make_meeting(url)
        await repository.create_recording_job(
            RecordingJob(id=bot_id, owner_id=owner_id, meeting_url=url, status="ready")
        )
        return await repository.link_bot(meeting.id, bot_id)

    return _make


# ── Scenarios ───────────────────────────────────────────────────────────────


class TestPollScenarios:
    @pytest.mark.asyncio
    async def test_call_ended_then_transcript_arrives(
        self,
        poller,
        mock_recall,
        repository,
        tracked_meeting,
        bot_factory,
        recording_factory,
        transcript_payload,
    ):
        """call_ended with no recordings, then a done recording with "Hi"."""
        meeting = await tracked_meeting()

        # Tick 1: ended, no recordings yet -> completed, nothing stored
        mock_recall.get_bot.return_value = bot_factory(
            statuses=("starting", "joining_call", "call_ended")
        )
        mock_recall.get_bot_transcript.return_value = None

        summary = await poller.poll_active_bots()

        assert summary.completed == 1
        assert summary.transcripts_saved == 0
        assert (await repository.get_meeting(meeting.id)).status == MeetingStatus.COMPLETED
        assert repository.transcripts == {}
        assert repository.jobs["bot-1"].status == "call_ended"

        # Tick 2: recording done with downloadable participant transcript
        mock_recall.get_bot.return_value = bot_factory(
            statuses=("starting", "joining_call", "call_ended", "done"),
            recordings=[recording_factory()],
        )
        body = normalize_transcript(transcript_payload((1, "Ana", [("Hi", 0, 0.5)])))
        mock_recall.get_bot_transcript.return_value = body

        summary = await poller.poll_active_bots()

        assert summary.transcripts_saved == 1
        stored = await repository.get_transcript(meeting.id)
        assert stored.content == "Hi"
        assert stored.duration == 0
        assert stored.bot_id == "bot-1"
        assert [s.name for s in stored.speakers] == ["Ana"]

        # Tick 3: meeting already has a transcript -> skipped entirely
        mock_recall.get_bot.reset_mock()
        summary = await poller.poll_active_bots()

        assert summary.results == []
        assert repository.save_attempts == 1
        mock_recall.get_bot.assert_not_called()

    @pytest.mark.asyncio
    async def test_in_progress_stays_processing(
        self, poller, mock_recall, repository, tracked_meeting, bot_factory
    ):
        meeting = await tracked_meeting()
        mock_recall.get_bot.return_value = bot_factory(statuses=("in_call_recording",))

        summary = await poller.poll_active_bots()

        assert summary.processing == 1
        assert summary.results[0].bot_status == "in_call_recording"
        assert (await repository.get_meeting(meeting.id)).status == MeetingStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_failed_bot_marks_meeting_error(
        self, poller, mock_recall, repository, tracked_meeting, bot_factory
    ):
        meeting = await tracked_meeting()
        mock_recall.get_bot.return_value = bot_factory(statuses=("joining_call", "error"))

        summary = await poller.poll_active_bots()

        assert summary.errored == 1
        assert (await repository.get_meeting(meeting.id)).status == MeetingStatus.ERROR

        # Error meetings are no longer polled
        mock_recall.get_bot.reset_mock()
        assert (await poller.poll_active_bots()).results == []
        mock_recall.get_bot.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_is_processing_not_error(
        self, poller, mock_recall, repository, tracked_meeting
    ):
        meeting = await tracked_meeting()
        mock_recall.get_bot.side_effect = RecallTimeoutError("get_bot", 15.0)

        summary = await poller.poll_active_bots()

        assert summary.processing == 1
        assert summary.errored == 0
        assert (await repository.get_meeting(meeting.id)).status == MeetingStatus.IN_PROGRESS
        # Mirrored status left alone on timeout
        assert repository.jobs["bot-1"].status == "ready"

    @pytest.mark.asyncio
    async def test_empty_body_retried_next_tick(
        self, poller, mock_recall, repository, tracked_meeting, bot_factory, recording_factory
    ):
        meeting = await tracked_meeting()
        mock_recall.get_bot.return_value = bot_factory(
            statuses=("done",), recordings=[recording_factory()]
        )
        mock_recall.get_bot_transcript.return_value = CanonicalTranscript()

        summary = await poller.poll_active_bots()

        assert summary.completed == 1
        assert summary.transcripts_saved == 0
        assert not await repository.has_transcript(meeting.id)

        mock_recall.get_bot_transcript.return_value = CanonicalTranscript(text="Later")
        summary = await poller.poll_active_bots()

        assert summary.transcripts_saved == 1


# ── Isolation and concurrency ───────────────────────────────────────────────


class TestPollIsolation:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_tick(
        self, poller, mock_recall, repository, tracked_meeting, bot_factory
    ):
        broken = await tracked_meeting("bot-broken", "https://zoom.us/j/1")
        healthy = await tracked_meeting("bot-ok", "https://zoom.us/j/2")

        async def _get_bot(bot_id):
            if bot_id == "bot-broken":
                raise RecallAPIError(500, "server error", "get_bot")
            return bot_factory(bot_id=bot_id, statuses=("in_call_recording",))

        mock_recall.get_bot.side_effect = _get_bot

        summary = await poller.poll_active_bots()

        by_bot = {r.bot_id: r for r in summary.results}
        assert by_bot["bot-broken"].status == "error"
        assert "server error" in by_bot["bot-broken"].error
        assert by_bot["bot-ok"].status == "processing"
        assert summary.errored == 1
        assert summary.processing == 1
        # A provider error is not a meeting failure
        assert (await repository.get_meeting(broken.id)).status == MeetingStatus.IN_PROGRESS
        assert (await repository.get_meeting(healthy.id)).status == MeetingStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_transcript_lookup_failure_does_not_abort_tick(
        self, poller, mock_recall, repository, tracked_meeting, bot_factory, monkeypatch
    ):
        broken = await tracked_meeting("bot-broken", "https://zoom.us/j/1")
        await tracked_meeting("bot-ok", "https://zoom.us/j/2")
        has_transcript = repository.has_transcript

        async def _has_transcript(meeting_id):
            if meeting_id == broken.id:
                raise RuntimeError("database unavailable")
            return await has_transcript(meeting_id)

        monkeypatch.setattr(repository, "has_transcript", _has_transcript)
        mock_recall.get_bot.return_value = bot_factory(statuses=("in_call_recording",))

        summary = await poller.poll_active_bots()

        by_bot = {r.bot_id: r for r in summary.results}
        assert by_bot["bot-broken"].status == "error"
        assert "database unavailable" in by_bot["bot-broken"].error
        assert by_bot["bot-ok"].status == "processing"
        assert summary.errored == 1

    @pytest.mark.asyncio
    async def test_concurrent_passes_store_one_transcript(
        self, mock_recall, repository, tracked_meeting, bot_factory, recording_factory
    ):
        """Two independent pollers observing "ready" together store exactly one row."""
        meeting = await tracked_meeting()
        mock_recall.get_bot.return_value = bot_factory(
            statuses=("done",), recordings=[recording_factory()]
        )

        async def _slow_transcript(bot_id):
            await asyncio.sleep(0)
            return CanonicalTranscript(text="Hello there")

        mock_recall.get_bot_transcript.side_effect = _slow_transcript

        first = _make_poller(mock_recall, repository)
        second = _make_poller(mock_recall, repository)
        summaries = await asyncio.gather(first.poll_active_bots(), second.poll_active_bots())

        assert sum(s.transcripts_saved for s in summaries) == 1
        assert repository.save_attempts == 2
        assert len(repository.transcripts) == 1
        assert (await repository.get_meeting(meeting.id)).status == MeetingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_forced_tick_waits_for_running_tick(
        self, poller, mock_recall, repository, tracked_meeting, bot_factory
    ):
        await tracked_meeting()
        release = asyncio.Event()
        active = 0
        peak = 0

        async def _get_bot(bot_id):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await release.wait()
            active -= 1
            return bot_factory(bot_id=bot_id, statuses=("in_call_recording",))

        mock_recall.get_bot.side_effect = _get_bot

        scheduled = asyncio.create_task(poller.poll_active_bots())
        forced = asyncio.create_task(poller.force_poll())
        await asyncio.sleep(0.01)
        release.set()
        await asyncio.gather(scheduled, forced)

        assert peak == 1
        assert mock_recall.get_bot.await_count == 2


# ── Loop control ────────────────────────────────────────────────────────────


class TestPollerControl:
    @pytest.mark.asyncio
    async def test_start_runs_immediate_tick(self, mock_recall, repository):
        poller = _make_poller(mock_recall, repository, interval=3600)
        poller.poll_active_bots = AsyncMock(return_value=PollSummary())

        poller.start()
        await asyncio.sleep(0.01)

        assert poller.running
        poller.poll_active_bots.assert_awaited_once()
        await poller.stop()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, mock_recall, repository):
        poller = _make_poller(mock_recall, repository, interval=3600)
        poller.poll_active_bots = AsyncMock(return_value=PollSummary())

        poller.start()
        poller.start()
        await asyncio.sleep(0.01)

        poller.poll_active_bots.assert_awaited_once()
        await poller.stop()

    @pytest.mark.asyncio
    async def test_ticks_repeat_on_interval(self, mock_recall, repository):
        poller = _make_poller(mock_recall, repository, interval=0.01)
        poller.poll_active_bots = AsyncMock(return_value=PollSummary())

        poller.start()
        await asyncio.sleep(0.1)
        await poller.stop()

        assert poller.poll_active_bots.await_count >= 2

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, poller):
        await poller.stop()
        await poller.stop()

        assert not poller.running

    @pytest.mark.asyncio
    async def test_stop_does_not_cancel_in_flight_tick(self, mock_recall, repository):
        poller = _make_poller(mock_recall, repository, interval=3600)
        release = asyncio.Event()
        finished = asyncio.Event()

        async def _tick():
            await release.wait()
            finished.set()
            return PollSummary()

        poller.poll_active_bots = AsyncMock(side_effect=_tick)

        poller.start()
        await asyncio.sleep(0.01)
        await poller.stop()
        assert not poller.running

        release.set()
        await asyncio.wait_for(finished.wait(), timeout=1)
        await asyncio.sleep(0.01)

        # Tick completed and the loop exited instead of sleeping again
        assert poller._task.done()
        poller.poll_active_bots.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_tick_error_keeps_loop_alive(self, mock_recall, repository):
        poller = _make_poller(mock_recall, repository, interval=0.01)
        calls = 0

        async def _tick():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("db down")
            return PollSummary()

        poller.poll_active_bots = AsyncMock(side_effect=_tick)

        poller.start()
        await asyncio.sleep(0.05)
        await poller.stop()

        assert poller.poll_active_bots.await_count >= 2

    @pytest.mark.asyncio
    async def test_status_reports_last_tick(
        self, poller, mock_recall, tracked_meeting, bot_factory
    ):
        await tracked_meeting()
        mock_recall.get_bot.return_value = bot_factory(statuses=("in_call_recording",))

        before = poller.status()
        summary = await poller.force_poll()
        after = poller.status()

        assert before.last_tick_at is None
        assert not after.running
        assert after.interval_seconds == 30
        assert after.last_tick_at is not None
        assert after.last_summary == summary
