"""ReadinessOracle -- decides whether a bot is finished and its transcript fetchable.

Recall.ai populates status fields inconsistently across recording and API
versions, so no single signal is trusted. The decision runs in order:

1. Effective status = last status_changes entry, else the top-level status.
2. Non-terminal status -> not ready.
3. Failed status (error/fatal) -> not ready, caller marks the meeting error.
4. Ready status (done/call_ended) -> run the transcript checkers in order
   until one returns a verdict other than UNKNOWN:
     transcript_status_done  recording transcript status code is "done"
     download_url_present    recording exposes a transcript download URL
     speculative_fetch       re-fetch the bot, download + normalize, READY
                             if the text is non-empty

Readiness is monotonic per bot id: once reported ready, a bot stays ready
for the lifetime of the oracle even if a later poll sees a stale status.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import NamedTuple

import structlog
from pydantic import BaseModel

from src.meetbot.meetings.bot.errors import RecallError, RecallTimeoutError
from src.meetbot.meetings.bot.recall_client import RecallClient
from src.meetbot.meetings.bot.recall_schemas import RecallBot
from src.meetbot.meetings.schemas import CanonicalTranscript

logger = structlog.get_logger(__name__)

READY_STATUSES = frozenset({"done", "call_ended"})
FAILED_STATUSES = frozenset({"error", "fatal"})

# Reported when the bot lookup timed out; treated as "not ready yet"
TIMEOUT_STATUS = "timeout"


class Verdict(str, Enum):
    READY = "ready"
    NOT_READY = "not_ready"
    UNKNOWN = "unknown"


class CheckOutcome(NamedTuple):
    verdict: Verdict
    transcript: CanonicalTranscript | None = None


TranscriptChecker = Callable[[RecallClient, RecallBot], Awaitable[CheckOutcome]]


class Readiness(BaseModel):
    """Result of one readiness evaluation.

    transcript is set when the speculative fetch already downloaded and
    normalized the body, so callers can persist it without a second fetch.
    """

    bot_id: str
    is_ready: bool = False
    has_transcript: bool = False
    status: str = "unknown"
    transcript: CanonicalTranscript | None = None

    @property
    def failed(self) -> bool:
        return not self.is_ready and self.status in FAILED_STATUSES


# ── Transcript checkers ──────────────────────────────────────────────────────


async def transcript_status_done(client: RecallClient, bot: RecallBot) -> CheckOutcome:
    """READY if any recording reports its transcript status as done."""
    if any(r.transcript_status_code == "done" for r in bot.recordings):
        return CheckOutcome(Verdict.READY)
    return CheckOutcome(Verdict.UNKNOWN)


async def download_url_present(client: RecallClient, bot: RecallBot) -> CheckOutcome:
    """READY if any recording exposes a transcript download URL."""
    if any(r.transcript_download_url for r in bot.recordings):
        return CheckOutcome(Verdict.READY)
    return CheckOutcome(Verdict.UNKNOWN)


async def speculative_fetch(client: RecallClient, bot: RecallBot) -> CheckOutcome:
    """Last resort: fetch the transcript directly and look for text."""
    try:
        transcript = await client.get_bot_transcript(bot.id)
    except RecallError:
        logger.debug("readiness.speculative_fetch_failed", bot_id=bot.id, exc_info=True)
        return CheckOutcome(Verdict.UNKNOWN)

    if transcript is not None and not transcript.is_empty:
        return CheckOutcome(Verdict.READY, transcript)
    return CheckOutcome(Verdict.NOT_READY)


DEFAULT_CHECKERS: tuple[TranscriptChecker, ...] = (
    transcript_status_done,
    download_url_present,
    speculative_fetch,
)


# ── Oracle ───────────────────────────────────────────────────────────────────


class ReadinessOracle:
    """Decides bot readiness and transcript availability.

    Args:
        recall_client: RecallClient used for bot lookups and speculative fetches.
        checkers: Ordered transcript checkers (defaults to DEFAULT_CHECKERS).
    """

    def __init__(
        self,
        recall_client: RecallClient,
        checkers: Sequence[TranscriptChecker] = DEFAULT_CHECKERS,
    ) -> None:
        self._recall = recall_client
        self._checkers = tuple(checkers)
        self._ready_bots: set[str] = set()

    async def check(self, bot_id: str) -> Readiness:
        """Fetch a bot and evaluate its readiness.

        A timeout is "not ready yet" (or still ready if the bot was already
        seen ready); it is never an error.

        Raises:
            RecallAPIError: If Recall.ai rejects the lookup.
        """
        try:
            bot = await self._recall.get_bot(bot_id)
        except RecallTimeoutError:
            logger.info("readiness.lookup_timeout", bot_id=bot_id)
            return Readiness(
                bot_id=bot_id,
                is_ready=self.seen_ready(bot_id),
                status=TIMEOUT_STATUS,
            )
        return await self.evaluate(bot)

    async def evaluate(self, bot: RecallBot) -> Readiness:
        """Evaluate readiness for an already-fetched bot."""
        status = bot.latest_status
        is_ready = status in READY_STATUSES or bot.id in self._ready_bots

        if not is_ready:
            if status in FAILED_STATUSES:
                logger.warning("readiness.bot_failed", bot_id=bot.id, status=status)
            return Readiness(bot_id=bot.id, status=status)

        self._ready_bots.add(bot.id)

        for checker in self._checkers:
            outcome = await checker(self._recall, bot)
            if outcome.verdict is Verdict.UNKNOWN:
                continue
            logger.debug(
                "readiness.decided",
                bot_id=bot.id,
                checker=getattr(checker, "__name__", repr(checker)),
                verdict=outcome.verdict.value,
            )
            return Readiness(
                bot_id=bot.id,
                is_ready=True,
                has_transcript=outcome.verdict is Verdict.READY,
                status=status,
                transcript=outcome.transcript,
            )

        return Readiness(bot_id=bot.id, is_ready=True, status=status)

    def seen_ready(self, bot_id: str) -> bool:
        return bot_id in self._ready_bots

    def forget(self, bot_id: str) -> None:
        """Drop a bot from the ready set once its transcript is stored or it is untracked."""
        self._ready_bots.discard(bot_id)
