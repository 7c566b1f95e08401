"""Async HTTP client wrapper for the Recall.ai REST API.

Provides RecallClient with retry logic (tenacity, 3 attempts, exponential
backoff 1-10s) on transient failures only: connection errors, timeouts,
429 and 5xx. 4xx responses are never retried.

Failures surface as the RecallError family:
- non-2xx -> RecallAPIError carrying the provider's message/detail
  (404 on a bot -> BotNotFoundError)
- timeout -> RecallTimeoutError, which callers treat as "not ready yet"

Webhooks are unavailable on a shared Recall.ai account, so this client
is driven by polling (see BotPoller).
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.meetbot.meetings.bot.errors import (
    BotNotFoundError,
    RecallAPIError,
    RecallTimeoutError,
)
from src.meetbot.meetings.bot.normalizer import normalize_transcript
from src.meetbot.meetings.bot.recall_schemas import RecallBot, RecallRecording
from src.meetbot.meetings.schemas import CanonicalTranscript

logger = structlog.get_logger(__name__)


def _is_transient(exc: BaseException) -> bool:
    """Retry on connection problems, timeouts, rate limiting and 5xx."""
    if isinstance(exc, (httpx.TransportError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return False


_recall_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)


def _error_message(response: httpx.Response) -> str:
    """Prefer Recall.ai's message/detail fields over the HTTP reason."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        message = data.get("message") or data.get("detail")
        if message:
            return str(message)
    return response.text[:200] or response.reason_phrase


class RecallClient:
    """Async client for the Recall.ai REST API.

    Handles bot creation, bot lookup and transcript artifact retrieval.
    Uses httpx.AsyncClient with a bounded per-request timeout.

    Args:
        api_key: Recall.ai API token.
        region: Recall.ai region (default: us-east-1).
        timeout: Per-request timeout in seconds.
    """

    DEFAULT_BOT_NAME = "MeetBot Meeting Bot"

    def __init__(
        self, api_key: str, region: str = "us-east-1", timeout: float = 15.0
    ) -> None:
        if not api_key:
            raise ValueError("Recall.ai API key is required")
        self._api_key = api_key
        self._region = region
        self._timeout = timeout
        self._base_url = f"https://{region}.recall.ai/api/v1"
        self._headers = {
            "Authorization": f"Token {api_key}",
            "Content-Type": "application/json",
        }

    @property
    def region(self) -> str:
        return self._region

    def _client(self, authenticated: bool = True) -> httpx.AsyncClient:
        """Create a new httpx client.

        Transcript download URLs are pre-signed, so those requests go out
        without the Recall.ai Authorization header.
        """
        headers = self._headers if authenticated else {"Accept": "application/json"}
        return httpx.AsyncClient(headers=headers, timeout=self._timeout)

    # ── Transport ────────────────────────────────────────────────────────

    @_recall_retry
    async def _get(self, url: str, authenticated: bool = True) -> httpx.Response:
        async with self._client(authenticated) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response

    @_recall_retry
    async def _post(self, url: str, payload: dict) -> httpx.Response:
        async with self._client() as client:
            response = await client.post(url, json=payload)
            response.raise_for_status()
            return response

    async def _call(
        self,
        operation: str,
        send: Any,
        not_found: type[RecallAPIError] = RecallAPIError,
    ) -> httpx.Response:
        """Run a transport coroutine and translate httpx failures."""
        try:
            return await send
        except httpx.TimeoutException as exc:
            logger.warning("recall.timeout", operation=operation, timeout=self._timeout)
            raise RecallTimeoutError(operation, self._timeout) from exc
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            message = _error_message(exc.response)
            logger.warning(
                "recall.api_error",
                operation=operation,
                status_code=status_code,
                message=message,
            )
            error_cls = not_found if status_code == 404 else RecallAPIError
            raise error_cls(status_code, message, operation) from exc
        except httpx.TransportError as exc:
            logger.warning("recall.transport_error", operation=operation, error=str(exc))
            raise RecallAPIError(0, str(exc) or type(exc).__name__, operation) from exc

    # ── Bots ─────────────────────────────────────────────────────────────

    async def create_bot(
        self,
        meeting_url: str,
        bot_name: str | None = None,
        join_at: str | None = None,
        recording_config: dict | None = None,
    ) -> RecallBot:
        """Create a bot that joins a meeting and transcribes from captions.

        POST /bot/ with meeting-caption transcription, participant events,
        mixed MP4 video and meeting metadata enabled.

        Args:
            meeting_url: Cleaned meeting URL.
            bot_name: Display name shown to participants.
            join_at: Optional ISO timestamp for a scheduled join.
            recording_config: Overrides merged into the default config.

        Returns:
            The created RecallBot.

        Raises:
            RecallAPIError: On non-2xx response.
            RecallTimeoutError: If the request timed out.
        """
        config: dict[str, Any] = {
            "transcript": {"provider": {"meeting_captions": {}}},
            "participant_events": {},
            "video_mixed_mp4": {},
            "meeting_metadata": {},
        }
        config.update(recording_config or {})

        payload: dict[str, Any] = {
            "meeting_url": meeting_url,
            "bot_name": bot_name or self.DEFAULT_BOT_NAME,
            "recording_config": config,
        }
        if join_at:
            payload["join_at"] = join_at

        response = await self._call(
            "create_bot", self._post(f"{self._base_url}/bot/", payload)
        )
        bot = RecallBot.model_validate(response.json())
        logger.info(
            "recall.bot_created",
            bot_id=bot.id,
            meeting_url=meeting_url,
            join_at=join_at,
        )
        return bot

    async def get_bot(self, bot_id: str) -> RecallBot:
        """Get full bot details: status, status_changes and recordings.

        Raises:
            BotNotFoundError: If Recall.ai does not know the bot.
            RecallAPIError: On any other non-2xx response.
            RecallTimeoutError: If the request timed out.
        """
        response = await self._call(
            "get_bot",
            self._get(f"{self._base_url}/bot/{bot_id}/"),
            not_found=BotNotFoundError,
        )
        bot = RecallBot.model_validate(response.json())
        logger.debug("recall.bot_fetched", bot_id=bot_id, status=bot.latest_status)
        return bot

    async def list_bots(self) -> list[RecallBot]:
        """List bots visible to this API key (diagnostics only)."""
        response = await self._call("list_bots", self._get(f"{self._base_url}/bot/"))
        data = response.json()
        results = data.get("results", []) if isinstance(data, dict) else data
        return [RecallBot.model_validate(item) for item in results or []]

    # ── Transcripts ──────────────────────────────────────────────────────

    async def fetch_transcript_payload(self, download_url: str) -> Any:
        """Download a transcript artifact.

        Returns:
            Parsed JSON, or the raw body text when it is not JSON. The shape
            varies by provider and version; see normalizer.classify_payload.
        """
        response = await self._call(
            "fetch_transcript", self._get(download_url, authenticated=False)
        )
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def select_transcript_recording(bot: RecallBot) -> RecallRecording | None:
        """Pick the recording whose transcript is downloadable.

        Prefers a recording whose transcript status is done, then any
        recording exposing a download URL.
        """
        for recording in bot.recordings:
            if recording.transcript_status_code == "done" and recording.transcript_download_url:
                return recording
        for recording in bot.recordings:
            if recording.transcript_download_url:
                return recording
        return None

    async def get_bot_transcript(
        self, bot_id: str, bot: RecallBot | None = None
    ) -> CanonicalTranscript | None:
        """Fetch and normalize a bot's transcript.

        Args:
            bot_id: Recall.ai bot identifier.
            bot: Already-fetched bot details, to skip the lookup.

        Returns:
            The normalized transcript, or None if no recording exposes a
            transcript yet (including a 404 on the artifact itself).
        """
        if bot is None:
            bot = await self.get_bot(bot_id)

        recording = self.select_transcript_recording(bot)
        if recording is None or recording.transcript_download_url is None:
            return None

        try:
            payload = await self.fetch_transcript_payload(recording.transcript_download_url)
        except RecallAPIError as exc:
            if exc.status_code == 404:
                logger.info("recall.transcript_not_ready", bot_id=bot_id)
                return None
            raise

        transcript = normalize_transcript(payload)
        logger.info(
            "recall.transcript_retrieved",
            bot_id=bot_id,
            recording_id=recording.id,
            word_count=len(transcript.words),
            speaker_count=len(transcript.speakers),
        )
        return transcript
