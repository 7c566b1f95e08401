"""REST endpoints for the meeting bot lifecycle and the bot poller.

- POST   /bots           attach a bot to a meeting (reuses a live one)
- GET    /bots/polling   poller status
- POST   /bots/polling   start | stop | force-poll
- GET    /bots/{bot_id}  manual status check, may store the transcript
- DELETE /bots/{bot_id}  stop tracking a bot locally

Services live on app.state (built by the lifespan in main.py).
"""

from __future__ import annotations

import uuid
from typing import Any, Literal

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from src.meetbot.meetings.bot.errors import (
    BotAlreadyTrackedError,
    BotError,
    MeetingNotFoundError,
    RecallAPIError,
    RecallError,
    RecallTimeoutError,
    UnsupportedPlatformError,
)
from src.meetbot.meetings.bot.manager import BotCheckResult
from src.meetbot.meetings.bot.poller import PollerStatus, PollSummary

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/bots", tags=["bots"])


# ── Request / Response Schemas ───────────────────────────────────────────────


class BotCreateRequest(BaseModel):
    meeting_id: uuid.UUID
    join_minutes_before: int | None = None


class BotResponse(BaseModel):
    """A bot linked to a meeting."""

    bot_id: str
    meeting_id: str
    meeting_url: str
    status: str | None = None


class BotRemovedResponse(BaseModel):
    bot_id: str
    meeting_id: str
    meeting_status: str


class PollingActionRequest(BaseModel):
    action: Literal["start", "stop", "force-poll"]


class PollingActionResponse(BaseModel):
    action: str
    status: PollerStatus
    summary: PollSummary | None = None


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_bot_manager(request: Request) -> Any:
    """Retrieve BotManager from app.state, 503 if not available."""
    mgr = getattr(request.app.state, "bot_manager", None)
    if mgr is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bot manager not initialized (Recall.ai API key may not be configured)",
        )
    return mgr


def _get_bot_poller(request: Request) -> Any:
    """Retrieve BotPoller from app.state, 503 if not available."""
    poller = getattr(request.app.state, "bot_poller", None)
    if poller is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bot poller not initialized (Recall.ai API key may not be configured)",
        )
    return poller


def _http_error(exc: Exception) -> HTTPException:
    """Map bot and Recall.ai errors to HTTP responses."""
    if isinstance(exc, MeetingNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (UnsupportedPlatformError, BotAlreadyTrackedError)):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, RecallTimeoutError):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    elif isinstance(exc, RecallAPIError) and exc.status_code == 404:
        code = status.HTTP_404_NOT_FOUND
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail=str(exc))


# ── Bots ─────────────────────────────────────────────────────────────────────


@router.post("", response_model=BotResponse, status_code=status.HTTP_201_CREATED)
async def create_bot(body: BotCreateRequest, request: Request) -> BotResponse:
    """Attach a Recall.ai bot to a meeting.

    Reuses the owner's live bot for the same cleaned meeting URL when one
    exists; otherwise creates a new bot.
    """
    bot_mgr = _get_bot_manager(request)
    settings = request.app.state.settings
    lead = body.join_minutes_before
    if lead is None:
        lead = settings.DEFAULT_JOIN_MINUTES_BEFORE

    try:
        job = await bot_mgr.ensure_bot(body.meeting_id, join_lead_minutes=lead)
    except (BotError, RecallError) as exc:
        raise _http_error(exc) from exc

    return BotResponse(
        bot_id=job.id,
        meeting_id=str(body.meeting_id),
        meeting_url=job.meeting_url,
        status=job.status,
    )


# ── Polling control ──────────────────────────────────────────────────────────
# Declared before /{bot_id} so "polling" is not captured as a bot id


@router.get("/polling", response_model=PollerStatus)
async def get_polling_status(request: Request) -> PollerStatus:
    """Current poller state and the last tick's summary."""
    return _get_bot_poller(request).status()


@router.post("/polling", response_model=PollingActionResponse)
async def control_polling(body: PollingActionRequest, request: Request) -> PollingActionResponse:
    """Start or stop the poller, or run one tick right now."""
    poller = _get_bot_poller(request)
    summary = None

    if body.action == "start":
        poller.start()
    elif body.action == "stop":
        await poller.stop()
    else:
        summary = await poller.force_poll()

    logger.info("bots.polling_action", action=body.action)
    return PollingActionResponse(action=body.action, status=poller.status(), summary=summary)


# ── Single bot ───────────────────────────────────────────────────────────────


@router.get("/{bot_id}", response_model=BotCheckResult)
async def check_bot(bot_id: str, request: Request) -> BotCheckResult:
    """Check a tracked bot now; stores the transcript if it just became ready."""
    bot_mgr = _get_bot_manager(request)
    try:
        return await bot_mgr.check_bot(bot_id)
    except (BotError, RecallError) as exc:
        raise _http_error(exc) from exc


@router.delete("/{bot_id}", response_model=BotRemovedResponse)
async def remove_bot(bot_id: str, request: Request) -> BotRemovedResponse:
    """Stop tracking a bot. The bot itself keeps running on Recall.ai."""
    bot_mgr = _get_bot_manager(request)
    try:
        meeting = await bot_mgr.remove_bot(bot_id)
    except BotError as exc:
        raise _http_error(exc) from exc

    return BotRemovedResponse(
        bot_id=bot_id,
        meeting_id=str(meeting.id),
        meeting_status=meeting.status.value,
    )
