"""FastAPI application factory.

Creates the app with logging middleware, lifespan events for database
initialization and the bot services, and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI

from src.meetbot.api.middleware.logging import LoggingMiddleware
from src.meetbot.api.v1.router import router as v1_router
from src.meetbot.config import get_settings
from src.meetbot.core.database import close_db, get_session, init_db
from src.meetbot.core.logging import configure_structlog


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and bot services, stop the poller on shutdown."""
    log = structlog.get_logger(__name__)
    settings = app.state.settings
    configure_structlog()
    await init_db()

    from src.meetbot.meetings.repository import MeetingRepository
    from src.meetbot.meetings.bot.manager import BotManager
    from src.meetbot.meetings.bot.poller import BotPoller
    from src.meetbot.meetings.bot.readiness import ReadinessOracle
    from src.meetbot.meetings.bot.recall_client import RecallClient
    from src.meetbot.meetings.bot.transcripts import TranscriptRecorder

    meeting_repo = MeetingRepository(session_factory=get_session)
    app.state.meeting_repository = meeting_repo

    # Recall.ai bot services (endpoints answer 503 without an API key)
    bot_manager = None
    bot_poller = None
    if settings.RECALL_AI_API_KEY:
        recall_client = RecallClient(
            api_key=settings.RECALL_AI_API_KEY,
            region=settings.RECALL_AI_REGION,
            timeout=settings.RECALL_AI_TIMEOUT_SECONDS,
        )
        # One oracle and recorder shared by manual checks and the poller
        oracle = ReadinessOracle(recall_client)
        recorder = TranscriptRecorder(recall_client, meeting_repo)
        bot_manager = BotManager(
            recall_client=recall_client,
            repository=meeting_repo,
            settings=settings,
            oracle=oracle,
            recorder=recorder,
        )
        bot_poller = BotPoller(
            repository=meeting_repo,
            oracle=oracle,
            recorder=recorder,
            interval_seconds=settings.BOT_POLL_INTERVAL_SECONDS,
        )
        if settings.BOT_POLLER_AUTOSTART:
            bot_poller.start()
    else:
        log.warning("recall.api_key_missing", hint="bot endpoints will return 503")

    app.state.bot_manager = bot_manager
    app.state.bot_poller = bot_poller

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    if bot_poller is not None:
        await bot_poller.stop()
        log.info("bot_poller.shutdown")

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        version="0.1.0",
        description="Meeting recording bots on Recall.ai with polled transcript retrieval",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    return app


# Module-level app for uvicorn
app = create_app()
