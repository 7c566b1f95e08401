#!/usr/bin/env python3
"""Run one bot reconciliation tick, or check a single bot, from the shell.

Usage:
    python scripts/poll_once.py
    python scripts/poll_once.py --bot-id 6f1c...        # manual check of one bot
    python scripts/poll_once.py --list-bots              # bots visible to the API key

Reads DATABASE_URL and RECALL_AI_API_KEY from environment or .env file.
Prints the result as JSON. Exit code 1 if any meeting errored.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Ensure project root is on sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

import structlog  # noqa: E402

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    from src.meetbot.config import get_settings
    from src.meetbot.core.database import close_db, get_session, init_db
    from src.meetbot.core.logging import configure_structlog
    from src.meetbot.meetings.bot.manager import BotManager
    from src.meetbot.meetings.bot.poller import BotPoller
    from src.meetbot.meetings.bot.readiness import ReadinessOracle
    from src.meetbot.meetings.bot.recall_client import RecallClient
    from src.meetbot.meetings.bot.transcripts import TranscriptRecorder
    from src.meetbot.meetings.repository import MeetingRepository

    configure_structlog()
    settings = get_settings()
    if not settings.RECALL_AI_API_KEY:
        logger.error("poll_once.missing_api_key")
        return 2

    recall_client = RecallClient(
        api_key=settings.RECALL_AI_API_KEY,
        region=settings.RECALL_AI_REGION,
        timeout=settings.RECALL_AI_TIMEOUT_SECONDS,
    )

    if args.list_bots:
        bots = await recall_client.list_bots()
        print(json.dumps([b.model_dump(mode="json") for b in bots], indent=2))
        return 0

    await init_db()
    try:
        repository = MeetingRepository(session_factory=get_session)
        oracle = ReadinessOracle(recall_client)
        recorder = TranscriptRecorder(recall_client, repository)

        if args.bot_id:
            manager = BotManager(recall_client, repository, settings, oracle, recorder)
            result = await manager.check_bot(args.bot_id)
            print(json.dumps(result.model_dump(mode="json"), indent=2))
            return 0

        poller = BotPoller(repository, oracle, recorder, settings.BOT_POLL_INTERVAL_SECONDS)
        summary = await poller.force_poll()
        print(json.dumps(summary.model_dump(mode="json"), indent=2))
        return 1 if summary.errored else 0
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one Recall.ai bot reconciliation pass")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--bot-id", help="Check a single tracked bot instead of polling all")
    group.add_argument("--list-bots", action="store_true", help="List bots on Recall.ai")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
