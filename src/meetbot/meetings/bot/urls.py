"""Meeting URL allow-listing and canonicalization.

The cleaned URL is the dedup key for recording jobs, so clean_meeting_url
must be idempotent: clean_meeting_url(clean_meeting_url(u)) == clean_meeting_url(u).
"""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import structlog

from src.meetbot.meetings.schemas import Platform

logger = structlog.get_logger(__name__)

_PLATFORM_HOSTS: dict[str, Platform] = {
    "zoom.us": Platform.ZOOM,
    "meet.google.com": Platform.GOOGLE_MEET,
    "teams.microsoft.com": Platform.TEAMS,
    "teams.live.com": Platform.TEAMS,
}

# Zoom query parameters needed to join; everything else is tracking noise
_ZOOM_KEEP_PARAMS = ("pwd",)

_ZOOM_ID_RE = re.compile(r"zoom\.us/j/(\d+)")
_MEET_ID_RE = re.compile(r"meet\.google\.com/([a-z-]+)")
_TEAMS_ID_RE = re.compile(r"teams\.microsoft\.com.*meetup-join/([^?]+)")


def _host(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def detect_platform(meeting_url: str | None) -> Platform | None:
    """Return the platform for an allow-listed host (subdomains included)."""
    if not meeting_url:
        return None
    host = _host(meeting_url)
    for domain, platform in _PLATFORM_HOSTS.items():
        if host == domain or host.endswith("." + domain):
            return platform
    return None


def is_supported_meeting_url(meeting_url: str | None) -> bool:
    """True if Recall.ai can join a meeting at this URL."""
    return detect_platform(meeting_url) is not None


def clean_meeting_url(meeting_url: str) -> str:
    """Canonicalize a meeting URL for bot creation and dedup.

    - Google Meet: keep only the meeting code path.
    - Zoom: drop every query parameter except the join password.
    - Teams and unrecognized URLs: returned unchanged.
    """
    try:
        parts = urlsplit(meeting_url)
    except ValueError:
        logger.warning("meeting_url.unparseable", meeting_url=meeting_url)
        return meeting_url

    host = (parts.hostname or "").lower()
    if not parts.scheme or not host:
        return meeting_url

    if host == "meet.google.com":
        return f"https://meet.google.com{parts.path}"

    if host == "zoom.us" or host.endswith(".zoom.us"):
        kept = [(k, v) for k, v in parse_qsl(parts.query) if k in _ZOOM_KEEP_PARAMS]
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), ""))

    return meeting_url


def extract_meeting_id(meeting_url: str) -> str | None:
    """Platform meeting identifier (Zoom number, Meet code, Teams thread) for logs."""
    for pattern in (_ZOOM_ID_RE, _MEET_ID_RE, _TEAMS_ID_RE):
        match = pattern.search(meeting_url)
        if match:
            return match.group(1)
    return None
