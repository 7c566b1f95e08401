"""Transcript normalization -- raw Recall.ai payloads to CanonicalTranscript.

The transcript artifact behind a recording's download_url comes in
several shapes depending on the transcription provider and API version:

    PLAIN_TEXT            "Hello everyone ..."
    TRANSCRIPT_OBJECT     {"transcript": "...", "words": [...], "speakers": [...]}
    SEGMENT_LIST          [{"text": "...", "words": [...]}, ...]
    PARTICIPANT_SEGMENTS  [{"participant": {"id": 1, "name": "Ana"}, "words": [...]}, ...]

classify_payload() picks the shape from structure alone, and each shape
has one normalizer. Anything else is UNRECOGNIZED and yields an empty
transcript: no content means "poll again later", never a failure.

Pure functions, no I/O.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

from src.meetbot.meetings.schemas import CanonicalTranscript, Speaker, TranscriptWord

logger = structlog.get_logger(__name__)


class TranscriptShape(str, Enum):
    """Recognized raw transcript payload shapes."""

    PLAIN_TEXT = "plain_text"
    TRANSCRIPT_OBJECT = "transcript_object"
    SEGMENT_LIST = "segment_list"
    PARTICIPANT_SEGMENTS = "participant_segments"
    UNRECOGNIZED = "unrecognized"


def classify_payload(payload: Any) -> TranscriptShape:
    """Decide the payload shape by inspecting its keys."""
    if isinstance(payload, str):
        return TranscriptShape.PLAIN_TEXT if payload.strip() else TranscriptShape.UNRECOGNIZED

    if isinstance(payload, dict):
        if payload.get("transcript"):
            return TranscriptShape.TRANSCRIPT_OBJECT
        return TranscriptShape.UNRECOGNIZED

    if isinstance(payload, list) and payload:
        first = payload[0]
        if not isinstance(first, dict):
            return TranscriptShape.UNRECOGNIZED
        if first.get("participant") and isinstance(first.get("words"), list):
            return TranscriptShape.PARTICIPANT_SEGMENTS
        if any(
            isinstance(seg, dict) and (seg.get("text") or seg.get("transcript"))
            for seg in payload
        ):
            return TranscriptShape.SEGMENT_LIST

    return TranscriptShape.UNRECOGNIZED


# ── Per-shape normalizers ────────────────────────────────────────────────────


def _coerce_word(raw: Any) -> TranscriptWord | None:
    # Provider words are copied through; only timestamps are coerced
    if not isinstance(raw, dict):
        return None
    return TranscriptWord(
        text=str(raw.get("text") or ""),
        start_time=_as_seconds(raw.get("start_time")),
        end_time=_as_seconds(raw.get("end_time")),
        speaker=str(raw["speaker"]) if raw.get("speaker") is not None else None,
    )


def _coerce_speaker(position: int, raw: Any) -> Speaker | None:
    if not isinstance(raw, dict):
        return None
    speaker_id = str(raw["id"]) if raw.get("id") is not None else str(position)
    return Speaker(id=speaker_id, name=raw.get("name") or f"Speaker {speaker_id}")


def _as_seconds(value: Any) -> float:
    if isinstance(value, dict):
        value = value.get("relative")
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _normalize_plain_text(payload: str) -> CanonicalTranscript:
    return CanonicalTranscript(text=payload)


def _normalize_transcript_object(payload: dict) -> CanonicalTranscript:
    words = [w for w in map(_coerce_word, payload.get("words") or []) if w is not None]
    speakers = [
        s
        for s in (
            _coerce_speaker(position, raw)
            for position, raw in enumerate(payload.get("speakers") or [])
        )
        if s is not None
    ]
    return CanonicalTranscript(text=str(payload["transcript"]), words=words, speakers=speakers)


def _normalize_segment_list(payload: list) -> CanonicalTranscript:
    texts: list[str] = []
    words: list[TranscriptWord] = []
    for segment in payload:
        if not isinstance(segment, dict):
            continue
        segment_text = segment.get("text") or segment.get("transcript")
        if segment_text:
            texts.append(str(segment_text))
        for raw in segment.get("words") or []:
            word = _coerce_word(raw)
            if word is not None:
                words.append(word)
    return CanonicalTranscript(text=" ".join(texts), words=words)


def _normalize_participant_segments(payload: list) -> CanonicalTranscript:
    # First-seen name wins for a participant id
    speakers: dict[str, Speaker] = {}
    words: list[TranscriptWord] = []

    for segment in payload:
        if not isinstance(segment, dict):
            continue
        participant = segment.get("participant") or {}
        speaker_id: str | None = None
        if participant.get("id") is not None:
            speaker_id = str(participant["id"])
            if speaker_id not in speakers:
                speakers[speaker_id] = Speaker(
                    id=speaker_id,
                    name=participant.get("name") or f"Speaker {speaker_id}",
                )

        for raw in segment.get("words") or []:
            if not isinstance(raw, dict) or not raw.get("text"):
                continue
            words.append(
                TranscriptWord(
                    text=str(raw["text"]),
                    start_time=_as_seconds(raw.get("start_timestamp")),
                    end_time=_as_seconds(raw.get("end_timestamp")),
                    speaker=speaker_id,
                )
            )

    # Text is built from words, not segments, so text and words always agree
    return CanonicalTranscript(
        text=" ".join(w.text for w in words),
        words=words,
        speakers=list(speakers.values()),
    )


_NORMALIZERS: dict[TranscriptShape, Callable[[Any], CanonicalTranscript]] = {
    TranscriptShape.PLAIN_TEXT: _normalize_plain_text,
    TranscriptShape.TRANSCRIPT_OBJECT: _normalize_transcript_object,
    TranscriptShape.SEGMENT_LIST: _normalize_segment_list,
    TranscriptShape.PARTICIPANT_SEGMENTS: _normalize_participant_segments,
}


def normalize_transcript(payload: Any) -> CanonicalTranscript:
    """Normalize any raw transcript payload into a CanonicalTranscript.

    Unrecognized or empty payloads return an empty transcript.
    """
    shape = classify_payload(payload)
    normalizer = _NORMALIZERS.get(shape)
    if normalizer is None:
        if payload:
            logger.warning(
                "transcript.unrecognized_shape",
                payload_type=type(payload).__name__,
            )
        return CanonicalTranscript()

    transcript = normalizer(payload)
    logger.debug(
        "transcript.normalized",
        shape=shape.value,
        word_count=len(transcript.words),
        speaker_count=len(transcript.speakers),
    )
    return transcript


def transcript_duration_minutes(words: list[TranscriptWord]) -> int:
    """Meeting duration in whole minutes from the last word's end time (halves round up)."""
    if not words:
        return 0
    return math.floor(words[-1].end_time / 60 + 0.5)
