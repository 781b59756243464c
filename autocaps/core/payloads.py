"""Recognition payload variants as a tagged union.

WHY: Providers (and manual overrides) hand us recognition output in four
loosely-related JSON shapes: chunked uploads with chunk-relative word
times, per-segment output with an optional global word list, a bare word
stream, or plain text. Sniffing keys ad hoc all over the normalizer makes
every new shape a risk, so each shape is detected once, parsed into its
own typed record, and dispatched to one normalization function.

HOW: Each variant has a JSON Schema. parse_payload() tries them in a
fixed order (chunked → segmented → words) with jsonschema validators and
falls back to TextPayload. An explicit "kind" key overrides detection.
Word entries are coerced leniently: text from "word" or "text", timings
from numeric fields; entries without usable timings are dropped.

RULES:
- parse_payload() never raises; a bare string becomes TextPayload(text), other
  non-dict input TextPayload("")
- Chunk word timings stay chunk-relative here; the normalizer applies offsets
- Non-finite numbers are treated as missing
- Detection order is chunked, segmented, words, text
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Union

from jsonschema import Draft7Validator

from autocaps.core.ir import RawSegment, Word

# ---------------------------------------------------------------------------
# Variant schemas
# ---------------------------------------------------------------------------

_OBJECT_ARRAY = {"type": "array", "minItems": 1, "items": {"type": "object"}}

CHUNKED_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["mode", "chunks"],
    "properties": {
        "mode": {"const": "chunked"},
        "chunks": {"type": "array", "items": {"type": "object"}},
    },
}

SEGMENTED_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["segments"],
    "properties": {"segments": _OBJECT_ARRAY},
}

WORDS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["words"],
    "properties": {"words": _OBJECT_ARRAY},
}


# ---------------------------------------------------------------------------
# Variant records
# ---------------------------------------------------------------------------


@dataclass
class Chunk:
    """One chunk of a chunked upload; word times are relative to offset."""

    text: str
    offset: float | None = None
    usage_seconds: float | None = None
    id: str | None = None
    words: list[Word] = field(default_factory=list)


@dataclass
class ChunkedPayload:
    chunks: list[Chunk]
    text: str = ""
    kind: str = "chunked"


@dataclass
class SegmentedPayload:
    segments: list[RawSegment]
    words: list[Word] = field(default_factory=list)
    text: str = ""
    kind: str = "segmented"


@dataclass
class WordStreamPayload:
    words: list[Word]
    text: str = ""
    kind: str = "words"


@dataclass
class TextPayload:
    text: str = ""
    kind: str = "text"


RecognitionPayload = Union[ChunkedPayload, SegmentedPayload, WordStreamPayload, TextPayload]

PAYLOAD_KINDS = ("chunked", "segmented", "words", "text")


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def _number(value: Any) -> float | None:
    """Return value as a finite float, or None."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _first_number(entry: dict, *keys: str) -> float | None:
    for key in keys:
        if entry.get(key) is not None:
            return _number(entry[key])
    return None


def _text_of(entry: dict) -> str:
    for key in ("word", "text"):
        value = entry.get(key)
        if isinstance(value, str):
            return value.strip()
    return ""


def _coerce_word(entry: Any) -> Word | None:
    """Absolute-time word entry; dropped unless text, start and end are usable."""
    if not isinstance(entry, dict):
        return None
    text = _text_of(entry)
    start = _number(entry.get("start"))
    end = _number(entry.get("end"))
    if not text or start is None or end is None:
        return None
    return Word(text=text, start=start, end=end)


def _coerce_chunk_word(entry: Any) -> Word | None:
    """Chunk-relative word entry with begin/offset/finish aliases."""
    if not isinstance(entry, dict):
        return None
    text = _text_of(entry)
    if not text:
        return None
    start = _first_number(entry, "start", "begin", "offset")
    if start is None:
        start = 0.0
    end = _first_number(entry, "end", "finish")
    if end is None:
        end = start
    return Word(text=text, start=start, end=end)


def _coerce_words(entries: Any) -> list[Word]:
    if not isinstance(entries, list):
        return []
    return [w for w in (_coerce_word(e) for e in entries) if w is not None]


def _string(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


# ---------------------------------------------------------------------------
# Variant parsers
# ---------------------------------------------------------------------------


def _parse_chunked(raw: dict) -> ChunkedPayload:
    chunks = []
    for entry in raw.get("chunks") or []:
        if not isinstance(entry, dict):
            continue
        usage = entry.get("usage")
        words = [
            w for w in (_coerce_chunk_word(e) for e in entry.get("words") or [])
            if w is not None
        ]
        chunks.append(Chunk(
            text=_string(entry.get("text")),
            offset=_number(entry.get("offset")),
            usage_seconds=_number(usage.get("seconds")) if isinstance(usage, dict) else None,
            id=str(entry["id"]) if entry.get("id") is not None else None,
            words=words,
        ))
    return ChunkedPayload(chunks=chunks, text=_string(raw.get("text")))


def _parse_segmented(raw: dict) -> SegmentedPayload:
    segments = []
    for entry in raw.get("segments") or []:
        if not isinstance(entry, dict):
            continue
        own_words = entry.get("words")
        segments.append(RawSegment(
            text=_string(entry.get("text")),
            start=_number(entry.get("start")),
            end=_number(entry.get("end")),
            id=str(entry["id"]) if entry.get("id") is not None else None,
            words=_coerce_words(own_words) if isinstance(own_words, list) else None,
        ))
    return SegmentedPayload(
        segments=segments,
        words=_coerce_words(raw.get("words")),
        text=_string(raw.get("text")),
    )


def _parse_words(raw: dict) -> WordStreamPayload:
    return WordStreamPayload(words=_coerce_words(raw.get("words")), text=_string(raw.get("text")))


def _parse_text(raw: dict) -> TextPayload:
    return TextPayload(text=_string(raw.get("text")))


_PARSERS = {
    "chunked": _parse_chunked,
    "segmented": _parse_segmented,
    "words": _parse_words,
    "text": _parse_text,
}

_DETECTORS = (
    ("chunked", Draft7Validator(CHUNKED_SCHEMA)),
    ("segmented", Draft7Validator(SEGMENTED_SCHEMA)),
    ("words", Draft7Validator(WORDS_SCHEMA)),
)


def detect_kind(raw: Any) -> str:
    """Return the payload kind for a raw recognition document.

    RULES:
    - An explicit, known "kind" key wins
    - Otherwise the first matching variant schema wins
    - Anything unmatched is "text"
    """
    if not isinstance(raw, dict):
        return "text"
    explicit = raw.get("kind")
    if explicit in PAYLOAD_KINDS:
        return explicit
    for kind, validator in _DETECTORS:
        if validator.is_valid(raw):
            return kind
    return "text"


def parse_payload(raw: Any) -> RecognitionPayload:
    """Parse a raw recognition document into its typed variant."""
    if not isinstance(raw, dict):
        return TextPayload(text=raw.strip() if isinstance(raw, str) else "")
    return _PARSERS[detect_kind(raw)](raw)
