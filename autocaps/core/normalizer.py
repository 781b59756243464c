"""Timing normalizer: raw recognition output → clean caption segments.

WHY: Recognition output arrives with gaps, overlaps, zero-length words,
segments that end before their own words, or no timestamps at all. The
caption compiler animates word by word, so it needs a timeline it can
trust: cues in order, never overlapping, each word long enough to see.

HOW: Five stages, each a small pure function:
  1. normalize_word_list   — word hygiene (sort, clamp, cap gaps, min duration)
  2. segment boundaries    — clamp to the previous cue, text-length minimum
  3. word assignment       — own words, else a slice of the global list
  4. fallback synthesis    — distribute_words_evenly() over the cue
  5. extension             — the cue grows to cover its last word
normalize_payload() dispatches each recognition payload variant to its
own normalizer; all variants converge on normalize_segments().

RULES:
- Output segments satisfy start < end, ordered by non-decreasing start
- Words satisfy Word.duration_ms >= min_word_duration (whole ms) and
  never overlap
- An audible word is never clipped; the cue is extended instead
- Times are rounded to milliseconds
- normalize_payload() never raises; it always returns at least one segment
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable

from autocaps.core.ir import CaptionSegment, RawSegment, Word
from autocaps.core.payloads import (
    ChunkedPayload,
    SegmentedPayload,
    TextPayload,
    WordStreamPayload,
    parse_payload,
)

logger = logging.getLogger(__name__)

EMPTY_TRANSCRIPT_TEXT = "(empty transcript)"

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_SENTENCE_END = re.compile(r"[.!?]$")


@dataclass(frozen=True)
class TimingConfig:
    """Thresholds used by every normalization stage.

    RULES:
    - All durations are seconds
    - Defaults are tuned for short-form vertical video captions
    """

    min_word_duration: float = 0.05
    min_segment_duration: float = 0.2
    max_silence_gap: float = 0.5
    seconds_per_char: float = 0.04
    boundary_tolerance: float = 0.05
    max_segment_words: int = 35
    max_segment_duration: float = 9.0
    max_segment_gap: float = 1.2
    placeholder_spacing: float = 2.0
    placeholder_chars_per_second: float = 12.0
    placeholder_min_duration: float = 1.5


DEFAULT_TIMING = TimingConfig()


def round_time(value: float, decimals: int = 3) -> float:
    """Round seconds to a fixed precision; non-finite values become 0."""
    if value is None or not math.isfinite(value):
        return 0.0
    return round(value, decimals)


# ---------------------------------------------------------------------------
# Stage 1: word hygiene
# ---------------------------------------------------------------------------


def normalize_word_list(
    words: Iterable[Word],
    config: TimingConfig = DEFAULT_TIMING,
    cap_gaps: bool = True,
) -> list[Word]:
    """Sort and repair a flat word list.

    HOW: Drops entries with empty text, non-finite or inverted times. Then
    walks the words in start order: a start before the previous end is
    clamped forward, a silence gap above max_silence_gap is closed down to
    the threshold by pulling the start back, and a short word is extended
    to min_word_duration.

    RULES:
    - The first word's leading silence is never capped
    - Output starts are >= 0 and never precede the previous end
    - cap_gaps=False keeps real silences; segmentation needs them to
      find max_segment_gap boundaries
    """
    usable = [
        w for w in words
        if w.text and w.text.strip()
        and w.start is not None and w.end is not None
        and math.isfinite(w.start) and math.isfinite(w.end)
        and w.end > w.start
    ]
    usable.sort(key=lambda w: w.start)

    normalized: list[Word] = []
    last_end = 0.0
    for word in usable:
        start = word.start
        end = word.end
        if normalized:
            if start < last_end:
                start = last_end
            if cap_gaps and start - last_end > config.max_silence_gap:
                start = last_end + config.max_silence_gap

        start = round_time(max(0.0, start))
        end = round_time(max(end, start + config.min_word_duration))

        normalized.append(Word(text=word.text.strip(), start=start, end=end))
        last_end = end

    return normalized


# ---------------------------------------------------------------------------
# Word-stream segmentation
# ---------------------------------------------------------------------------


def segment_word_stream(
    words: list[Word],
    config: TimingConfig = DEFAULT_TIMING,
) -> list[RawSegment]:
    """Group an ordered word stream (real gaps kept) into raw segments.

    RULES:
    - A segment closes on terminal punctuation, max_segment_words,
      max_segment_duration, a gap above max_segment_gap before the next
      word, or the end of the stream, whichever comes first
    - Each raw segment carries its own words
    """
    segments: list[RawSegment] = []
    current: list[Word] = []

    for index, word in enumerate(words):
        current.append(word)
        next_word = words[index + 1] if index + 1 < len(words) else None

        punctuation_break = bool(_SENTENCE_END.search(word.text))
        too_long = word.end - current[0].start >= config.max_segment_duration
        too_many = len(current) >= config.max_segment_words
        long_gap = next_word is None or next_word.start - word.end > config.max_segment_gap

        if punctuation_break or too_long or too_many or long_gap:
            segments.append(RawSegment(
                text=" ".join(w.text for w in current),
                start=current[0].start,
                end=current[-1].end,
                id=str(len(segments)),
                words=list(current),
            ))
            current = []

    return segments


# ---------------------------------------------------------------------------
# Stages 2–5: segment normalization
# ---------------------------------------------------------------------------


def distribute_words_evenly(
    text: str,
    start: float,
    end: float,
    config: TimingConfig = DEFAULT_TIMING,
) -> list[Word]:
    """Split text on whitespace and share [start, end] evenly between tokens.

    RULES:
    - The span is stretched to tokens * min_word_duration when too short
    - The last token ends exactly at start + span
    """
    tokens = text.split()
    if not tokens:
        return []

    span = max(end - start if end > start else 0.0, len(tokens) * config.min_word_duration)
    per_word = span / len(tokens)

    words = []
    for index, token in enumerate(tokens):
        word_start = start + index * per_word
        word_end = start + span if index == len(tokens) - 1 else word_start + per_word
        words.append(Word(text=token, start=round_time(word_start), end=round_time(word_end)))
    return words


def _clip_own_words(
    words: list[Word],
    seg_start: float,
    seg_end: float,
    config: TimingConfig,
) -> list[Word]:
    """Hygiene-normalize a segment's own words and clip them into the cue."""
    clipped = []
    for word in normalize_word_list(words, config):
        start = max(seg_start, word.start)
        if start >= seg_end:
            continue
        end = min(seg_end, word.end)
        if end - start < config.min_word_duration:
            end = start + config.min_word_duration
        clipped.append(Word(text=word.text, start=round_time(start), end=round_time(end)))
    return clipped


def _build_word_timeline(
    words: list[Word],
    text: str,
    seg_start: float,
    seg_end: float,
    config: TimingConfig,
) -> list[Word]:
    if not words:
        return distribute_words_evenly(text, seg_start, seg_end, config)

    ordered = sorted(words, key=lambda w: w.start)
    timeline: list[Word] = []
    cursor = seg_start

    for index, word in enumerate(ordered):
        start = max(word.start, seg_start, cursor)
        if timeline and start - timeline[-1].end > config.max_silence_gap:
            start = timeline[-1].end + config.max_silence_gap

        end = max(word.end, start + config.min_word_duration)
        # clip to the cue only while the word stays visible long enough
        if end > seg_end and seg_end - start >= config.min_word_duration:
            end = seg_end
        if index == len(ordered) - 1 and end < seg_end:
            end = seg_end

        start = round_time(start)
        end = round_time(max(end, start + config.min_word_duration))
        timeline.append(Word(text=word.text, start=start, end=end))
        cursor = end

    return timeline


def _segment_id(raw_id: str | None, index: int) -> str:
    if raw_id is None:
        return "segment_{}".format(index)
    if raw_id.startswith("segment_"):
        return raw_id
    return "segment_{}".format(raw_id)


def normalize_segments(
    raw_segments: list[RawSegment],
    global_words: list[Word] | None = None,
    config: TimingConfig = DEFAULT_TIMING,
) -> list[CaptionSegment]:
    """Resolve raw segments into validated caption cues.

    HOW: For each segment in order: clamp start to the previous cue's end,
    widen end to the text-length minimum, then pick word timings from the
    segment's own words, else a slice of the global word list (one forward
    cursor, so each global word lands in at most one cue), else synthesize
    them. Finally extend the cue to cover its last word.

    RULES:
    - Segments with neither text nor words are skipped
    - global_words are hygiene-normalized here; callers pass them raw
    - Segment ids are "segment_<id or index>"
    """
    hygienic = normalize_word_list(global_words or [], config)
    cursor = 0
    previous_end = 0.0
    normalized: list[CaptionSegment] = []

    for index, raw in enumerate(raw_segments):
        text = (raw.text or "").strip()
        if not text and raw.words:
            text = " ".join(w.text.strip() for w in raw.words if w.text and w.text.strip())
        if not text:
            continue

        raw_start = raw.start if raw.start is not None and math.isfinite(raw.start) else 0.0
        raw_end = raw.end if raw.end is not None and math.isfinite(raw.end) else raw_start
        minimum_end = raw_start + max(len(text), 1) * config.seconds_per_char

        start = round_time(max(raw_start, previous_end))
        end = round_time(max(raw_end, minimum_end))
        if end - start < config.min_segment_duration:
            end = round_time(start + config.min_segment_duration)

        source: list[Word] = []
        if raw.words:
            source = _clip_own_words(raw.words, start, end, config)
        if not source and hygienic:
            while cursor < len(hygienic):
                word = hygienic[cursor]
                if word.end <= start - config.boundary_tolerance:
                    cursor += 1
                    continue
                if word.start >= end + config.boundary_tolerance:
                    break
                source.append(word)
                cursor += 1

        words = _build_word_timeline(source, text, start, end, config)

        if words and words[-1].end > end:
            end = round_time(words[-1].end)
        if end - start < config.min_segment_duration:
            end = round_time(start + config.min_segment_duration)

        previous_end = end
        normalized.append(CaptionSegment(
            id=_segment_id(raw.id, index),
            start=start,
            end=end,
            text=text,
            words=words,
        ))

    return normalized


# ---------------------------------------------------------------------------
# Placeholder timelines
# ---------------------------------------------------------------------------


def build_segments_from_plain_text(
    text: str,
    config: TimingConfig = DEFAULT_TIMING,
) -> list[CaptionSegment]:
    """Deterministic placeholder cues for text without any timestamps.

    RULES:
    - Empty text yields one "(empty transcript)" cue over [0, 2]
    - Sentence i starts at i * placeholder_spacing and lasts
      max(len / placeholder_chars_per_second, placeholder_min_duration)
    - Overlapping windows are resolved by normalize_segments()
    """
    stripped = (text or "").strip()
    if not stripped:
        raw = [RawSegment(text=EMPTY_TRANSCRIPT_TEXT, start=0.0, end=config.placeholder_spacing, id="0")]
        return normalize_segments(raw, config=config)

    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(stripped) if s.strip()]
    raw = []
    for index, sentence in enumerate(sentences):
        start = index * config.placeholder_spacing
        duration = max(
            len(sentence) / config.placeholder_chars_per_second,
            config.placeholder_min_duration,
        )
        raw.append(RawSegment(text=sentence, start=start, end=start + duration, id=str(index)))
    return normalize_segments(raw, config=config)


# ---------------------------------------------------------------------------
# Payload variants
# ---------------------------------------------------------------------------


def normalize_chunked(
    payload: ChunkedPayload,
    config: TimingConfig = DEFAULT_TIMING,
) -> list[CaptionSegment]:
    """Chunked uploads: shift chunk-relative words by each chunk's offset.

    RULES:
    - A chunk without an explicit offset starts where the previous ended
      (previous offset + usage seconds, else previous chunk end)
    - A chunk's window spans its words; without words it lasts usage
      seconds, else the text-length estimate
    """
    raw_segments: list[RawSegment] = []
    all_words: list[Word] = []
    offset = 0.0

    for index, chunk in enumerate(payload.chunks):
        chunk_offset = chunk.offset if chunk.offset is not None else offset
        usage = chunk.usage_seconds if chunk.usage_seconds and chunk.usage_seconds > 0 else None

        words = []
        for word in chunk.words:
            start = chunk_offset + max(0.0, word.start)
            end = chunk_offset + max(word.end, word.start)
            if end <= start:
                continue
            words.append(Word(text=word.text, start=round_time(start), end=round_time(end)))

        chunk_start = min(w.start for w in words) if words else round_time(chunk_offset)
        if words:
            end_candidate = max(w.end for w in words)
        elif usage is not None:
            end_candidate = chunk_start + usage
        else:
            end_candidate = chunk_start + max(len(chunk.text) * config.seconds_per_char, config.min_segment_duration)
        chunk_end = round_time(max(end_candidate, chunk_start + config.min_segment_duration))

        raw_segments.append(RawSegment(
            text=chunk.text or " ".join(w.text for w in words),
            start=chunk_start,
            end=chunk_end,
            id=chunk.id if chunk.id is not None else "chunk_{}".format(index),
            words=words or None,
        ))
        all_words.extend(words)
        offset = chunk_offset + usage if usage is not None else chunk_end

    return normalize_segments(raw_segments, all_words, config)


def normalize_segmented(
    payload: SegmentedPayload,
    config: TimingConfig = DEFAULT_TIMING,
) -> list[CaptionSegment]:
    return normalize_segments(payload.segments, payload.words, config)


def normalize_word_stream(
    payload: WordStreamPayload,
    config: TimingConfig = DEFAULT_TIMING,
) -> list[CaptionSegment]:
    # gaps are capped per segment, after the boundaries are known
    words = normalize_word_list(payload.words, config, cap_gaps=False)
    return normalize_segments(segment_word_stream(words, config), config=config)


def normalize_text(
    payload: TextPayload,
    config: TimingConfig = DEFAULT_TIMING,
) -> list[CaptionSegment]:
    return build_segments_from_plain_text(payload.text, config)


_NORMALIZERS = {
    "chunked": normalize_chunked,
    "segmented": normalize_segmented,
    "words": normalize_word_stream,
    "text": normalize_text,
}


def _fallback_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict) and isinstance(raw.get("text"), str):
        return raw["text"]
    return ""


def normalize_payload(
    raw: Any,
    config: TimingConfig = DEFAULT_TIMING,
) -> list[CaptionSegment]:
    """Normalize any recognition payload into caption segments.

    WHY: Callers (HTTP API, CLI) hand over whatever the provider produced.
    A malformed payload must still produce a renderable timeline rather
    than fail the request.

    HOW: parse_payload() picks the variant, its normalizer runs, and an
    empty result (or any unexpected internal error) falls back to
    placeholder cues built from the payload text.

    RULES:
    - Never raises
    - Always returns at least one segment
    """
    segments: list[CaptionSegment] = []
    try:
        payload = parse_payload(raw)
        segments = _NORMALIZERS[payload.kind](payload, config)
    except Exception:
        logger.exception("Recognition payload normalization failed; using plain-text fallback")
        segments = []

    if segments:
        return segments

    return build_segments_from_plain_text(_fallback_text(raw), config)
