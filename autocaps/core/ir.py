"""Intermediate representation dataclasses for timed captions.

WHY: Recognition providers return words and segments in several shapes
with inconsistent keys and unreliable timings. The caption compiler needs
one well-typed form it can trust: cues that never overlap and words that
never run backwards. These dataclasses are that contract.

HOW: Three dataclasses:
  Word           — one spoken token with start/end seconds
  RawSegment     — a segment as read from a payload, before normalization
  CaptionSegment — a normalized caption cue with optional word timings

RULES:
- All times are float seconds from the start of the video
- Word: end > start; duration_ms >= the configured minimum word duration,
  compared in whole milliseconds
- CaptionSegment: start < end; words (when present) lie inside the cue
  and are time-monotonic
- RawSegment fields may be missing or inconsistent; only the normalizer
  turns them into CaptionSegments
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Word:
    """A single spoken word with its timing.

    RULES:
    - text is stripped, never empty after normalization
    - start / end are seconds, rounded to milliseconds by the normalizer
    """

    text: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def duration_ms(self) -> int:
        return round(self.end * 1000) - round(self.start * 1000)

    def to_dict(self) -> dict:
        return {"text": self.text, "start": self.start, "end": self.end}


@dataclass
class RawSegment:
    """A segment exactly as declared by a recognition payload.

    WHY: Declared times are hints, not facts. Keeping the raw shape
    separate from CaptionSegment makes it impossible to hand unvalidated
    timings to the compiler.
    """

    text: str
    start: float | None = None
    end: float | None = None
    id: str | None = None
    words: list[Word] | None = None


@dataclass
class CaptionSegment:
    """A caption cue with validated timing.

    WHY: The compiler lays cues out on screen and animates per-word
    highlights. It relies on start < end and on words staying inside the
    cue, so both are guaranteed here.

    RULES:
    - id: "segment_<n>" unless the payload supplied one
    - start < end
    - words: first.start >= start, last.end <= end, non-overlapping
    """

    id: str
    start: float
    end: float
    text: str
    words: list[Word] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "words": [w.to_dict() for w in self.words],
        }

    @classmethod
    def from_dict(cls, data: dict) -> CaptionSegment:
        words = [
            Word(text=str(w["text"]), start=float(w["start"]), end=float(w["end"]))
            for w in data.get("words") or []
        ]
        return cls(
            id=str(data.get("id") or "segment_0"),
            start=float(data["start"]),
            end=float(data["end"]),
            text=str(data.get("text") or ""),
            words=words,
        )
