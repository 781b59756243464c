"""Caption compiler: segments + style → subtitle file.

WHY: Callers think in terms of "these cues, in this look, for this
video". The compiler resolves the look through the injected style
registry, applies per-request overrides, optionally trims cues to the
video length, and hands the result to the right writer.

HOW: CaptionCompiler holds a StyleRegistry. compile() resolves the style
(unknown ids fall back to the registry default), applies overrides,
clamps to max_duration, and runs the writer from WRITERS.

RULES:
- Never raises on valid segment input; unknown styles fall back
- An unknown subtitle format is a caller error and raises ValueError
- Compiling identical input twice yields identical content
- Cues starting at or after max_duration are dropped; later ends are clamped
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from autocaps.captions import WRITERS
from autocaps.captions.base import SubtitleFile
from autocaps.captions.styles import CaptionStyle, StyleRegistry, default_registry
from autocaps.core.ir import CaptionSegment, Word

logger = logging.getLogger(__name__)

DEFAULT_CANVAS = (1920, 1080)


def clamp_to_duration(segments: list[CaptionSegment], max_duration: float) -> list[CaptionSegment]:
    """Drop cues that start after max_duration and clamp the rest."""
    clamped = []
    for segment in segments:
        if segment.start >= max_duration:
            continue
        words = [
            Word(text=w.text, start=w.start, end=min(w.end, max_duration))
            for w in segment.words
            if w.start < max_duration
        ]
        clamped.append(CaptionSegment(
            id=segment.id,
            start=segment.start,
            end=min(segment.end, max_duration),
            text=segment.text,
            words=words,
        ))
    return clamped


class CaptionCompiler:
    """Compiles caption segments into ASS or SRT subtitle files."""

    def __init__(self, registry: StyleRegistry | None = None) -> None:
        self.registry = registry or default_registry()

    def resolve_style(
        self,
        style_id: str | None,
        overrides: Mapping[str, Any] | None = None,
    ) -> tuple[str, CaptionStyle]:
        canonical = self.registry.canonical_id(style_id)
        style = self.registry.styles[canonical]
        if overrides:
            style = style.with_overrides(**dict(overrides))
        return canonical, style

    def compile(
        self,
        segments: list[CaptionSegment],
        style_id: str | None = None,
        canvas: tuple[int, int] = DEFAULT_CANVAS,
        subtitle_format: str = "ass",
        overrides: Mapping[str, Any] | None = None,
        max_duration: float | None = None,
    ) -> SubtitleFile:
        """Compile segments into one subtitle file.

        Args:
            segments: Normalized caption segments.
            style_id: Registry id (or alias) of the caption look.
            canvas: (width, height) of the target video in pixels.
            subtitle_format: "ass" or "srt".
            overrides: Optional font_size / margin_v / alignment /
                margin_l / margin_r replacements.
            max_duration: Optional video length in seconds.

        Returns:
            A SubtitleFile holding the written content.
        """
        writer_cls = WRITERS.get(subtitle_format)
        if writer_cls is None:
            raise ValueError(
                "Unknown subtitle format '{}'. Supported: {}".format(
                    subtitle_format, ", ".join(sorted(WRITERS))
                )
            )
        writer = writer_cls()

        canonical, style = self.resolve_style(style_id, overrides)
        if max_duration is not None and max_duration > 0:
            segments = clamp_to_duration(segments, max_duration)

        content = writer.write(segments, style, canvas)
        logger.debug(
            "Compiled %d segments into %s with style %s", len(segments), writer.format_name, canonical
        )
        return SubtitleFile(
            format=writer.format_name,
            style_id=canonical,
            content=content,
            media_type=writer.media_type,
        )
