"""Plain sequential-cue SRT writer.

RULES:
- Cue indices are 1-based
- Timestamps are HH:MM:SS,mmm rounded to the nearest millisecond
- Blocks are separated by one blank line
"""

from __future__ import annotations

from autocaps.captions.base import BaseSubtitleWriter
from autocaps.captions.styles import CaptionStyle
from autocaps.core.ir import CaptionSegment


def seconds_to_srt_time(seconds: float) -> str:
    """Convert seconds to SRT timestamp format: HH:MM:SS,mmm"""
    total_ms = int(round(max(0.0, seconds) * 1000))
    hours, rest = divmod(total_ms, 3600 * 1000)
    minutes, rest = divmod(rest, 60 * 1000)
    secs, millis = divmod(rest, 1000)
    return "{:02d}:{:02d}:{:02d},{:03d}".format(hours, minutes, secs, millis)


class SrtWriter(BaseSubtitleWriter):
    """Writes one SRT cue per segment; style and canvas are ignored."""

    @property
    def format_name(self) -> str:
        return "srt"

    @property
    def media_type(self) -> str:
        return "application/x-subrip"

    def write(
        self,
        segments: list[CaptionSegment],
        style: CaptionStyle,
        canvas: tuple[int, int],
    ) -> str:
        blocks = []
        for index, segment in enumerate(segments, start=1):
            blocks.append("{}\n{} --> {}\n{}\n".format(
                index,
                seconds_to_srt_time(segment.start),
                seconds_to_srt_time(segment.end),
                segment.text.strip(),
            ))
        return "\n".join(blocks)
