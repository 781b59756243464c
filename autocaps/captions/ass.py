"""Styled ASS writer with layered kinetic (karaoke) events.

WHY: ASS is the only widely supported subtitle format that ffmpeg's
libass can burn in with per-cue colors, outlines, alignment and timed
override transitions. The kinetic styles need all of that: each chunk
zooms in, and each word lights up in the highlight color while it is
spoken, over a soft glow layer.

HOW: The file is a fixed [Script Info] header sized to the canvas, one
Style line built from the CaptionStyle, and an [Events] section. Simple
styles emit one static Dialogue per segment. Kinetic styles chunk each
segment's words (see layout.chunk_words) and emit two Dialogue lines per
chunk with identical timing:
  layer 0 — glow: translucent highlight color, wide blur, brightens per word
  layer 1 — core: primary color, thin outline, switches to the highlight
            color on [start, start + 50ms] and back on [end, end + 50ms]

RULES:
- Override times are milliseconds relative to the chunk start
- A word's highlight lasts at least MIN_HIGHLIGHT_MS
- Highlight color index = floor(chunk_index / cycle_after_chunks) % colors,
  with chunk_index counted across all segments
- Curly braces in caption text become parentheses (they open override blocks)
- Timestamps are H:MM:SS.cc rounded to the nearest centisecond
"""

from __future__ import annotations

from autocaps.captions.base import BaseSubtitleWriter
from autocaps.captions.layout import (
    chunk_words,
    ensure_word_timings,
    max_chars_per_line,
    split_long_words,
)
from autocaps.captions.styles import CaptionStyle, to_ass_color, to_ass_inline_color
from autocaps.core.ir import CaptionSegment, Word

STYLE_FORMAT = (
    "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, "
    "OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, "
    "ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, "
    "MarginR, MarginV, Encoding"
)
EVENT_FORMAT = "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"

CHUNK_ZOOM_IN = r"\fscx80\fscy80\t(0,50,\fscx100\fscy100)"
HIGHLIGHT_FADE_MS = 50
GLOW_FADE_OUT_MS = 80
MIN_HIGHLIGHT_MS = 10

GLOW_LAYER = 0
CORE_LAYER = 1


def format_ass_time(seconds: float) -> str:
    total_cs = int(max(0.0, seconds) * 100 + 0.5)
    cs = total_cs % 100
    total_s = total_cs // 100
    s = total_s % 60
    total_m = total_s // 60
    m = total_m % 60
    h = total_m // 60
    return "{}:{:02d}:{:02d}.{:02d}".format(h, m, s, cs)


def escape_ass_text(text: str) -> str:
    return text.replace("{", "(").replace("}", ")").replace("\n", r"\N")


def _number(value: float) -> str:
    """Style numbers without a trailing .0 for whole values."""
    return str(int(value)) if float(value).is_integer() else str(value)


def build_header(canvas: tuple[int, int]) -> str:
    width, height = canvas
    return "\n".join([
        "[Script Info]",
        "ScriptType: v4.00+",
        "PlayResX: {}".format(width),
        "PlayResY: {}".format(height),
        "ScaledBorderAndShadow: yes",
        "WrapStyle: 2",
        "",
        "[V4+ Styles]",
        STYLE_FORMAT,
    ])


def build_style_line(style: CaptionStyle) -> str:
    primary = to_ass_color(style.primary_color)
    return "Style: {},{},{},{},{},{},{},-1,0,0,0,100,100,0,0,1,{},{},{},{},{},{},1".format(
        style.name,
        style.font_family,
        style.font_size,
        primary,
        primary,
        to_ass_color(style.outline_color),
        to_ass_color(style.shadow_color),
        _number(style.outline_width),
        _number(style.shadow_width),
        style.alignment,
        style.margin_l,
        style.margin_r,
        style.margin_v,
    )


def _dialogue(layer: int, start: float, end: float, style: CaptionStyle, text: str) -> str:
    return "Dialogue: {},{},{},{},,0,0,0,,{}".format(
        layer, format_ass_time(start), format_ass_time(end), style.name, text
    )


def simple_events(segments: list[CaptionSegment], style: CaptionStyle) -> list[str]:
    events = []
    for segment in segments:
        text = segment.text.strip()
        if style.uppercase:
            text = text.upper()
        events.append(_dialogue(0, segment.start, segment.end, style, escape_ass_text(text)))
    return events


def _word_window(word: Word, chunk_start: float) -> tuple[int, int]:
    rel = int(round((word.start - chunk_start) * 1000))
    duration = max(MIN_HIGHLIGHT_MS, int(round((word.end - word.start) * 1000)))
    return rel, rel + duration


def _core_word(word: Word, chunk_start: float, base: str, highlight: str) -> str:
    rel, rel_end = _word_window(word, chunk_start)
    return (
        "{{{zoom}\\1c{base}\\3c&H000000&\\bord0.6\\blur0.4\\shad0.15"
        "\\t({a},{b},\\1c{hl})\\t({c},{d},\\1c{base})}}{text}"
    ).format(
        zoom=CHUNK_ZOOM_IN,
        base=base,
        hl=highlight,
        a=rel,
        b=rel + HIGHLIGHT_FADE_MS,
        c=rel_end,
        d=rel_end + HIGHLIGHT_FADE_MS,
        text=escape_ass_text(word.text.upper()),
    )


def _glow_word(word: Word, chunk_start: float, highlight: str) -> str:
    rel, rel_end = _word_window(word, chunk_start)
    return (
        "{{{zoom}\\alpha&H60&\\1c{hl}\\bord0\\blur10\\shad0"
        "\\t({a},{b},\\alpha&H30&)\\t({c},{d},\\alpha&H60&)}}{text}"
    ).format(
        zoom=CHUNK_ZOOM_IN,
        hl=highlight,
        a=rel,
        b=rel + HIGHLIGHT_FADE_MS,
        c=rel_end,
        d=rel_end + GLOW_FADE_OUT_MS,
        text=escape_ass_text(word.text.upper()),
    )


def karaoke_events(
    segments: list[CaptionSegment],
    style: CaptionStyle,
    max_chars: int,
) -> list[str]:
    """Two layered Dialogue lines per word chunk, glow first."""
    karaoke = style.karaoke
    if karaoke is None:
        return simple_events(segments, style)

    base = to_ass_inline_color(style.primary_color)
    events = []
    chunk_index = 0
    for segment in segments:
        for chunk in chunk_words(segment.words, max_chars):
            chunk_start = chunk[0][0].start
            chunk_end = chunk[-1][-1].end
            highlight = to_ass_inline_color(
                karaoke.highlight_colors[karaoke.color_index(chunk_index)]
            )

            glow = r"\N".join(
                " ".join(_glow_word(w, chunk_start, highlight) for w in line) for line in chunk
            )
            core = r"\N".join(
                " ".join(_core_word(w, chunk_start, base, highlight) for w in line) for line in chunk
            )
            events.append(_dialogue(GLOW_LAYER, chunk_start, chunk_end, style, glow))
            events.append(_dialogue(CORE_LAYER, chunk_start, chunk_end, style, core))
            chunk_index += 1
    return events


class AssWriter(BaseSubtitleWriter):
    """Writes a styled ASS file; kinetic styles get layered per-word events."""

    @property
    def format_name(self) -> str:
        return "ass"

    @property
    def media_type(self) -> str:
        return "text/x-ass"

    def write(
        self,
        segments: list[CaptionSegment],
        style: CaptionStyle,
        canvas: tuple[int, int],
    ) -> str:
        max_chars = max_chars_per_line(canvas[0], style)
        prepared = split_long_words(ensure_word_timings(segments), max_chars)

        if style.is_karaoke:
            events = karaoke_events(prepared, style, max_chars)
        else:
            events = simple_events(prepared, style)

        return "{}\n{}\n\n[Events]\n{}\n{}\n".format(
            build_header(canvas),
            build_style_line(style),
            EVENT_FORMAT,
            "\n".join(events),
        )
