"""Line budget, word-safety splitting, and karaoke chunking.

WHY: Burned-in captions cannot wrap gracefully once rendered; a line that
is too long simply runs off the frame. The budget has to follow the
canvas width and font size, and very long tokens (URLs, compound words)
have to be broken before they reach the renderer.

HOW: max_chars_per_line() estimates the character budget from the
usable width and an average glyph width of 0.55 × font size.
split_long_words() hyphen-splits oversized tokens, sharing the word's
time between pieces by length. chunk_words() groups words into short
lines and lines into chunks for the kinetic styles.

RULES:
- The budget never drops below MIN_CHARS_PER_LINE
- Tokens longer than budget - 2 are split; every piece but the last ends in "-"
- A karaoke line holds at most MAX_WORDS_PER_LINE words and never exceeds
  the budget unless it is a single token
"""

from __future__ import annotations

import math

from autocaps.captions.styles import CaptionStyle
from autocaps.core.ir import CaptionSegment, Word
from autocaps.core.normalizer import distribute_words_evenly

MIN_CHARS_PER_LINE = 10
GLYPH_WIDTH_RATIO = 0.55
MAX_WORDS_PER_LINE = 3
LINES_PER_CHUNK = 1


def max_chars_per_line(canvas_width: int, style: CaptionStyle) -> int:
    """Character budget for one caption line on a canvas of canvas_width px."""
    safe_width = canvas_width - style.margin_l - style.margin_r
    glyph_width = max(style.font_size, 1) * GLYPH_WIDTH_RATIO
    return max(MIN_CHARS_PER_LINE, int(math.floor(safe_width / glyph_width)))


def ensure_word_timings(segments: list[CaptionSegment]) -> list[CaptionSegment]:
    """Give every segment word timings, synthesizing them evenly when missing."""
    result = []
    for segment in segments:
        if segment.words:
            result.append(segment)
            continue
        words = distribute_words_evenly(segment.text, segment.start, segment.end)
        result.append(CaptionSegment(
            id=segment.id, start=segment.start, end=segment.end, text=segment.text, words=words,
        ))
    return result


def _split_word(word: Word, max_len: int) -> list[Word]:
    pieces = []
    for offset in range(0, len(word.text), max_len):
        piece = word.text[offset:offset + max_len]
        if offset + max_len < len(word.text):
            piece += "-"
        pieces.append(piece)

    total_len = sum(len(p) for p in pieces)
    duration = word.end - word.start
    cursor = word.start
    split = []
    for index, piece in enumerate(pieces):
        end = word.end if index == len(pieces) - 1 else cursor + duration * len(piece) / total_len
        split.append(Word(text=piece, start=cursor, end=end))
        cursor = end
    return split


def split_long_words(segments: list[CaptionSegment], max_chars: int) -> list[CaptionSegment]:
    """Hyphen-split words that would not fit on a line.

    RULES:
    - Segments without oversized words are returned unchanged
    - A split segment's text is rebuilt from its pieces
    """
    max_len = max(MIN_CHARS_PER_LINE // 2, max_chars - 2)
    result = []
    for segment in segments:
        if not any(len(w.text) > max_len for w in segment.words):
            result.append(segment)
            continue
        words: list[Word] = []
        for word in segment.words:
            if len(word.text) > max_len:
                words.extend(_split_word(word, max_len))
            else:
                words.append(word)
        result.append(CaptionSegment(
            id=segment.id,
            start=segment.start,
            end=segment.end,
            text=" ".join(w.text for w in words),
            words=words,
        ))
    return result


def _line_width(words: list[Word]) -> int:
    return len(" ".join(w.text for w in words))


def chunk_words(
    words: list[Word],
    max_chars: int,
    max_words_per_line: int = MAX_WORDS_PER_LINE,
    lines_per_chunk: int = LINES_PER_CHUNK,
) -> list[list[list[Word]]]:
    """Group words into chunks of lines for kinetic captions.

    Returns a list of chunks; each chunk is a list of lines; each line a
    list of words. A chunk spans its first word's start to its last
    word's end.
    """
    lines: list[list[Word]] = []
    current: list[Word] = []
    for word in words:
        if current and _line_width(current + [word]) > max_chars:
            lines.append(current)
            current = []
        current.append(word)
        if len(current) >= max_words_per_line:
            lines.append(current)
            current = []
    if current:
        lines.append(current)

    step = max(1, lines_per_chunk)
    return [lines[i:i + step] for i in range(0, len(lines), step)]
