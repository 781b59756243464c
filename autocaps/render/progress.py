"""Transcoder progress parsing and persistence throttling.

WHY: ffmpeg reports progress as "time=HH:MM:SS.ss" tokens interleaved
with other diagnostics on stderr, arriving in arbitrary chunk sizes.
The job state machine should not know about that text format, and the
job store should not be written on every frame.

HOW: ProgressParser is a narrow protocol (feed text, get timestamps in
seconds). FfmpegTimeParser implements it for ffmpeg's stats line and
buffers partial lines across chunks. ProgressThrottle decides which
ratios are worth persisting. ProgressReporter glues parser, throttle and
a sink together and is passed to run_ffmpeg() as its output callback.

RULES:
- Ratios are clamped to [0, 1] and rounded to 4 decimals
- A ratio is persisted only if it rose by >= min_delta, or it rose at all
  and min_interval_s passed since the last persist
- Ratios never go backwards through the throttle
- Without a positive duration nothing is reported
"""

from __future__ import annotations

import re
import time
from typing import Callable, Protocol

_TIME_TOKEN = re.compile(r"time=(\d{2,}):(\d{2}):(\d{2}(?:\.\d+)?)")
_LINE_BREAK = re.compile(r"[\r\n]")
_MAX_BUFFER = 4096


class ProgressParser(Protocol):
    """Turns streamed transcoder output into elapsed media timestamps."""

    def feed(self, text: str) -> list[float]:
        ...


class FfmpegTimeParser:
    """Parses ffmpeg "time=HH:MM:SS.ss" stats tokens."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> list[float]:
        self._buffer += text
        lines = _LINE_BREAK.split(self._buffer)
        self._buffer = lines.pop()[-_MAX_BUFFER:]
        seconds = []
        for line in lines:
            for hours, minutes, secs in _TIME_TOKEN.findall(line):
                seconds.append(int(hours) * 3600 + int(minutes) * 60 + float(secs))
        return seconds


def progress_ratio(elapsed_s: float, duration_s: float) -> float:
    if duration_s <= 0:
        return 0.0
    return round(max(0.0, min(1.0, elapsed_s / duration_s)), 4)


class ProgressThrottle:
    """Rate-limits progress persistence."""

    def __init__(
        self,
        min_delta: float = 0.005,
        min_interval_s: float = 0.3,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_delta = min_delta
        self.min_interval_s = min_interval_s
        self._clock = clock
        self._last_ratio = 0.0
        self._last_emit: float | None = None

    def should_emit(self, ratio: float) -> bool:
        if ratio <= self._last_ratio:
            return False
        now = self._clock()
        big_step = ratio - self._last_ratio >= self.min_delta
        stale = self._last_emit is None or now - self._last_emit >= self.min_interval_s
        if not (big_step or stale):
            return False
        self._last_ratio = ratio
        self._last_emit = now
        return True


class ProgressReporter:
    """Output callback for run_ffmpeg(): parse, throttle, persist."""

    def __init__(
        self,
        duration_s: float | None,
        sink: Callable[[float], None],
        parser: ProgressParser | None = None,
        throttle: ProgressThrottle | None = None,
    ) -> None:
        self.duration_s = duration_s
        self.sink = sink
        self.parser = parser or FfmpegTimeParser()
        self.throttle = throttle or ProgressThrottle()

    def __call__(self, text: str) -> None:
        if not self.duration_s or self.duration_s <= 0:
            return
        for elapsed in self.parser.feed(text):
            ratio = progress_ratio(elapsed, self.duration_s)
            if self.throttle.should_emit(ratio):
                self.sink(ratio)
