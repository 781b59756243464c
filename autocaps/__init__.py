"""autocaps: timed captions burned into short-form video.

WHY: Speech-recognition output arrives in several loosely-structured
shapes with overlapping, missing, or zero-length timings. Turning it into
a polished captioned video needs three independent steps that must each be
testable on their own: fix the timings, compile a styled subtitle file,
and drive ffmpeg to burn subtitles and animated overlays onto the video.

HOW: Four layers:
  core      — recognition payload parsing and timing normalization (pure)
  captions  — style registry and ASS/SRT subtitle compilation (pure)
  render    — ffmpeg filter graph, progress parsing, storage, render engine
  server    — job store, HTTP API and the server-sent progress channel
plus an httpx client (api) and an argparse CLI.

RULES:
- CaptionSegment (core.ir) is the stable contract between normalization
  and compilation
- Only the render engine drives job-state transitions
- Normalization and compilation never raise on well-formed input
"""

__version__ = "0.1.0"
