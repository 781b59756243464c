"""ffmpeg filter graph, command line, duration probe, and process runner.

WHY: The render is one long ffmpeg invocation. Building its filter graph
and argv as plain strings in one place keeps the engine readable and lets
tests assert on the exact command without running ffmpeg.

HOW: build_filter_graph() chains frame-rate/pixel-format normalization,
one animated sprite per overlay input, and the subtitles filter last so
overlays render underneath text. build_render_command() adds the inputs
and the fixed encode bundle. run_ffmpeg() launches the process with
asyncio, streams its stderr to a callback, and enforces a wall-clock
budget. probe_duration() asks ffprobe, then falls back to parsing
"Duration:" from ``ffmpeg -i``.

RULES:
- Input 0 is the source video; overlay i is input i + 1
- The graph's output label is [final]; audio is mapped optionally (0:a?)
- Encode: H.264 high@4.1 yuv420p, CRF 18, 30 fps, +faststart,
  AAC 192k 48 kHz stereo, -shortest
- run_ffmpeg() raises TranscoderError on spawn failure or non-zero exit and
  RenderTimeoutError after killing an over-budget process
"""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from collections import deque
from pathlib import Path
from typing import Callable, Sequence

from autocaps.captions.styles import CaptionStyle, OverlayAnchor, to_ass_color
from autocaps.config import FFMPEG_PATH, FFPROBE_PATH, RENDER_FPS
from autocaps.render.models import Overlay

logger = logging.getLogger(__name__)

OVERLAY_SETTLE_S = 0.4

ENCODE_ARGS = [
    "-c:v", "libx264",
    "-profile:v", "high",
    "-level", "4.1",
    "-pix_fmt", "yuv420p",
    "-preset", "medium",
    "-crf", "18",
    "-r", str(RENDER_FPS),
    "-movflags", "+faststart",
    "-c:a", "aac",
    "-b:a", "192k",
    "-ar", "48000",
    "-ac", "2",
    "-shortest",
]

_DURATION_RE = re.compile(r"Duration:\s*(\d{2}):(\d{2}):(\d{2}(?:\.\d+)?)")

_STDERR_TAIL_CHUNKS = 16
_ERROR_MAX_CHARS = 300


class TranscoderError(RuntimeError):
    """Raised when ffmpeg cannot be started or exits unsuccessfully.

    RULES:
    - returncode is None when the process never started
    - The message is one short line suitable for a job record
    """

    def __init__(self, message: str, returncode: int | None = None) -> None:
        self.returncode = returncode
        super().__init__(message)


class RenderTimeoutError(TimeoutError):
    """Raised when ffmpeg exceeds the render wall-clock budget."""


# ---------------------------------------------------------------------------
# Filter graph
# ---------------------------------------------------------------------------


def escape_filter_path(path: str | Path) -> str:
    """Escape a filesystem path for use inside a quoted filter argument."""
    return str(path).replace("\\", "/").replace(":", r"\:").replace(" ", r"\ ")


def _force_style(style: CaptionStyle) -> str:
    """libass force_style overrides so SRT input still renders in the chosen look."""
    return ",".join([
        "Fontname={}".format(style.font_family),
        "Fontsize={}".format(style.font_size),
        "PrimaryColour={}&".format(to_ass_color(style.primary_color)),
        "OutlineColour={}&".format(to_ass_color(style.outline_color)),
        "BackColour={}&".format(to_ass_color(style.shadow_color)),
        "Outline={}".format(style.outline_width),
        "Shadow={}".format(style.shadow_width),
        "Alignment={}".format(style.alignment),
        "MarginV={}".format(style.margin_v),
    ])


def build_subtitles_filter(
    subtitle_path: str | Path,
    subtitle_format: str,
    style: CaptionStyle,
    fonts_dir: str | Path | None = None,
) -> str:
    """The subtitles filter that burns the caption track in.

    RULES:
    - ASS files carry their own styles; only fontsdir is added
    - SRT files get a force_style built from the caption style
    """
    escaped = escape_filter_path(subtitle_path)
    if subtitle_format == "ass":
        fonts = ":fontsdir={}".format(escape_filter_path(fonts_dir)) if fonts_dir else ""
        return "subtitles='{}{}'".format(escaped, fonts)
    return "subtitles='{}:force_style={}'".format(escaped, _force_style(style))


def _overlay_y(anchor: OverlayAnchor, start: float) -> str:
    return "'({s})+(({r})-({s}))*min(1,(t-{t:.3f})/{settle})'".format(
        s=anchor.start_y, r=anchor.rest_y, t=start, settle=OVERLAY_SETTLE_S
    )


def build_filter_graph(
    subtitles_filter: str,
    overlays: Sequence[Overlay],
    anchor: OverlayAnchor,
    fps: int = RENDER_FPS,
) -> str:
    """Compose the full -filter_complex graph.

    Each overlay is scaled to its size hint, rocks gently, is padded so
    the rotation never clips, slides from the anchor's start_y to rest_y
    over OVERLAY_SETTLE_S, and is only enabled inside its window.
    """
    parts = ["[0:v]fps={},format=yuv420p[base]".format(fps)]
    previous = "base"
    for index, overlay in enumerate(overlays):
        parts.append(
            "[{inp}:v]scale={size}:-1,rotate=a='0.05*sin(5*t)':ow='iw*1.2':oh='ih*1.2':c=none"
            "[ovsc{i}]".format(inp=index + 1, size=overlay.size_hint, i=index)
        )
        label = "v{}".format(index + 1)
        parts.append(
            "[{prev}][ovsc{i}]overlay=x=(main_w-overlay_w)/2:y={y}"
            ":enable='between(t,{start:.3f},{end:.3f})'[{label}]".format(
                prev=previous,
                i=index,
                y=_overlay_y(anchor, overlay.start),
                start=overlay.start,
                end=overlay.end,
                label=label,
            )
        )
        previous = label
    parts.append("[{}]{}[final]".format(previous, subtitles_filter))
    return ";".join(parts)


def build_render_command(
    ffmpeg_binary: str,
    video_path: str | Path,
    overlay_paths: Sequence[str | Path],
    filter_graph: str,
    output_path: str | Path,
) -> list[str]:
    cmd = [ffmpeg_binary, "-y", "-nostdin", "-hide_banner", "-i", str(video_path)]
    for path in overlay_paths:
        cmd += ["-stream_loop", "-1", "-i", str(path)]
    cmd += ["-filter_complex", filter_graph, "-map", "[final]", "-map", "0:a?"]
    cmd += ENCODE_ARGS
    cmd.append(str(output_path))
    return cmd


# ---------------------------------------------------------------------------
# Duration probe
# ---------------------------------------------------------------------------


def _parse_hms(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def probe_duration(
    path: str | Path,
    ffprobe_binary: str = FFPROBE_PATH,
    ffmpeg_binary: str = FFMPEG_PATH,
) -> float | None:
    """Media duration in seconds, or None when it cannot be determined."""
    try:
        proc = subprocess.run(
            [
                ffprobe_binary,
                "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                str(path),
            ],
            capture_output=True,
            text=True,
        )
        if proc.returncode == 0:
            return float(proc.stdout.strip())
    except (OSError, ValueError):
        logger.debug("ffprobe could not read duration of %s", path)

    try:
        proc = subprocess.run([ffmpeg_binary, "-i", str(path)], capture_output=True, text=True)
    except OSError:
        return None
    match = _DURATION_RE.search(proc.stderr or "")
    if match is None:
        return None
    return _parse_hms(*match.groups())


# ---------------------------------------------------------------------------
# Process runner
# ---------------------------------------------------------------------------


def _summarize_stderr(text: str) -> str:
    lines = [line.strip() for line in re.split(r"[\r\n]+", text) if line.strip()]
    if not lines:
        return "no diagnostic output"
    return lines[-1][:_ERROR_MAX_CHARS]


async def run_ffmpeg(
    cmd: list[str],
    on_output: Callable[[str], None] | None = None,
    timeout_s: float | None = None,
) -> None:
    """Run ffmpeg, streaming decoded stderr chunks to on_output.

    RULES:
    - stdin is closed and stdout discarded; all diagnostics come from stderr
    - The process is killed on timeout or if the caller is cancelled
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise TranscoderError("Could not start {}: {}".format(cmd[0], exc)) from exc

    tail: deque = deque(maxlen=_STDERR_TAIL_CHUNKS)

    async def _pump() -> int:
        assert proc.stderr is not None
        while True:
            chunk = await proc.stderr.read(4096)
            if not chunk:
                break
            text = chunk.decode("utf-8", errors="replace")
            tail.append(text)
            if on_output is not None:
                on_output(text)
        return await proc.wait()

    try:
        returncode = await asyncio.wait_for(_pump(), timeout=timeout_s)
    except asyncio.TimeoutError:
        raise RenderTimeoutError(
            "ffmpeg exceeded the render time budget of {:.0f}s".format(timeout_s)
        ) from None
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    if returncode != 0:
        raise TranscoderError(
            "ffmpeg exited with code {}: {}".format(returncode, _summarize_stderr("".join(tail))),
            returncode=returncode,
        )
