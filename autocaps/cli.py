"""Command-line interface for autocaps.

WHY: Editors and developers need to run the pipeline on local files
without standing up the HTTP service: inspect how a recognition payload
normalizes, preview the compiled subtitle file, render a captioned video
end to end, or start the API server.

HOW: argparse with four subcommands:
  normalize  recognition JSON → caption segments JSON
  compile    recognition JSON → ASS/SRT subtitle file
  render     video + recognition JSON → captioned MP4 (local storage,
             in-process job store, the same RenderEngine as the server)
  serve      run the FastAPI app with uvicorn

RULES:
- Status output goes to stderr (not stdout) so results can be piped
- Input files are read as UTF-8 JSON; a non-JSON file is treated as
  plain transcript text
- Exit code 1 on any error, 130 on Ctrl-C
- Python 3.9 compatible (no match/case, no X | Y unions at runtime)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import shutil
import sys
import tempfile
import uuid
from pathlib import Path
from typing import Any, List, Optional

from autocaps.captions import WRITERS
from autocaps.captions.compiler import CaptionCompiler
from autocaps.captions.styles import default_registry
from autocaps.config import (
    CAPTIONS_PREFIX,
    DEFAULT_RESOLUTION,
    RENDERS_PREFIX,
    RENDER_RESOLUTIONS,
    configure_logging,
    resolve_resolution,
)
from autocaps.core.ir import CaptionSegment
from autocaps.core.normalizer import normalize_payload
from autocaps.render.engine import RenderEngine
from autocaps.render.ffmpeg import probe_duration
from autocaps.render.models import RenderDescriptor
from autocaps.render.overlays import derive_overlays
from autocaps.render.storage import LocalObjectStorage, sanitize_key
from autocaps.server.jobs import JobStatus, JobStore


def _status(msg: str) -> None:
    """Print a status message to stderr.

    WHY: Status output must not pollute stdout so the CLI can be piped.
    """
    print(msg, file=sys.stderr, flush=True)


def _load_transcript(path: Path) -> Any:
    """Read a recognition payload; non-JSON files become plain text."""
    text = path.read_text(encoding="utf-8")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"text": text}


def _write_output(content: str, output: Optional[str]) -> None:
    if output:
        Path(output).write_text(content, encoding="utf-8")
        _status("Saved {}".format(output))
    else:
        sys.stdout.write(content)
        if not content.endswith("\n"):
            sys.stdout.write("\n")


def _segments_from_file(path_str: str) -> List[CaptionSegment]:
    path = Path(path_str)
    if not path.is_file():
        raise ValueError("File not found: {}".format(path))
    return normalize_payload(_load_transcript(path))


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _cmd_normalize(args: argparse.Namespace) -> None:
    segments = _segments_from_file(args.transcript)
    _status("Normalized {} segment(s)".format(len(segments)))
    _write_output(json.dumps([s.to_dict() for s in segments], indent=2), args.output)


def _cmd_compile(args: argparse.Namespace) -> None:
    segments = _segments_from_file(args.transcript)
    _, canvas = resolve_resolution(args.resolution)
    subtitle = CaptionCompiler().compile(
        segments,
        style_id=args.style,
        canvas=canvas,
        subtitle_format=args.format,
        max_duration=args.max_duration,
    )
    _status("Compiled {} segment(s) with style '{}'".format(len(segments), subtitle.style_id))
    _write_output(subtitle.content, args.output)


class _ConsoleJobStore(JobStore):
    """JobStore that also reports render progress on stderr."""

    def update_progress(self, job_id: str, progress: float):
        job = super().update_progress(job_id, progress)
        if job is not None and job.progress == progress:
            _status("Rendering... {:5.1f}%".format(progress * 100))
        return job


async def _render(args: argparse.Namespace) -> None:
    video = Path(args.video)
    if not video.is_file():
        raise ValueError("File not found: {}".format(video))

    segments = _segments_from_file(args.transcript)
    resolution, canvas = resolve_resolution(args.resolution)
    compiler = CaptionCompiler()

    duration = probe_duration(video)
    subtitle = compiler.compile(
        segments,
        style_id=args.style,
        canvas=canvas,
        subtitle_format=args.format,
        max_duration=duration,
    )
    overlays = derive_overlays(segments) if args.auto_overlays else []

    workspace = Path(tempfile.mkdtemp(prefix="autocaps-cli-"))
    try:
        storage = LocalObjectStorage(workspace)
        upload_id = video.stem
        job_id = uuid.uuid4().hex
        video_key = "uploads/{}/source{}".format(upload_id, video.suffix)
        subtitle_key = "{}/{}/{}{}".format(CAPTIONS_PREFIX, upload_id, job_id, subtitle.suffix)
        await storage.put_file(video_key, video, "video/mp4")
        await storage.put(subtitle_key, subtitle.encode(), subtitle.media_type)

        store = _ConsoleJobStore(max_workers=1)
        descriptor = RenderDescriptor(
            upload_id=upload_id,
            video_path=video_key,
            subtitle_path=subtitle_key,
            output_path="{}/{}/{}.mp4".format(RENDERS_PREFIX, upload_id, job_id),
            subtitle_format=subtitle.format,
            style_id=subtitle.style_id,
            resolution=resolution,
            overlays=overlays,
        )
        store.create_job(descriptor, job_id=job_id)
        _status("Rendering {} with style '{}' ({} overlay(s))...".format(
            video.name, subtitle.style_id, len(overlays)
        ))

        await RenderEngine(store, storage).run(job_id)

        job = store.get_job(job_id)
        if job.status != JobStatus.DONE:
            raise RuntimeError(job.error or "Render failed")

        output = Path(args.output)
        shutil.copyfile(workspace / sanitize_key(job.result_path), output)
        _status("Done! Saved {}".format(output))
    finally:
        shutil.rmtree(workspace, ignore_errors=True)


def _cmd_render(args: argparse.Namespace) -> None:
    asyncio.run(_render(args))


def _cmd_serve(args: argparse.Namespace) -> None:
    import uvicorn

    from autocaps.server.app import app

    uvicorn.run(app, host=args.host, port=args.port)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    WHY: Separating parser construction from main() makes the CLI
    testable; tests can inspect the parser without running anything.
    """
    parser = argparse.ArgumentParser(
        prog="autocaps",
        description="Normalize speech-recognition output, compile styled captions, "
                    "and burn them into videos with ffmpeg.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: AUTOCAPS_LOG_LEVEL or INFO).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    style_ids = ", ".join(default_registry().ids())
    resolutions = ", ".join(sorted(RENDER_RESOLUTIONS))

    p_norm = sub.add_parser("normalize", help="Normalize a recognition payload into caption segments.")
    p_norm.add_argument("transcript", help="Recognition JSON (or plain text) file.")
    p_norm.add_argument("-o", "--output", default=None, help="Write JSON here instead of stdout.")
    p_norm.set_defaults(func=_cmd_normalize)

    p_comp = sub.add_parser("compile", help="Compile a recognition payload into a subtitle file.")
    p_comp.add_argument("transcript", help="Recognition JSON (or plain text) file.")
    p_comp.add_argument("--style", default=None, help="Caption style ({}).".format(style_ids))
    p_comp.add_argument(
        "--format",
        default="ass",
        choices=sorted(WRITERS),
        help="Subtitle format (default: %(default)s).",
    )
    p_comp.add_argument(
        "--resolution",
        default=DEFAULT_RESOLUTION,
        help="Canvas preset: {} (default: %(default)s).".format(resolutions),
    )
    p_comp.add_argument(
        "--max-duration",
        type=float,
        default=None,
        help="Video length in seconds; later cues are dropped or clamped.",
    )
    p_comp.add_argument("-o", "--output", default=None, help="Write the file here instead of stdout.")
    p_comp.set_defaults(func=_cmd_compile)

    p_rend = sub.add_parser("render", help="Burn captions into a local video file.")
    p_rend.add_argument("video", help="Source video file.")
    p_rend.add_argument("transcript", help="Recognition JSON (or plain text) file.")
    p_rend.add_argument("-o", "--output", required=True, help="Output MP4 path.")
    p_rend.add_argument("--style", default=None, help="Caption style ({}).".format(style_ids))
    p_rend.add_argument(
        "--format",
        default="ass",
        choices=sorted(WRITERS),
        help="Subtitle format burned in (default: %(default)s).",
    )
    p_rend.add_argument(
        "--resolution",
        default=DEFAULT_RESOLUTION,
        help="Canvas preset: {} (default: %(default)s).".format(resolutions),
    )
    p_rend.add_argument(
        "--auto-overlays",
        action="store_true",
        help="Add emoji overlays for trigger keywords in the captions.",
    )
    p_rend.set_defaults(func=_cmd_render)

    p_serve = sub.add_parser("serve", help="Run the HTTP API server.")
    p_serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: %(default)s).")
    p_serve.add_argument("--port", type=int, default=8000, help="Port (default: %(default)s).")
    p_serve.set_defaults(func=_cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        args.func(args)
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(130)
    except Exception as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
