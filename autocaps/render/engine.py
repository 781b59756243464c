"""Render job engine: one queued job in, one captioned video out.

WHY: Burning captions into a video touches object storage, the local
disk, ffmpeg, and the job record. Keeping the whole sequence in one place
makes the failure handling obvious: every exit path ends with the job in a
terminal state and the scratch directory gone.

HOW: RenderEngine.run(job_id) reads the job's RenderDescriptor from the
store and walks the steps in order:
  1. mark the job processing
  2. create a per-job scratch directory
  3. fetch the source video and the compiled subtitle file
  4. probe the duration (reported as progress 0 once known)
  5. clamp overlay windows to the duration and fetch each overlay asset
  6. stage the style's font file, if it ships one
  7. build the filter graph and ffmpeg command
  8. run ffmpeg, feeding stderr through a ProgressReporter into the store
  9. check the output, upload it, mark the job done with its download URL

Any exception marks the job failed with a readable message. There is no
retry and no state kept between jobs.

RULES:
- Progress written while processing stays below 1.0; done sets 1.0
- A failed overlay download is logged and that overlay is skipped
- An empty or missing output file is a failure, never a result
- The scratch directory is removed on every exit path
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Protocol

from autocaps.captions.styles import CaptionStyle, StyleRegistry, default_registry
from autocaps.config import FFMPEG_PATH, FONTS_DIR, RENDER_FPS, RENDER_TIMEOUT_S, SCRATCH_DIR
from autocaps.render.ffmpeg import (
    TranscoderError,
    build_filter_graph,
    build_render_command,
    build_subtitles_filter,
    probe_duration,
    run_ffmpeg,
)
from autocaps.render.models import Overlay, RenderDescriptor
from autocaps.render.overlays import clamp_overlays
from autocaps.render.progress import FfmpegTimeParser, ProgressParser, ProgressReporter
from autocaps.render.storage import ObjectStorage, StorageError

logger = logging.getLogger(__name__)

OUTPUT_CONTENT_TYPE = "video/mp4"

_OVERLAY_EXT = re.compile(r"\.(gif|webp|png|mp4)(?:$|[?#])", re.IGNORECASE)
_DEFAULT_OVERLAY_EXT = "gif"


class RenderJobStore(Protocol):
    """The job-record operations the engine needs."""

    def get_job(self, job_id: str) -> Any:
        ...

    def mark_processing(self, job_id: str) -> Any:
        ...

    def update_progress(self, job_id: str, progress: float) -> Any:
        ...

    def mark_done(self, job_id: str, result_path: str, download_url: str) -> Any:
        ...

    def mark_failed(self, job_id: str, error: str) -> Any:
        ...


def overlay_extension(asset_url: str) -> str:
    """File extension for an overlay asset, defaulting to gif."""
    match = _OVERLAY_EXT.search(asset_url)
    return match.group(1).lower() if match else _DEFAULT_OVERLAY_EXT


class RenderEngine:
    """Executes render jobs against storage and ffmpeg.

    WHY: The HTTP layer and the CLI both run renders. The engine holds the
    collaborators (store, storage, style registry, ffmpeg settings) so
    callers only pass a job id.

    RULES:
    - run() never raises for job failures; it records them on the job
    - The probe is a plain callable so tests can skip ffprobe
    """

    def __init__(
        self,
        store: RenderJobStore,
        storage: ObjectStorage,
        registry: StyleRegistry | None = None,
        ffmpeg_binary: str = FFMPEG_PATH,
        probe: Callable[[Path], float | None] = probe_duration,
        scratch_root: str | None = None,
        fonts_dir: str | None = FONTS_DIR,
        timeout_s: float | None = RENDER_TIMEOUT_S,
        parser_factory: Callable[[], ProgressParser] = FfmpegTimeParser,
    ) -> None:
        self.store = store
        self.storage = storage
        self.registry = registry or default_registry()
        self.ffmpeg_binary = ffmpeg_binary
        self.probe = probe
        self.scratch_root = scratch_root if scratch_root is not None else (SCRATCH_DIR or None)
        self.fonts_dir = fonts_dir
        self.timeout_s = timeout_s
        self.parser_factory = parser_factory

    async def run(self, job_id: str) -> None:
        job = self.store.get_job(job_id)
        if job is None:
            logger.warning("Render job %s not found", job_id)
            return

        descriptor: RenderDescriptor = job.descriptor
        scratch: Path | None = None
        try:
            self.store.mark_processing(job_id)
            scratch = Path(tempfile.mkdtemp(prefix="autocaps-{}-".format(job_id), dir=self.scratch_root))
            result_path, download_url = await self._render(job_id, descriptor, scratch)
            self.store.mark_done(job_id, result_path=result_path, download_url=download_url)
            logger.info("Render job %s done: %s", job_id, result_path)
        except Exception as exc:
            logger.exception("Render job %s failed", job_id)
            self.store.mark_failed(job_id, _describe(exc))
        finally:
            if scratch is not None:
                shutil.rmtree(scratch, ignore_errors=True)

    async def _render(self, job_id: str, descriptor: RenderDescriptor, scratch: Path) -> tuple[str, str]:
        style = self.registry.resolve(descriptor.style_id).with_overrides(**descriptor.style_overrides)

        # Inputs
        video_path = scratch / "input{}".format(Path(descriptor.video_path).suffix or ".mp4")
        subtitle_path = scratch / "captions.{}".format(descriptor.subtitle_format)
        await self.storage.fetch_to_file(descriptor.video_path, video_path)
        await self.storage.fetch_to_file(descriptor.subtitle_path, subtitle_path)

        duration = await asyncio.to_thread(self.probe, video_path)
        if duration and duration > 0:
            self.store.update_progress(job_id, 0.0)
        else:
            logger.warning("Could not determine duration of %s; progress disabled", descriptor.video_path)
            duration = None

        overlays = descriptor.overlays
        if duration:
            overlays = clamp_overlays(overlays, duration)
        overlays, overlay_paths = await self._fetch_overlays(overlays, scratch)

        fonts_dir = self._stage_fonts(style, descriptor.subtitle_format, scratch)

        # ffmpeg
        subtitles_filter = build_subtitles_filter(
            subtitle_path, descriptor.subtitle_format, style, fonts_dir=fonts_dir,
        )
        graph = build_filter_graph(
            subtitles_filter, overlays, style.resolved_overlay_anchor(), fps=RENDER_FPS,
        )
        output_path = scratch / "output.mp4"
        cmd = build_render_command(self.ffmpeg_binary, video_path, overlay_paths, graph, output_path)
        logger.info("Rendering job %s with %d overlay(s)", job_id, len(overlays))
        logger.debug("ffmpeg command: %s", cmd)

        reporter = ProgressReporter(
            duration,
            sink=lambda ratio: self.store.update_progress(job_id, ratio),
            parser=self.parser_factory(),
        )
        await run_ffmpeg(cmd, on_output=reporter, timeout_s=self.timeout_s)

        if not output_path.is_file() or output_path.stat().st_size == 0:
            raise TranscoderError("ffmpeg produced no output")

        await self.storage.put_file(descriptor.output_path, output_path, OUTPUT_CONTENT_TYPE)
        return descriptor.output_path, self.storage.url_for(descriptor.output_path)

    async def _fetch_overlays(
        self,
        overlays: list[Overlay],
        scratch: Path,
    ) -> tuple[list[Overlay], list[Path]]:
        kept: list[Overlay] = []
        paths: list[Path] = []
        for index, overlay in enumerate(overlays):
            target = scratch / "overlay-{}.{}".format(index, overlay_extension(overlay.asset_url))
            try:
                await self.storage.fetch_to_file(overlay.asset_url, target)
            except StorageError as exc:
                logger.warning("Skipping overlay %s: %s", overlay.asset_url, exc)
                continue
            kept.append(overlay)
            paths.append(target)
        return kept, paths

    def _stage_fonts(self, style: CaptionStyle, subtitle_format: str, scratch: Path) -> Path | None:
        if subtitle_format != "ass" or not self.fonts_dir:
            return None
        fonts_root = Path(self.fonts_dir)
        if style.font_file:
            source = fonts_root / style.font_file
            if source.is_file():
                staged = scratch / "fonts"
                staged.mkdir(exist_ok=True)
                shutil.copyfile(source, staged / source.name)
                return staged
            logger.warning("Font file %s not found; falling back to system fonts", source)
        return fonts_root if fonts_root.is_dir() else None


def _describe(exc: Exception) -> str:
    """One-line error for the job record."""
    message = str(exc).strip().splitlines()[0] if str(exc).strip() else ""
    return message or exc.__class__.__name__
