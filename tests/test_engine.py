"""Tests for the render job engine.

WHY: The engine is where every failure mode of a render meets the job
record. Whatever happens (missing inputs, a crashing transcoder, an empty
output), the job must end done or failed and the scratch directory must be
gone.

HOW: A /bin/sh script stands in for ffmpeg. It records its arguments,
prints an ffmpeg-style stats line to stderr, and writes the output file
(its last argument). Storage is a LocalObjectStorage in tmp_path and the
duration probe is a lambda, so no real media tools are needed.
"""

from __future__ import annotations

import asyncio
import dataclasses
import os
import sys

import pytest

from autocaps.captions.styles import default_registry
from autocaps.render.engine import RenderEngine, overlay_extension
from autocaps.render.storage import LocalObjectStorage
from autocaps.server.jobs import JobStatus, JobStore

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="needs /bin/sh")

VIDEO_DURATION = 11.5


class _RecordingStore(JobStore):
    """JobStore that remembers every progress value it was handed."""

    def __init__(self):
        super().__init__()
        self.progress_calls = []

    def update_progress(self, job_id, progress):
        self.progress_calls.append(progress)
        return super().update_progress(job_id, progress)


def _fake_ffmpeg(tmp_path, body):
    path = tmp_path / "ffmpeg.sh"
    path.write_text("#!/bin/sh\n" + body + "\n")
    os.chmod(path, 0o755)
    return str(path)


def _ok_ffmpeg(tmp_path):
    args_file = tmp_path / "ffmpeg-args.txt"
    return _fake_ffmpeg(tmp_path, "\n".join([
        "printf '%s\\n' \"$@\" > '{}'".format(args_file),
        "for last; do :; done",
        "echo 'frame=150 fps=30 time=00:00:05.00 bitrate=900kbits/s' >&2",
        "printf 'rendered' > \"$last\"",
    ]))


def _ffmpeg_args(tmp_path):
    return (tmp_path / "ffmpeg-args.txt").read_text().splitlines()


@pytest.fixture
def bucket(tmp_path, sample_descriptor):
    """Local storage holding the descriptor's video, subtitle and overlay."""
    storage = LocalObjectStorage(tmp_path / "bucket")

    async def _seed():
        await storage.put(sample_descriptor.video_path, b"source-video", "video/mp4")
        await storage.put(sample_descriptor.subtitle_path, b"[Script Info]\n", "text/x-ass")
        await storage.put("overlays/fire.gif", b"GIF89a", "image/gif")

    asyncio.run(_seed())
    return storage


@pytest.fixture
def scratch_root(tmp_path):
    root = tmp_path / "scratch"
    root.mkdir()
    return root


def _engine(store, storage, binary, scratch_root, probe=lambda path: VIDEO_DURATION, timeout_s=30):
    return RenderEngine(
        store,
        storage,
        ffmpeg_binary=binary,
        probe=probe,
        scratch_root=str(scratch_root),
        fonts_dir=None,
        timeout_s=timeout_s,
    )


# ---------------------------------------------------------------------------
# Successful renders
# ---------------------------------------------------------------------------


class TestRenderSuccess:

    def test_job_done_with_uploaded_output(self, tmp_path, bucket, scratch_root, sample_descriptor):
        store = _RecordingStore()
        job = store.create_job(sample_descriptor, job_id="job1")

        asyncio.run(_engine(store, bucket, _ok_ffmpeg(tmp_path), scratch_root).run(job.id))

        assert job.status == JobStatus.DONE
        assert job.progress == 1.0
        assert job.error is None
        assert job.result_path == "renders/upl_1/job.mp4"
        assert job.download_url == bucket.url_for("renders/upl_1/job.mp4")
        assert (tmp_path / "bucket" / "renders" / "upl_1" / "job.mp4").read_bytes() == b"rendered"
        assert job.started_at is not None and job.completed_at is not None

    def test_progress_reported_from_stderr(self, tmp_path, bucket, scratch_root, sample_descriptor):
        store = _RecordingStore()
        store.create_job(sample_descriptor, job_id="job1")

        asyncio.run(_engine(store, bucket, _ok_ffmpeg(tmp_path), scratch_root).run("job1"))

        # 0.0 once the duration is known, then 5s / 11.5s
        assert store.progress_calls == [0.0, 0.4348]

    def test_overlay_clamped_to_duration(self, tmp_path, bucket, scratch_root, sample_descriptor):
        store = JobStore()
        store.create_job(sample_descriptor, job_id="job1")

        asyncio.run(_engine(store, bucket, _ok_ffmpeg(tmp_path), scratch_root).run("job1"))

        args = _ffmpeg_args(tmp_path)
        graph = args[args.index("-filter_complex") + 1]
        assert "between(t,10.000,11.500)" in graph
        assert args.count("-stream_loop") == 1
        assert args[-1].endswith("output.mp4")

    def test_style_overrides_reach_the_filter_graph(self, tmp_path, bucket, scratch_root, sample_descriptor):
        descriptor = dataclasses.replace(
            sample_descriptor,
            subtitle_format="srt",
            subtitle_path="captions/upl_1/job.srt",
            style_overrides={"font_size": 90, "alignment": 5},
        )
        asyncio.run(bucket.put(descriptor.subtitle_path, b"1\n00:00:00,000 --> 00:00:01,000\nHi\n", "application/x-subrip"))
        store = JobStore()
        job = store.create_job(descriptor, job_id="job1")

        asyncio.run(_engine(store, bucket, _ok_ffmpeg(tmp_path), scratch_root).run("job1"))

        assert job.status == JobStatus.DONE
        args = _ffmpeg_args(tmp_path)
        graph = args[args.index("-filter_complex") + 1]
        assert "Fontsize=90" in graph
        assert "Alignment=5" in graph
        # middle-aligned text moves overlays to the center anchor
        assert "(main_h/2)-(overlay_h/2)" in graph

    def test_missing_overlay_skipped(self, tmp_path, scratch_root, sample_descriptor):
        storage = LocalObjectStorage(tmp_path / "bucket")

        async def _seed():
            await storage.put(sample_descriptor.video_path, b"v", "video/mp4")
            await storage.put(sample_descriptor.subtitle_path, b"s", "text/x-ass")

        asyncio.run(_seed())
        store = JobStore()
        job = store.create_job(sample_descriptor, job_id="job1")

        asyncio.run(_engine(store, storage, _ok_ffmpeg(tmp_path), scratch_root).run("job1"))

        assert job.status == JobStatus.DONE
        assert "-stream_loop" not in _ffmpeg_args(tmp_path)

    def test_unknown_duration_disables_progress(self, tmp_path, bucket, scratch_root, sample_descriptor):
        store = _RecordingStore()
        job = store.create_job(sample_descriptor, job_id="job1")

        engine = _engine(store, bucket, _ok_ffmpeg(tmp_path), scratch_root, probe=lambda path: None)
        asyncio.run(engine.run("job1"))

        assert job.status == JobStatus.DONE
        assert store.progress_calls == []

    def test_scratch_directory_removed(self, tmp_path, bucket, scratch_root, sample_descriptor):
        store = JobStore()
        store.create_job(sample_descriptor, job_id="job1")
        asyncio.run(_engine(store, bucket, _ok_ffmpeg(tmp_path), scratch_root).run("job1"))
        assert list(scratch_root.iterdir()) == []


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestRenderFailure:

    def test_transcoder_error_recorded(self, tmp_path, bucket, scratch_root, sample_descriptor):
        binary = _fake_ffmpeg(tmp_path, "echo 'Conversion failed!' >&2\nexit 1")
        store = JobStore()
        job = store.create_job(sample_descriptor, job_id="job1")

        asyncio.run(_engine(store, bucket, binary, scratch_root).run("job1"))

        assert job.status == JobStatus.FAILED
        assert job.error == "ffmpeg exited with code 1: Conversion failed!"
        assert job.result_path is None
        assert job.download_url is None
        assert job.progress < 1.0
        assert list(scratch_root.iterdir()) == []

    def test_empty_output_is_failure(self, tmp_path, bucket, scratch_root, sample_descriptor):
        binary = _fake_ffmpeg(tmp_path, "exit 0")
        store = JobStore()
        job = store.create_job(sample_descriptor, job_id="job1")

        asyncio.run(_engine(store, bucket, binary, scratch_root).run("job1"))

        assert job.status == JobStatus.FAILED
        assert job.error == "ffmpeg produced no output"

    def test_missing_input_video(self, tmp_path, scratch_root, sample_descriptor):
        storage = LocalObjectStorage(tmp_path / "empty-bucket")
        store = JobStore()
        job = store.create_job(sample_descriptor, job_id="job1")

        asyncio.run(_engine(store, storage, _ok_ffmpeg(tmp_path), scratch_root).run("job1"))

        assert job.status == JobStatus.FAILED
        assert job.error == "Object not found: uploads/upl_1/source.mp4"
        assert list(scratch_root.iterdir()) == []

    def test_timeout(self, tmp_path, bucket, scratch_root, sample_descriptor):
        binary = _fake_ffmpeg(tmp_path, "exec sleep 5")
        store = JobStore()
        job = store.create_job(sample_descriptor, job_id="job1")

        asyncio.run(_engine(store, bucket, binary, scratch_root, timeout_s=0.2).run("job1"))

        assert job.status == JobStatus.FAILED
        assert "time budget" in job.error

    def test_unknown_job_ignored(self, tmp_path, bucket, scratch_root):
        store = JobStore()
        asyncio.run(_engine(store, bucket, _ok_ffmpeg(tmp_path), scratch_root).run("missing"))
        assert store.list_jobs() == []


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestEngineHelpers:

    @pytest.mark.parametrize("url,ext", [
        ("overlays/fire.gif", "gif"),
        ("https://cdn.example.com/a.WEBP?sig=1", "webp"),
        ("https://cdn.example.com/72x72/1f525.png", "png"),
        ("clip.mp4#t=1", "mp4"),
        ("https://cdn.example.com/asset", "gif"),
    ])
    def test_overlay_extension(self, url, ext):
        assert overlay_extension(url) == ext

    def test_font_staged_for_ass(self, tmp_path):
        fonts = tmp_path / "fonts"
        fonts.mkdir()
        (fonts / "THEBOLDFONT-FREEVERSION.ttf").write_bytes(b"ttf")
        scratch = tmp_path / "job"
        scratch.mkdir()
        engine = RenderEngine(JobStore(), LocalObjectStorage(tmp_path), fonts_dir=str(fonts))
        style = default_registry().resolve("karaoke")

        staged = engine._stage_fonts(style, "ass", scratch)

        assert staged == scratch / "fonts"
        assert (staged / "THEBOLDFONT-FREEVERSION.ttf").read_bytes() == b"ttf"

    def test_fonts_not_used_for_srt(self, tmp_path):
        engine = RenderEngine(JobStore(), LocalObjectStorage(tmp_path), fonts_dir=str(tmp_path))
        style = default_registry().resolve("karaoke")
        assert engine._stage_fonts(style, "srt", tmp_path) is None

    def test_missing_font_falls_back_to_fonts_dir(self, tmp_path):
        engine = RenderEngine(JobStore(), LocalObjectStorage(tmp_path), fonts_dir=str(tmp_path))
        style = default_registry().resolve("karaoke")
        assert engine._stage_fonts(style, "ass", tmp_path / "job") == tmp_path
