"""Tests for the ffmpeg filter graph, command line, probe, and runner.

WHY: A wrong filter label or argument order makes ffmpeg fail the whole
render with an opaque message, so the graph and argv are asserted
exactly. The runner is exercised against small /bin/sh stand-ins for
ffmpeg so exit codes, stderr streaming, and timeouts are covered without
a real transcoder installed.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
import sys
from unittest.mock import patch

import pytest

from autocaps.captions.styles import BOTTOM_ANCHOR, MINIMAL
from autocaps.render.ffmpeg import (
    ENCODE_ARGS,
    RenderTimeoutError,
    TranscoderError,
    build_filter_graph,
    build_render_command,
    build_subtitles_filter,
    escape_filter_path,
    probe_duration,
    run_ffmpeg,
)
from autocaps.render.models import Overlay

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs /bin/sh")


def _script(tmp_path, name, body):
    path = tmp_path / name
    path.write_text("#!/bin/sh\n" + body + "\n")
    os.chmod(path, 0o755)
    return str(path)


# ---------------------------------------------------------------------------
# Filter graph and command
# ---------------------------------------------------------------------------


class TestSubtitlesFilter:

    def test_escape_filter_path(self):
        assert escape_filter_path("C:\\media\\my file.ass") == r"C\:/media/my\ file.ass"

    def test_ass_with_fonts_dir(self):
        result = build_subtitles_filter("/tmp/job/captions.ass", "ass", MINIMAL, "/tmp/job/fonts")
        assert result == "subtitles='/tmp/job/captions.ass:fontsdir=/tmp/job/fonts'"

    def test_ass_without_fonts_dir(self):
        assert build_subtitles_filter("c.ass", "ass", MINIMAL) == "subtitles='c.ass'"

    def test_srt_gets_force_style(self):
        result = build_subtitles_filter("c.srt", "srt", MINIMAL, "/fonts")
        assert result.startswith("subtitles='c.srt:force_style=Fontname=Inter,Fontsize=40,")
        assert "PrimaryColour=&H00FFFFFF&" in result
        assert "Alignment=2" in result
        assert "fontsdir" not in result


class TestFilterGraph:

    def test_no_overlays(self):
        graph = build_filter_graph("subtitles='c.ass'", [], BOTTOM_ANCHOR)
        assert graph == "[0:v]fps=30,format=yuv420p[base];[base]subtitles='c.ass'[final]"

    def test_overlays_chain_before_subtitles(self):
        overlays = [
            Overlay(asset_url="a.gif", start=1.0, end=2.0),
            Overlay(asset_url="b.gif", start=10.0, end=11.5, size_hint=120),
        ]
        graph = build_filter_graph("subtitles='c.ass'", overlays, BOTTOM_ANCHOR)
        parts = graph.split(";")

        assert len(parts) == 6
        assert parts[1].startswith("[1:v]scale=75:-1,rotate=")
        assert parts[1].endswith("[ovsc0]")
        assert parts[2].startswith("[base][ovsc0]overlay=x=(main_w-overlay_w)/2:y=")
        assert parts[2].endswith(":enable='between(t,1.000,2.000)'[v1]")
        assert parts[3].startswith("[2:v]scale=120:-1,")
        assert parts[4].startswith("[v1][ovsc1]overlay=")
        assert parts[4].endswith(":enable='between(t,10.000,11.500)'[v2]")
        assert parts[5] == "[v2]subtitles='c.ass'[final]"

    def test_overlay_slides_from_anchor(self):
        graph = build_filter_graph("subtitles='c.ass'", [Overlay("a.gif", 2.0, 3.0)], BOTTOM_ANCHOR)
        assert BOTTOM_ANCHOR.start_y in graph
        assert BOTTOM_ANCHOR.rest_y in graph
        assert "(t-2.000)/0.4" in graph


class TestRenderCommand:

    def test_argument_order(self):
        cmd = build_render_command("ffmpeg", "in.mp4", ["o1.gif", "o2.png"], "GRAPH", "out.mp4")
        assert cmd[:6] == ["ffmpeg", "-y", "-nostdin", "-hide_banner", "-i", "in.mp4"]
        assert cmd[6:14] == [
            "-stream_loop", "-1", "-i", "o1.gif",
            "-stream_loop", "-1", "-i", "o2.png",
        ]
        assert cmd[14:20] == ["-filter_complex", "GRAPH", "-map", "[final]", "-map", "0:a?"]
        assert cmd[20:-1] == ENCODE_ARGS
        assert cmd[-1] == "out.mp4"

    def test_encode_bundle(self):
        assert "libx264" in ENCODE_ARGS
        assert ENCODE_ARGS[ENCODE_ARGS.index("-crf") + 1] == "18"
        assert ENCODE_ARGS[ENCODE_ARGS.index("-movflags") + 1] == "+faststart"
        assert ENCODE_ARGS[-1] == "-shortest"


# ---------------------------------------------------------------------------
# Duration probe
# ---------------------------------------------------------------------------


class TestProbeDuration:

    def test_ffprobe_result(self):
        done = subprocess.CompletedProcess(args=[], returncode=0, stdout="12.5\n", stderr="")
        with patch("autocaps.render.ffmpeg.subprocess.run", return_value=done) as run:
            assert probe_duration("in.mp4") == 12.5
        assert run.call_count == 1

    def test_falls_back_to_ffmpeg_banner(self):
        banner = subprocess.CompletedProcess(
            args=[], returncode=1, stdout="",
            stderr="Input #0, mov,mp4\n  Duration: 00:01:02.50, start: 0.000000, bitrate: 800 kb/s\n",
        )
        with patch(
            "autocaps.render.ffmpeg.subprocess.run",
            side_effect=[FileNotFoundError("ffprobe"), banner],
        ):
            assert probe_duration("in.mp4") == 62.5

    def test_unreadable_returns_none(self):
        with patch("autocaps.render.ffmpeg.subprocess.run", side_effect=OSError("missing")):
            assert probe_duration("in.mp4") is None

    def test_ffprobe_garbage_output(self):
        garbage = subprocess.CompletedProcess(args=[], returncode=0, stdout="N/A\n", stderr="")
        no_banner = subprocess.CompletedProcess(args=[], returncode=1, stdout="", stderr="nothing\n")
        with patch("autocaps.render.ffmpeg.subprocess.run", side_effect=[garbage, no_banner]):
            assert probe_duration("in.mp4") is None


# ---------------------------------------------------------------------------
# Process runner
# ---------------------------------------------------------------------------


@posix_only
class TestRunFfmpeg:

    def test_streams_stderr(self, tmp_path):
        binary = _script(tmp_path, "ok.sh", "echo 'frame=1 time=00:00:01.00' >&2\nexit 0")
        chunks = []
        asyncio.run(run_ffmpeg([binary], on_output=chunks.append, timeout_s=10))
        assert "time=00:00:01.00" in "".join(chunks)

    def test_non_zero_exit(self, tmp_path):
        binary = _script(tmp_path, "fail.sh", "echo 'warming up' >&2\necho 'Invalid data found' >&2\nexit 3")
        with pytest.raises(TranscoderError, match="code 3: Invalid data found") as excinfo:
            asyncio.run(run_ffmpeg([binary], timeout_s=10))
        assert excinfo.value.returncode == 3

    def test_missing_binary(self, tmp_path):
        with pytest.raises(TranscoderError, match="Could not start") as excinfo:
            asyncio.run(run_ffmpeg([str(tmp_path / "no-such-ffmpeg")]))
        assert excinfo.value.returncode is None

    def test_timeout_kills_process(self, tmp_path):
        binary = _script(tmp_path, "slow.sh", "exec sleep 5")
        with pytest.raises(RenderTimeoutError):
            asyncio.run(run_ffmpeg([binary], timeout_s=0.2))
