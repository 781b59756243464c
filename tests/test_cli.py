"""Tests for the command-line interface.

HOW: build_parser() is inspected directly; subcommands run through main()
with explicit argv against files in tmp_path. The render subcommand needs
ffmpeg and is only checked for argument handling.
"""

from __future__ import annotations

import json

import pytest

from autocaps.cli import build_parser, main


@pytest.fixture
def transcript_file(tmp_path, segmented_payload):
    path = tmp_path / "transcript.json"
    path.write_text(json.dumps(segmented_payload), encoding="utf-8")
    return path


class TestParser:

    def test_subcommands(self):
        parser = build_parser()
        args = parser.parse_args(["compile", "t.json", "--style", "karaoke", "--format", "srt"])
        assert args.command == "compile"
        assert args.style == "karaoke"
        assert args.format == "srt"
        assert args.resolution == "1080p"

    def test_render_requires_output(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["render", "in.mp4", "t.json"])

    def test_render_options(self):
        args = build_parser().parse_args(["render", "in.mp4", "t.json", "-o", "out.mp4", "--auto-overlays"])
        assert args.auto_overlays is True
        assert args.output == "out.mp4"

    def test_unknown_format_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["compile", "t.json", "--format", "vtt"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestNormalizeCommand:

    def test_prints_segments(self, transcript_file, capsys):
        main(["normalize", str(transcript_file)])
        captured = capsys.readouterr()
        segments = json.loads(captured.out)
        assert [s["id"] for s in segments] == ["segment_1", "segment_2"]
        assert "Normalized 2 segment(s)" in captured.err

    def test_plain_text_file(self, tmp_path, capsys):
        path = tmp_path / "notes.txt"
        path.write_text("First sentence. Second one!", encoding="utf-8")
        main(["normalize", str(path)])
        segments = json.loads(capsys.readouterr().out)
        assert [s["text"] for s in segments] == ["First sentence.", "Second one!"]

    def test_writes_output_file(self, transcript_file, tmp_path):
        out = tmp_path / "segments.json"
        main(["normalize", str(transcript_file), "-o", str(out)])
        assert len(json.loads(out.read_text(encoding="utf-8"))) == 2


class TestCompileCommand:

    def test_ass_to_stdout(self, transcript_file, capsys):
        main(["compile", str(transcript_file), "--style", "creator-kinetic", "--resolution", "720p"])
        captured = capsys.readouterr()
        assert captured.out.startswith("[Script Info]")
        assert "PlayResX: 1280" in captured.out
        assert "with style 'karaoke'" in captured.err

    def test_srt_to_file(self, transcript_file, tmp_path):
        out = tmp_path / "captions.srt"
        main(["compile", str(transcript_file), "--format", "srt", "-o", str(out)])
        assert out.read_text(encoding="utf-8").startswith("1\n00:00:00,000 --> 00:00:01,000\nHi there\n")

    def test_max_duration(self, transcript_file, capsys):
        main(["compile", str(transcript_file), "--format", "srt", "--max-duration", "1.0"])
        assert "General Kenobi." not in capsys.readouterr().out


class TestErrors:

    def test_missing_file_exits_1(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["normalize", str(tmp_path / "missing.json")])
        assert excinfo.value.code == 1
        assert "Error: File not found" in capsys.readouterr().err

    def test_unknown_resolution_exits_1(self, transcript_file, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["compile", str(transcript_file), "--resolution", "4k"])
        assert excinfo.value.code == 1
        assert "Unknown resolution" in capsys.readouterr().err

    def test_render_missing_video_exits_1(self, transcript_file, tmp_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["render", str(tmp_path / "nope.mp4"), str(transcript_file), "-o", str(tmp_path / "o.mp4")])
        assert excinfo.value.code == 1
        assert "File not found" in capsys.readouterr().err
