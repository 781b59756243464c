"""Tests for recognition payload detection and parsing."""

from __future__ import annotations

import pytest

from autocaps.core.payloads import (
    ChunkedPayload,
    SegmentedPayload,
    TextPayload,
    WordStreamPayload,
    detect_kind,
    parse_payload,
)


class TestDetectKind:
    """detect_kind() picks the first matching variant."""

    def test_fixture_variants(self, word_stream_payload, chunked_payload, segmented_payload):
        assert detect_kind(chunked_payload) == "chunked"
        assert detect_kind(segmented_payload) == "segmented"
        assert detect_kind(word_stream_payload) == "words"
        assert detect_kind({"text": "hello"}) == "text"

    def test_segments_win_over_words(self, segmented_payload, word_stream_payload):
        payload = dict(segmented_payload, words=word_stream_payload["words"])
        assert detect_kind(payload) == "segmented"

    def test_explicit_kind_overrides_detection(self, segmented_payload):
        segmented_payload["kind"] = "text"
        assert detect_kind(segmented_payload) == "text"

    def test_unknown_explicit_kind_ignored(self, word_stream_payload):
        word_stream_payload["kind"] = "mystery"
        assert detect_kind(word_stream_payload) == "words"

    def test_chunked_requires_mode(self):
        assert detect_kind({"chunks": [{"text": "a"}]}) == "text"
        assert detect_kind({"mode": "streaming", "chunks": []}) == "text"

    def test_empty_lists_fall_through(self):
        assert detect_kind({"segments": [], "words": []}) == "text"

    @pytest.mark.parametrize("raw", [None, "text", 3.5, ["a"]])
    def test_non_dict_is_text(self, raw):
        assert detect_kind(raw) == "text"


class TestParsePayload:
    """parse_payload() returns typed records and never raises."""

    def test_word_stream(self, word_stream_payload):
        payload = parse_payload(word_stream_payload)
        assert isinstance(payload, WordStreamPayload)
        assert len(payload.words) == 9
        assert payload.words[0].text == "How"

    def test_segmented_keeps_raw_times(self, segmented_payload):
        payload = parse_payload(segmented_payload)
        assert isinstance(payload, SegmentedPayload)
        assert payload.segments[0].id == "1"
        assert payload.segments[1].start == 1.0
        assert payload.segments[1].words is None

    def test_chunked_keeps_relative_times(self, chunked_payload):
        payload = parse_payload(chunked_payload)
        assert isinstance(payload, ChunkedPayload)
        assert payload.chunks[0].offset == 0.0
        assert payload.chunks[0].usage_seconds == 5.0
        assert payload.chunks[1].offset is None
        assert payload.chunks[1].words[0].start == 0.2

    def test_chunk_word_aliases(self):
        payload = parse_payload({
            "mode": "chunked",
            "chunks": [{"text": "a b", "words": [
                {"word": "a", "begin": 0.1, "finish": 0.3},
                {"text": "b", "offset": 0.4},
            ]}],
        })
        words = payload.chunks[0].words
        assert (words[0].start, words[0].end) == (0.1, 0.3)
        assert (words[1].start, words[1].end) == (0.4, 0.4)

    def test_unusable_words_dropped(self):
        payload = parse_payload({"words": [
            {"word": "ok", "start": 0, "end": 1},
            {"word": "bool", "start": True, "end": 1},
            {"word": "nan", "start": "nan", "end": 1},
            {"word": "", "start": 0, "end": 1},
            {"start": 0, "end": 1},
            "not a dict",
        ]})
        assert [w.text for w in payload.words] == ["ok"]

    def test_numeric_strings_accepted(self):
        payload = parse_payload({"words": [{"word": "a", "start": "1.5", "end": "2"}]})
        assert (payload.words[0].start, payload.words[0].end) == (1.5, 2.0)

    def test_bare_string_becomes_text(self):
        payload = parse_payload("  spoken words  ")
        assert isinstance(payload, TextPayload)
        assert payload.text == "spoken words"

    @pytest.mark.parametrize("raw", [None, 7, ["a"], {"unrelated": True}])
    def test_junk_becomes_empty_text(self, raw):
        payload = parse_payload(raw)
        assert isinstance(payload, TextPayload)
        assert payload.text == ""
