"""Shared test fixtures for the autocaps test suite.

WHY: Several test modules need the same recognition payloads, caption
segments, and render descriptors. Centralizing them here keeps the
sample data consistent across normalizer, compiler, engine, and API tests.

HOW: Module-level constants hold the raw payloads; fixtures hand out
fresh copies so tests can mutate them freely.

RULES:
- Payload timings are in seconds
- Fixtures return new objects on every call
"""

from __future__ import annotations

import copy
from typing import Any, Dict

import pytest

from autocaps.core.ir import CaptionSegment, Word
from autocaps.render.models import Overlay, RenderDescriptor


# ---------------------------------------------------------------------------
# Sample recognition payloads
# ---------------------------------------------------------------------------

WORD_STREAM_PAYLOAD: Dict[str, Any] = {
    "words": [
        {"word": "How", "start": 0.12, "end": 0.25},
        {"word": "are", "start": 0.26, "end": 0.38},
        {"word": "you", "start": 0.39, "end": 0.51},
        {"word": "today?", "start": 0.52, "end": 0.94},
        {"word": "I", "start": 1.2, "end": 1.26},
        {"word": "am", "start": 1.27, "end": 1.38},
        {"word": "fantastic,", "start": 1.39, "end": 1.8},
        {"word": "thank", "start": 1.81, "end": 1.95},
        {"word": "you.", "start": 1.96, "end": 2.12},
    ],
}

CHUNKED_PAYLOAD: Dict[str, Any] = {
    "mode": "chunked",
    "chunks": [
        {
            "text": "First chunk here.",
            "offset": 0,
            "usage": {"seconds": 5},
            "words": [
                {"word": "First", "start": 0.0, "end": 0.4},
                {"word": "chunk", "start": 0.5, "end": 0.9},
                {"word": "here.", "start": 1.0, "end": 1.4},
            ],
        },
        {
            "text": "Second chunk.",
            "usage": {"seconds": 5},
            "words": [
                {"word": "Second", "start": 0.2, "end": 0.6},
                {"word": "chunk.", "start": 0.7, "end": 1.1},
            ],
        },
    ],
}

SEGMENTED_PAYLOAD: Dict[str, Any] = {
    "segments": [
        {"id": 1, "start": 0.0, "end": 1.0, "text": "Hi there"},
        {"id": 2, "start": 1.0, "end": 2.5, "text": "General Kenobi."},
    ],
}


@pytest.fixture
def word_stream_payload():
    return copy.deepcopy(WORD_STREAM_PAYLOAD)


@pytest.fixture
def chunked_payload():
    return copy.deepcopy(CHUNKED_PAYLOAD)


@pytest.fixture
def segmented_payload():
    return copy.deepcopy(SEGMENTED_PAYLOAD)


# ---------------------------------------------------------------------------
# Caption segments and render descriptors
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_segments():
    """Two normalized cues with word timings."""
    return [
        CaptionSegment(
            id="segment_0",
            start=0.0,
            end=1.0,
            text="Hi there",
            words=[Word("Hi", 0.0, 0.5), Word("there", 0.5, 1.0)],
        ),
        CaptionSegment(
            id="segment_1",
            start=1.0,
            end=2.5,
            text="we are on fire",
            words=[
                Word("we", 1.0, 1.3),
                Word("are", 1.3, 1.6),
                Word("on", 1.6, 1.9),
                Word("fire", 1.9, 2.5),
            ],
        ),
    ]


@pytest.fixture
def sample_descriptor():
    """A render descriptor with one overlay that overruns an 11.5s video."""
    return RenderDescriptor(
        upload_id="upl_1",
        video_path="uploads/upl_1/source.mp4",
        subtitle_path="captions/upl_1/job.ass",
        output_path="renders/upl_1/job.mp4",
        subtitle_format="ass",
        style_id="minimal",
        resolution="1080p",
        overlays=[Overlay(asset_url="overlays/fire.gif", start=10.0, end=12.0)],
    )
