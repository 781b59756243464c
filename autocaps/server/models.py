"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation. Pydantic
models enforce field types at runtime and generate JSON Schema that
appears in the /docs UI.

HOW: Each endpoint pair (request + response) has its own model. Enums
represent closed sets like subtitle formats. All models include Field
descriptions for rich OpenAPI docs.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Enum values match internal constants exactly (writer keys)
- Response models never expose internal implementation details
  (storage keys of inputs, scratch paths)
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SubtitleFormat(str, Enum):
    """Subtitle formats the compiler can write.

    RULES:
    - Values match keys in autocaps.captions.WRITERS exactly
    """

    ass = "ass"
    srt = "srt"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class WordModel(BaseModel):
    """A timed word inside a caption segment."""

    text: str = Field(description="The word as displayed.")
    start: float = Field(description="Start time in seconds.")
    end: float = Field(description="End time in seconds.")


class SegmentModel(BaseModel):
    """A caption cue supplied by the caller.

    RULES:
    - Segments are re-normalized server-side, so timings only need to be
      approximately right
    """

    id: Optional[str] = Field(default=None, description="Optional cue identifier.")
    start: Optional[float] = Field(default=None, description="Cue start in seconds.")
    end: Optional[float] = Field(default=None, description="Cue end in seconds.")
    text: str = Field(description="Cue text.")
    words: Optional[List[WordModel]] = Field(
        default=None,
        description="Optional word-level timings within the cue.",
    )


class OverlayModel(BaseModel):
    """An animated sprite composited over part of the video."""

    asset_url: str = Field(description="Absolute URL or storage key of a gif/webp/png/mp4 asset.")
    start: float = Field(ge=0, description="First second the sprite is visible.")
    end: float = Field(description="Last second the sprite is visible.")
    size_hint: int = Field(default=75, gt=0, description="Sprite width in pixels.")

    @model_validator(mode="after")
    def _check_window(self) -> OverlayModel:
        if self.end <= self.start:
            raise ValueError("overlay end must be after start")
        return self


class StyleOverrides(BaseModel):
    """Per-request tweaks to the selected caption style."""

    font_size: Optional[int] = Field(default=None, gt=0, description="Font size in points.")
    margin_v: Optional[int] = Field(default=None, ge=0, description="Vertical margin in pixels.")
    margin_l: Optional[int] = Field(default=None, ge=0, description="Left margin in pixels.")
    margin_r: Optional[int] = Field(default=None, ge=0, description="Right margin in pixels.")
    alignment: Optional[int] = Field(
        default=None, ge=1, le=9, description="ASS numpad alignment (1-9, 2 = bottom center).",
    )


class RenderRequest(BaseModel):
    """Body of POST /renders.

    WHY: A render needs the source video, the caption cues (either as
    already-segmented cues or as raw recognition output), and the look.

    RULES:
    - Exactly one of segments / transcript must be given
    - style falls back to the default style when unknown
    - resolution is validated against the configured presets by the
      endpoint (unknown values are a 422)
    """

    upload_id: str = Field(min_length=1, description="Identifier of the uploaded source video.")
    video_path: str = Field(min_length=1, description="Storage key or URL of the source video.")
    style: str = Field(default="minimal", description="Caption style id (see GET /styles).")
    resolution: str = Field(default="1080p", description="Render canvas preset: '720p' or '1080p'.")
    subtitle_format: SubtitleFormat = Field(
        default=SubtitleFormat.ass,
        description="Subtitle format burned into the video.",
    )
    segments: Optional[List[SegmentModel]] = Field(
        default=None,
        description="Caption cues. Mutually exclusive with transcript.",
    )
    transcript: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Raw recognition payload (chunked, segmented, word stream, or text).",
    )
    overlays: Optional[List[OverlayModel]] = Field(
        default=None,
        description="Explicit overlays to composite.",
    )
    auto_overlays: bool = Field(
        default=False,
        description="Add emoji overlays for trigger keywords found in the captions.",
    )
    style_overrides: Optional[StyleOverrides] = Field(
        default=None,
        description="Per-request tweaks to the caption style.",
    )

    @model_validator(mode="after")
    def _one_caption_source(self) -> RenderRequest:
        if (self.segments is None) == (self.transcript is None):
            raise ValueError("provide exactly one of 'segments' or 'transcript'")
        return self

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "upload_id": "upl_01",
                "video_path": "uploads/upl_01/source.mp4",
                "style": "karaoke",
                "resolution": "1080p",
                "segments": [
                    {"start": 0.0, "end": 1.2, "text": "Hi there"},
                ],
                "auto_overlays": True,
            }
        ]
    }}


class NormalizeRequest(BaseModel):
    """Body of POST /transcripts/normalize."""

    transcript: Any = Field(description="Raw recognition payload in any supported shape.")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class JobResponse(BaseModel):
    """Render job status response.

    WHY: Clients poll this endpoint (or receive it as an event) to track
    a render. It exposes the current state, progress, and result.

    RULES:
    - progress is 0.0–1.0 and never decreases; 1.0 only when done
    - download_url is only set when status is 'done'
    - error is only set when status is 'failed'
    """

    id: str = Field(description="Unique job identifier.")
    upload_id: str = Field(description="Identifier of the source upload.")
    status: str = Field(description="Current job status: queued, processing, done, failed.")
    progress: float = Field(description="Render progress from 0.0 to 1.0.")
    style: str = Field(description="Caption style id used for the render.")
    resolution: str = Field(description="Render canvas preset.")
    created_at: float = Field(description="Job creation timestamp (Unix epoch seconds).")
    updated_at: float = Field(description="Last change timestamp (Unix epoch seconds).")
    completed_at: Optional[float] = Field(
        default=None,
        description="Terminal state timestamp, only present when done or failed.",
    )
    download_url: Optional[str] = Field(
        default=None,
        description="Location of the rendered video, only present when status is 'done'.",
    )
    error: Optional[str] = Field(
        default=None,
        description="Error message, only present when status is 'failed'.",
    )

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "id": "550e8400e29b41d4a716446655440000",
                "upload_id": "upl_01",
                "status": "processing",
                "progress": 0.42,
                "style": "karaoke",
                "resolution": "1080p",
                "created_at": 1739959200.0,
                "updated_at": 1739959231.5,
                "completed_at": None,
                "download_url": None,
                "error": None,
            }
        ]
    }}


class JobCreatedResponse(BaseModel):
    """Response returned when a render job is accepted.

    RULES:
    - status is always 'queued' on creation
    """

    id: str = Field(description="Unique job identifier for polling or streaming status.")
    status: str = Field(description="Initial job status (always 'queued').")

    model_config = {"json_schema_extra": {
        "examples": [
            {"id": "550e8400e29b41d4a716446655440000", "status": "queued"}
        ]
    }}


class StyleInfo(BaseModel):
    """Description of an available caption style."""

    id: str = Field(description="Style identifier used in render requests.")
    name: str = Field(description="ASS style name.")
    font_family: str = Field(description="Font family the style renders with.")
    font_size: int = Field(description="Font size in points at 1080p.")
    karaoke: bool = Field(description="Whether the style highlights words as they are spoken.")
    aliases: List[str] = Field(default_factory=list, description="Alternative ids accepted for this style.")


class SegmentResponse(BaseModel):
    """A normalized caption cue."""

    id: str = Field(description="Cue identifier.")
    start: float = Field(description="Cue start in seconds.")
    end: float = Field(description="Cue end in seconds.")
    text: str = Field(description="Cue text.")
    words: List[WordModel] = Field(default_factory=list, description="Word-level timings.")


class NormalizeResponse(BaseModel):
    """Normalized caption cues for a recognition payload."""

    kind: str = Field(description="Detected payload variant: chunked, segmented, words, text.")
    segments: List[SegmentResponse] = Field(description="Caption cues, ordered by start time.")


class ErrorResponse(BaseModel):
    """Standard error response body.

    RULES:
    - detail is always a human-readable error message
    """

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
