"""Render descriptors and overlays.

WHY: A render job must carry everything the engine needs to run without
consulting anything else: where the inputs live, which look the subtitle
was compiled with, the overlays to composite, and where the output goes.

HOW: Two dataclasses with dict round-tripping for the job store and HTTP
layer. Paths are opaque object-storage keys (or absolute URLs for
overlay assets).

RULES:
- Overlay: start < end, seconds from the start of the video
- RenderDescriptor.subtitle_format is "ass" or "srt"
- RenderDescriptor.resolution is a key of config.RENDER_RESOLUTIONS
- RenderDescriptor.style_overrides are the per-request CaptionStyle
  overrides the subtitle was compiled with; the engine applies them too
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_OVERLAY_SIZE = 75


@dataclass
class Overlay:
    """An animated sprite shown over [start, end] of the video.

    RULES:
    - asset_url: absolute URL or storage key of a gif/webp/png/mp4 asset
    - size_hint: sprite width in pixels before the rotation padding
    """

    asset_url: str
    start: float
    end: float
    size_hint: int = DEFAULT_OVERLAY_SIZE

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_url": self.asset_url,
            "start": self.start,
            "end": self.end,
            "size_hint": self.size_hint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Overlay:
        return cls(
            asset_url=str(data.get("asset_url") or data.get("url")),
            start=float(data["start"]),
            end=float(data["end"]),
            size_hint=int(data.get("size_hint") or DEFAULT_OVERLAY_SIZE),
        )


@dataclass
class RenderDescriptor:
    """Everything one render needs."""

    upload_id: str
    video_path: str
    subtitle_path: str
    output_path: str
    subtitle_format: str = "ass"
    style_id: str = "minimal"
    resolution: str = "1080p"
    overlays: list[Overlay] = field(default_factory=list)
    style_overrides: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "upload_id": self.upload_id,
            "video_path": self.video_path,
            "subtitle_path": self.subtitle_path,
            "output_path": self.output_path,
            "subtitle_format": self.subtitle_format,
            "style_id": self.style_id,
            "resolution": self.resolution,
            "overlays": [o.to_dict() for o in self.overlays],
            "style_overrides": dict(self.style_overrides),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RenderDescriptor:
        return cls(
            upload_id=str(data["upload_id"]),
            video_path=str(data["video_path"]),
            subtitle_path=str(data["subtitle_path"]),
            output_path=str(data["output_path"]),
            subtitle_format=str(data.get("subtitle_format") or "ass"),
            style_id=str(data.get("style_id") or "minimal"),
            resolution=str(data.get("resolution") or "1080p"),
            overlays=[Overlay.from_dict(o) for o in data.get("overlays") or []],
            style_overrides=dict(data.get("style_overrides") or {}),
        )
