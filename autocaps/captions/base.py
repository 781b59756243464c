"""Abstract subtitle writer and compiled subtitle container.

WHY: The compiler produces either a richly-styled ASS file or a plain SRT
file from the same segments. A common interface lets the compiler, the
CLI, and the HTTP API pick a writer by format name without caring how
each one lays out its cues.

HOW: BaseSubtitleWriter is an ABC with a ``format_name``, a
``media_type``, and a ``write()`` method. SubtitleFile bundles the written
content with the format and style it was compiled for.

RULES:
- Subclasses MUST implement ``format_name``, ``media_type`` and ``write()``
- ``write()`` is deterministic: identical input yields identical text
- Register new writers in WRITERS in captions/__init__.py
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from autocaps.captions.styles import CaptionStyle
from autocaps.core.ir import CaptionSegment


@dataclass
class SubtitleFile:
    """One compiled subtitle file.

    Attributes:
        format: "ass" or "srt".
        style_id: Canonical registry id of the style it was compiled with.
        content: Complete file text.
        media_type: MIME type for storage uploads.
    """

    format: str
    style_id: str
    content: str
    media_type: str

    @property
    def suffix(self) -> str:
        return ".{}".format(self.format)

    def encode(self) -> bytes:
        return self.content.encode("utf-8")


class BaseSubtitleWriter(ABC):
    """Abstract base for subtitle file writers."""

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Short format key, e.g. 'ass'."""

    @property
    @abstractmethod
    def media_type(self) -> str:
        """MIME type of the written file."""

    @abstractmethod
    def write(
        self,
        segments: list[CaptionSegment],
        style: CaptionStyle,
        canvas: tuple[int, int],
    ) -> str:
        """Render segments to subtitle file text.

        Args:
            segments: Normalized caption segments.
            style: Resolved caption style (writers may ignore it).
            canvas: (width, height) of the target video in pixels.

        Returns:
            The complete subtitle file content.
        """
