"""Subtitle writer registry: caption styles compiled into ASS or SRT.

WHY: The compiler, CLI, and HTTP API need one lookup to find the writer
for a subtitle format. Adding a format means one new writer module and
one line here.

HOW: WRITERS maps format keys to writer *classes* (not instances).
Callers instantiate as needed: ``writer = WRITERS["ass"]()``.

RULES:
- Keys are lowercase file extensions
- Every writer listed here must be importable without side effects
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from autocaps.captions.ass import AssWriter
from autocaps.captions.srt import SrtWriter

if TYPE_CHECKING:
    from autocaps.captions.base import BaseSubtitleWriter

WRITERS: dict[str, type[BaseSubtitleWriter]] = {
    "ass": AssWriter,
    "srt": SrtWriter,
}
