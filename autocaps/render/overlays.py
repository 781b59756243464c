"""Keyword-triggered overlays and overlay window clamping.

WHY: Short-form edits pop a small emoji sprite over the frame when the
speaker says a punchy word ("fire", "money", "win"). The trigger list is
plain data so editors can extend it, and overlay windows must never
outlast the video or ffmpeg keeps looping the sprite past the end.

HOW: derive_overlays() lowercases each cue's text, strips punctuation from
every token, and emits one overlay per trigger hit spanning the whole
cue. clamp_overlays() trims windows to the probed duration.

RULES:
- Triggers match whole tokens after stripping non-alphanumerics
- Every hit produces an overlay, including repeats in one cue
- Clamped windows that end up empty (start >= end) are dropped
"""

from __future__ import annotations

import re
from typing import Mapping

from autocaps.core.ir import CaptionSegment
from autocaps.render.models import DEFAULT_OVERLAY_SIZE, Overlay

_TWEMOJI = "https://cdnjs.cloudflare.com/ajax/libs/twemoji/14.0.2/72x72/{}.png"

_NON_ALNUM = re.compile(r"[^a-z0-9]")

# keyword -> twemoji codepoint
_TRIGGER_CODEPOINTS = {
    # money
    "money": "1f4b5",
    "cash": "1f4b5",
    "rich": "1f4b8",
    "wealth": "1f4b8",
    "profit": "1f4c8",
    "growth": "1f4c8",
    # hype
    "win": "1f3c6",
    "victory": "1f3c6",
    "hype": "1f525",
    "fire": "1f525",
    "lit": "1f525",
    "heat": "1f525",
    "trending": "1f525",
    "wow": "1f929",
    "awesome": "1f929",
    "rocket": "1f680",
    "upgrade": "1f680",
    "boss": "1f4aa",
    "flex": "1f4aa",
    "speed": "1f4ab",
    "fast": "1f4ab",
    # warning
    "danger": "26a0",
    "warning": "26a0",
    "caution": "26a0",
    "alert": "1f6a8",
    "boom": "1f4a5",
    "explosion": "1f4a5",
    "skull": "2620",
    "crazy": "1f92f",
    # feelings
    "love": "2764",
    "heart": "2764",
    "sad": "1f622",
    "cry": "1f622",
    "shocked": "1f631",
    "happy": "1f642",
    "angry": "1f620",
    # fun
    "star": "2b50",
    "magic": "2728",
    "party": "1f389",
    "celebrate": "1f389",
    "king": "1f451",
    "queen": "1f451",
    "gift": "1f381",
    # ideas
    "idea": "1f4a1",
    "brain": "1f9e0",
    "smart": "1f9e0",
    "thinking": "1f914",
    "question": "2753",
    "check": "2705",
    "freeze": "2744",
}

DEFAULT_TRIGGERS: Mapping[str, str] = {
    keyword: _TWEMOJI.format(code) for keyword, code in _TRIGGER_CODEPOINTS.items()
}


def derive_overlays(
    segments: list[CaptionSegment],
    triggers: Mapping[str, str] = DEFAULT_TRIGGERS,
    size_hint: int = DEFAULT_OVERLAY_SIZE,
) -> list[Overlay]:
    """One overlay per trigger keyword spoken, spanning its cue."""
    overlays = []
    for segment in segments:
        for token in segment.text.lower().split():
            url = triggers.get(_NON_ALNUM.sub("", token))
            if url:
                overlays.append(Overlay(
                    asset_url=url, start=segment.start, end=segment.end, size_hint=size_hint,
                ))
    return overlays


def clamp_overlays(overlays: list[Overlay], duration: float) -> list[Overlay]:
    """Trim overlay windows to [0, duration]; drop windows left empty."""
    clamped = []
    for overlay in overlays:
        start = max(0.0, overlay.start)
        end = min(overlay.end, duration)
        if start >= end:
            continue
        clamped.append(Overlay(
            asset_url=overlay.asset_url, start=start, end=end, size_hint=overlay.size_hint,
        ))
    return clamped
