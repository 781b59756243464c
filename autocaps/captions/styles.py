"""Caption styles, the style registry, and ASS color encoding.

WHY: Every caption look (font, colors, outline, alignment, karaoke
highlight cycle) is plain data. Keeping it in an immutable registry that
is injected into the compiler means tests and callers can supply their own
looks without touching module state, and an unknown style id can never
break a render.

HOW: CaptionStyle is a frozen dataclass. StyleRegistry wraps a read-only
mapping of style id → CaptionStyle plus optional aliases, and resolves
unknown ids to its default. default_registry() ships the four built-in
looks. to_ass_color() converts CSS hex colors into ASS &HAABBGGRR.

RULES:
- CSS alpha is opacity, ASS alpha is transparency: AA_ass = 255 - AA_css
- #RGB, #RRGGBB and #RRGGBBAA are accepted; anything else is opaque white
- Hex digits in ASS output are uppercase
- Unknown style ids and malformed style dicts resolve to the default style
- Overrides never mutate a registered style; they return a copy
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Any, Mapping

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")

_FALLBACK_RGB = "FFFFFF"


# ---------------------------------------------------------------------------
# Color encoding
# ---------------------------------------------------------------------------


def _split_color(value: str) -> tuple[str, str]:
    """Return (RRGGBB, ass_alpha) for a CSS hex color."""
    match = _HEX_COLOR.match((value or "").strip())
    if match is None:
        return _FALLBACK_RGB, "00"

    digits = match.group(1).upper()
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    if len(digits) == 8:
        alpha = "{:02X}".format(255 - int(digits[6:8], 16))
        return digits[:6], alpha
    return digits, "00"


def to_ass_color(value: str) -> str:
    """Convert #RRGGBB[AA] to the ASS style color &HAABBGGRR.

    RULES:
    - "#FFFFFF" → "&H00FFFFFF"
    - "#00000080" → "&H7F000000" (alpha inverted)
    - Malformed input → "&H00FFFFFF"
    """
    rgb, alpha = _split_color(value)
    return "&H{}{}{}{}".format(alpha, rgb[4:6], rgb[2:4], rgb[0:2])


def to_ass_inline_color(value: str) -> str:
    """Convert a CSS color to the inline override form &HBBGGRR& used by \\1c."""
    rgb, _alpha = _split_color(value)
    return "&H{}{}{}&".format(rgb[4:6], rgb[2:4], rgb[0:2])


# ---------------------------------------------------------------------------
# Style records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KaraokeConfig:
    """Per-word highlight settings for kinetic styles.

    RULES:
    - highlight_colors cycle every cycle_after_chunks chunks
    - mode is "word" (the only supported granularity)
    """

    highlight_colors: tuple[str, ...] = ("#FFFF00",)
    cycle_after_chunks: int = 2
    mode: str = "word"

    def color_index(self, chunk_index: int) -> int:
        """Highlight color index for the chunk at global position chunk_index."""
        cycle = max(1, self.cycle_after_chunks)
        return (chunk_index // cycle) % max(1, len(self.highlight_colors))


@dataclass(frozen=True)
class OverlayAnchor:
    """Vertical placement of overlay sprites, as ffmpeg overlay expressions.

    WHY: Overlays sit just above the captions. Where "above" is depends on
    whether the style draws captions mid-frame or near the bottom, so the
    anchor is part of the style instead of a constant in the render code.

    RULES:
    - start_y is where the sprite appears, rest_y where it settles
    - Both are evaluated by ffmpeg with main_h / overlay_h in scope
    """

    start_y: str
    rest_y: str


CENTER_ANCHOR = OverlayAnchor(
    start_y="(main_h/2)-(overlay_h/2)",
    rest_y="(main_h/2)-25-overlay_h",
)
BOTTOM_ANCHOR = OverlayAnchor(
    start_y="main_h-80-(overlay_h/2)",
    rest_y="main_h-105-overlay_h",
)


@dataclass(frozen=True)
class CaptionStyle:
    """A complete caption look.

    RULES:
    - name is the ASS style name written to the Style/Dialogue lines
    - alignment follows the ASS numpad layout (1–9, 2 = bottom center)
    - karaoke is None for simple styles
    - font_file names a font shipped in the fonts directory, or None
    - overlay_anchor None means "derive from alignment"
    """

    name: str
    font_family: str
    font_size: int
    primary_color: str = "#FFFFFF"
    outline_color: str = "#000000"
    outline_width: float = 2
    shadow_color: str = "#000000"
    shadow_width: float = 0
    alignment: int = 2
    margin_v: int = 40
    margin_l: int = 40
    margin_r: int = 40
    uppercase: bool = False
    karaoke: KaraokeConfig | None = None
    font_file: str | None = None
    overlay_anchor: OverlayAnchor | None = None

    @property
    def is_karaoke(self) -> bool:
        return self.karaoke is not None

    def resolved_overlay_anchor(self) -> OverlayAnchor:
        if self.overlay_anchor is not None:
            return self.overlay_anchor
        if self.alignment in (4, 5, 6):
            return CENTER_ANCHOR
        return BOTTOM_ANCHOR

    def with_overrides(self, **overrides: Any) -> CaptionStyle:
        """Return a copy with the given fields replaced; None values are ignored."""
        allowed = {"font_size", "margin_v", "alignment", "margin_l", "margin_r"}
        changes = {k: v for k, v in overrides.items() if k in allowed and v is not None}
        if not changes:
            return self
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CaptionStyle:
        """Build a style from a plain dict.

        RULES:
        - Raises ValueError / TypeError on missing or mistyped fields
        - Unknown keys are ignored
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}

        karaoke = values.get("karaoke")
        if isinstance(karaoke, Mapping):
            colors = karaoke.get("highlight_colors") or [karaoke.get("highlight_color", "#FFFF00")]
            values["karaoke"] = KaraokeConfig(
                highlight_colors=tuple(str(c) for c in colors),
                cycle_after_chunks=int(karaoke.get("cycle_after_chunks", 2)),
                mode=str(karaoke.get("mode", "word")),
            )
        elif karaoke is not None and not isinstance(karaoke, KaraokeConfig):
            raise TypeError("karaoke must be a mapping")

        anchor = values.get("overlay_anchor")
        if isinstance(anchor, Mapping):
            values["overlay_anchor"] = OverlayAnchor(
                start_y=str(anchor["start_y"]), rest_y=str(anchor["rest_y"])
            )

        style = cls(**values)
        if not style.name or not style.font_family:
            raise ValueError("style needs a name and a font_family")
        if int(style.font_size) <= 0:
            raise ValueError("font_size must be positive")
        if int(style.alignment) not in range(1, 10):
            raise ValueError("alignment must be 1-9")
        return style

    def to_dict(self) -> dict[str, Any]:
        data = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("karaoke", "overlay_anchor")
        }
        if self.karaoke is not None:
            data["karaoke"] = {
                "highlight_colors": list(self.karaoke.highlight_colors),
                "cycle_after_chunks": self.karaoke.cycle_after_chunks,
                "mode": self.karaoke.mode,
            }
        anchor = self.resolved_overlay_anchor()
        data["overlay_anchor"] = {"start_y": anchor.start_y, "rest_y": anchor.rest_y}
        return data


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StyleRegistry:
    """Immutable lookup of caption styles by id.

    WHY: The compiler, the HTTP API, and the render engine all need to turn
    a style id into a style. A single injected registry keeps them in
    agreement and lets tests supply their own styles.

    RULES:
    - styles / aliases are read-only after construction
    - resolve() never raises; unknown ids map to default_id
    """

    styles: Mapping[str, CaptionStyle]
    default_id: str = "minimal"
    aliases: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.default_id not in self.styles:
            raise ValueError("default style '{}' is not registered".format(self.default_id))
        object.__setattr__(self, "styles", MappingProxyType(dict(self.styles)))
        object.__setattr__(self, "aliases", MappingProxyType(dict(self.aliases)))

    def ids(self) -> list[str]:
        return list(self.styles)

    def canonical_id(self, style_id: str | None) -> str:
        if not style_id:
            return self.default_id
        style_id = self.aliases.get(style_id, style_id)
        if style_id not in self.styles:
            logger.warning("Unknown caption style '%s'; using '%s'", style_id, self.default_id)
            return self.default_id
        return style_id

    def resolve(self, style_id: str | None) -> CaptionStyle:
        return self.styles[self.canonical_id(style_id)]

    def style_from_dict(self, data: Any) -> CaptionStyle:
        """Build a custom style, falling back to the default when malformed."""
        if not isinstance(data, Mapping):
            return self.styles[self.default_id]
        try:
            return CaptionStyle.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed caption style (%s); using '%s'", exc, self.default_id)
            return self.styles[self.default_id]


MINIMAL = CaptionStyle(
    name="Minimal",
    font_family="Inter",
    font_size=40,
    primary_color="#FFFFFF",
    outline_color="#000000",
    outline_width=2,
    shadow_color="#00000080",
    shadow_width=0,
    alignment=2,
    margin_v=40,
)

GLOWY = CaptionStyle(
    name="Glowy",
    font_family="Inter",
    font_size=62,
    primary_color="#FFFFFF",
    outline_color="#00000080",
    outline_width=5,
    shadow_color="#000000",
    shadow_width=18,
    alignment=5,
    margin_v=40,
)

CREATOR_KINETIC = CaptionStyle(
    name="CreatorKinetic",
    font_family="THE BOLD FONT (FREE VERSION)",
    font_size=58,
    primary_color="#FFFFFF",
    outline_color="#000000",
    outline_width=1,
    shadow_color="#000000",
    shadow_width=0,
    alignment=5,
    margin_v=50,
    uppercase=True,
    karaoke=KaraokeConfig(
        highlight_colors=("#70e2ff", "#ffe83f", "#9fff5b"),
        cycle_after_chunks=2,
    ),
    font_file="THEBOLDFONT-FREEVERSION.ttf",
)

SPORT_GLOW = CaptionStyle(
    name="SportGlow",
    font_family="Anton",
    font_size=82,
    primary_color="#FFFFFF",
    outline_color="#000000",
    outline_width=8,
    shadow_color="#000000",
    shadow_width=20,
    alignment=5,
    margin_v=50,
    uppercase=True,
    karaoke=KaraokeConfig(highlight_colors=("#FFFF40",)),
)


def default_registry() -> StyleRegistry:
    """The built-in caption looks."""
    return StyleRegistry(
        styles={
            "minimal": MINIMAL,
            "glowy": GLOWY,
            "karaoke": CREATOR_KINETIC,
            "sport_glow": SPORT_GLOW,
        },
        default_id="minimal",
        aliases={
            "creator-kinetic": "karaoke",
            "creator_kinetic": "karaoke",
            "sportGlow": "sport_glow",
        },
    )
