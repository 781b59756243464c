"""Configuration constants, render presets, and .env loading.

WHY: Centralizes every configurable value (binaries, storage location,
worker pool size, timeouts, resolution presets) so both the CLI and the
HTTP server read the same settings. Values are plain data, not buried in
logic, so they are easy to find and override.

HOW: python-dotenv loads the .env file on import. Constants are module
level and read from environment variables with defaults.
load_storage_settings() resolves the object-storage location and raises
ConfigurationError when none is configured, before any job work begins.

RULES:
- RENDER_RESOLUTIONS maps resolution keys to (width, height)
- Unknown resolution keys raise ConfigurationError (never silently 1080p)
- Storage location comes from AUTOCAPS_STORAGE_URL (HTTP, pre-authenticated)
  or AUTOCAPS_STORAGE_DIR (local directory); URL wins when both are set
- configure_logging() is called by entry points only, never on import
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()


class ConfigurationError(ValueError):
    """Raised when a required setting is missing or invalid.

    WHY: Misconfiguration (no storage location, unknown resolution) must
    fail fast with a readable message instead of surfacing later as a
    confusing render failure.

    RULES:
    - Raised before any job work begins
    - The HTTP layer maps it to 503
    """


# ---------------------------------------------------------------------------
# Render presets
# ---------------------------------------------------------------------------

RENDER_RESOLUTIONS: dict[str, tuple[int, int]] = {
    "720p": (1280, 720),
    "1080p": (1920, 1080),
}

_RESOLUTION_ALIASES: dict[str, str] = {
    "720": "720p",
    "1080": "1080p",
}

DEFAULT_RESOLUTION = "1080p"

RENDER_FPS = 30


def resolve_resolution(key: str | None) -> tuple[str, tuple[int, int]]:
    """Resolve a resolution key (or alias) to its canonical name and size.

    RULES:
    - None or "" resolves to DEFAULT_RESOLUTION
    - "720"/"1080" are accepted as aliases of "720p"/"1080p"
    - Anything else raises ConfigurationError
    """
    name = (key or DEFAULT_RESOLUTION).strip().lower()
    name = _RESOLUTION_ALIASES.get(name, name)
    if name not in RENDER_RESOLUTIONS:
        raise ConfigurationError(
            "Unknown resolution '{}'. Supported: {}".format(
                key, ", ".join(sorted(RENDER_RESOLUTIONS))
            )
        )
    return name, RENDER_RESOLUTIONS[name]


# ---------------------------------------------------------------------------
# Storage layout
# ---------------------------------------------------------------------------

CAPTIONS_PREFIX = "captions"
RENDERS_PREFIX = "renders"

# ---------------------------------------------------------------------------
# Environment-driven settings
# ---------------------------------------------------------------------------

FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")
SCRATCH_DIR = os.getenv("AUTOCAPS_SCRATCH_DIR", "")
FONTS_DIR = os.getenv("AUTOCAPS_FONTS_DIR", "fonts")
MAX_CONCURRENT_RENDERS = int(os.getenv("AUTOCAPS_MAX_CONCURRENT_RENDERS", "2"))
RENDER_TIMEOUT_S = float(os.getenv("AUTOCAPS_RENDER_TIMEOUT_S", "1800"))
JOB_TTL_S = int(os.getenv("AUTOCAPS_JOB_TTL_S", "3600"))
LOG_LEVEL = os.getenv("AUTOCAPS_LOG_LEVEL", "INFO")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class StorageSettings:
    """Where subtitle files, source videos and rendered outputs live.

    RULES:
    - Exactly one of base_url / root_dir is set
    """

    base_url: str | None = None
    root_dir: Path | None = None


def load_storage_settings() -> StorageSettings:
    """Resolve the object-storage location from the environment.

    WHY: Every render reads its inputs from and writes its output to
    object storage. Without a location there is nothing to render.

    HOW: Reads AUTOCAPS_STORAGE_URL first, then AUTOCAPS_STORAGE_DIR.

    RULES:
    - Raises ConfigurationError if neither is set
    - Never returns a placeholder location
    """
    base_url = os.getenv("AUTOCAPS_STORAGE_URL", "").strip()
    if base_url:
        return StorageSettings(base_url=base_url.rstrip("/") + "/")

    root_dir = os.getenv("AUTOCAPS_STORAGE_DIR", "").strip()
    if root_dir:
        return StorageSettings(root_dir=Path(root_dir))

    raise ConfigurationError(
        "Object storage not configured. "
        "Set AUTOCAPS_STORAGE_URL or AUTOCAPS_STORAGE_DIR in the .env file."
    )


def configure_logging(level: str | None = None) -> None:
    """Install a root logging handler for CLI and server entry points."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=_LOG_FORMAT,
    )
