"""Configuration constants, source allowlist, and .env loading.

WHY: Centralizes all configurable values so they are easy to find,
update, and override. Limits, retention windows, and scheduling defaults
are plain module-level values — not buried in logic — so operators can
tune a deployment from the environment alone.

HOW: python-dotenv loads the .env file on import. Constants are defined
as module-level values read through os.getenv with defaults. The
load_api_key() function provides a clear error when the key is missing.

RULES:
- Every default can be overridden via an environment variable
- ALLOWED_SOURCE_HOSTS is a comma-separated host list (exact match)
- Durations are seconds, sizes are bytes
- API key is loaded from .env via python-dotenv, never hardcoded
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import FrozenSet, Optional

from dotenv import load_dotenv

# Load .env from the project root (where the process is started from)
load_dotenv()


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


# ---------------------------------------------------------------------------
# Job storage
# ---------------------------------------------------------------------------

JOBS_ROOT = Path(os.getenv("JOBS_ROOT", str(Path.cwd() / "public")))
"""Root directory under which every job gets ``<job_id>/``."""

JOB_SUBDIRECTORIES = ("images", "videos", "audio", "output")
"""Role-named areas created inside every job directory."""

MAX_CONCURRENT_JOBS = _env_int("MAX_CONCURRENT_JOBS", 20)
JOB_TIMEOUT_S = _env_float("JOB_TIMEOUT_S", 900.0)

# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------

CLEANUP_DELAY_S = _env_float("CLEANUP_DELAY_S", 600.0)  # 10 minutes
SWEEP_INTERVAL_S = _env_float("SWEEP_INTERVAL_S", 3600.0)  # hourly
SWEEP_MAX_AGE_S = _env_float("SWEEP_MAX_AGE_S", 24 * 60 * 60.0)

# ---------------------------------------------------------------------------
# Asset downloads
# ---------------------------------------------------------------------------

DEFAULT_ALLOWED_SOURCE_HOSTS = frozenset({
    "drive.google.com",
    "drive.usercontent.google.com",
    "docs.google.com",
})


def _parse_hosts(raw: Optional[str]) -> FrozenSet[str]:
    if not raw:
        return DEFAULT_ALLOWED_SOURCE_HOSTS
    return frozenset(h.strip().lower() for h in raw.split(",") if h.strip())


ALLOWED_SOURCE_HOSTS = _parse_hosts(os.getenv("ALLOWED_SOURCE_HOSTS"))
MAX_DOWNLOAD_BYTES = _env_int("MAX_DOWNLOAD_BYTES", 500 * 1024 * 1024)
DOWNLOAD_TIMEOUT_S = _env_float("DOWNLOAD_TIMEOUT_S", 300.0)
DOWNLOAD_USER_AGENT = os.getenv(
    "DOWNLOAD_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
)

# ---------------------------------------------------------------------------
# Timeline defaults
# ---------------------------------------------------------------------------

CAPTION_BATCH_SIZE = _env_int("CAPTION_BATCH_SIZE", 4)
IMAGE_SLOT_SECONDS = _env_float("IMAGE_SLOT_SECONDS", 3.0)

# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

DEEPGRAM_BASE_URL = os.getenv("DEEPGRAM_BASE_URL", "https://api.deepgram.com/v1")
DEEPGRAM_MODEL = os.getenv("DEEPGRAM_MODEL", "nova-2")
DEEPGRAM_LANGUAGE = os.getenv("DEEPGRAM_LANGUAGE") or None

FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")

RENDER_COMMAND = os.getenv("RENDER_COMMAND") or None
RENDER_TIMEOUT_S = _env_float("RENDER_TIMEOUT_S", 600.0)

PORT = _env_int("PORT", 5000)


def load_api_key() -> str:
    """Load the Deepgram API key from the environment.

    WHY: The key is required for every transcription call. Loading it
    from the environment (via .env) keeps it out of source code.

    RULES:
    - Raises ValueError if the key is missing or empty
    - Never returns a default/placeholder value
    """
    key = os.getenv("DEEPGRAM_API_KEY", "").strip()
    if not key:
        raise ValueError(
            "Deepgram API key not configured. "
            "Add DEEPGRAM_API_KEY to the .env file in the app folder."
        )
    return key
