"""Environment driven settings.

Values come from the process environment, with a ``.env`` file at the
repository root loaded first. Malformed values raise ``ValueError`` here
instead of silently falling back to a default.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(ROOT_DIR / ".env")

DEFAULT_DB_URL = "sqlite:///./dev.db"
DEFAULT_ESCALATION_STEPS = "0.5:1.1,0.8:1.2"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def env_flag(name: str, default: bool) -> bool:
    """Read a boolean flag such as ``on``/``off`` from the environment."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"Environment variable '{name}' must be on/off, got {raw!r}")


def env_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    """Read an integer from the environment, enforcing ``minimum`` when given."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(
            f"Environment variable '{name}' must be an integer, got {raw!r}"
        ) from exc
    if minimum is not None and value < minimum:
        raise ValueError(f"Environment variable '{name}' must be >= {minimum}")
    return value


def db_url() -> str:
    return os.getenv("DB_URL", DEFAULT_DB_URL)


def log_level() -> int:
    name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown LOG_LEVEL {name!r}")
    return level


def rate_overlay_enabled() -> bool:
    return env_flag("KUJI_RATE_OVERLAY", True)


def escalation_steps() -> str:
    return os.getenv("KUJI_ESCALATION_STEPS", DEFAULT_ESCALATION_STEPS)


def seed_bytes() -> int:
    return env_int("KUJI_SEED_BYTES", 32, minimum=16)


def draw_max_attempts() -> int:
    return env_int("KUJI_DRAW_MAX_ATTEMPTS", 3, minimum=1)


def catalog_base_url() -> Optional[str]:
    return os.getenv("CATALOG_BASE_URL") or None


def catalog_api_key() -> Optional[str]:
    return os.getenv("CATALOG_API_KEY") or None


def configure_logging(level: Optional[int] = None) -> None:
    """Install a basic stderr handler for scripts and the API process."""
    logging.basicConfig(
        level=level if level is not None else log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
