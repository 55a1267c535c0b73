"""Runtime settings read from the environment (and an optional ``.env`` file).

Every field can be overridden by an environment variable; values that do not
parse fall back to the default, integers are clamped into a safe range.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

# Load environment variables once
load_dotenv()


def _env_int(name: str, default: int, min_v: Optional[int] = None,
             max_v: Optional[int] = None) -> int:
    """Read int env var with optional clamp."""
    try:
        v = int(str(os.environ.get(name, str(default))).strip())
    except ValueError:
        v = int(default)

    if min_v is not None:
        v = max(int(min_v), v)
    if max_v is not None:
        v = min(int(max_v), v)
    return v


def _default_workers() -> int:
    return os.cpu_count() or 1


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    log_level: str = field(default_factory=lambda: os.getenv('LOG_LEVEL', 'INFO'))

    # Size of the shared kernel pool and default batch parallelism
    max_workers: int = field(
        default_factory=lambda: _env_int('SMART_COMPRESS_MAX_WORKERS', _default_workers(), 1, 64)
    )
    # Pre-allocated scratch buffers per kernel block size
    scratch_buffers: int = field(
        default_factory=lambda: _env_int('SMART_COMPRESS_SCRATCH_BUFFERS', 8, 0, 256)
    )
    # Background used when flattening transparency for JPEG
    background: str = field(
        default_factory=lambda: os.getenv('SMART_COMPRESS_BACKGROUND', '#ffffff')
    )


@lru_cache()
def get_config() -> Config:
    """Return a cached configuration instance."""
    return Config()
