"""Runtime settings for the clone and sync engine.

Retry counts, batch sizes and delays are configuration rather than
constants. Settings load in layers: dataclass defaults, then an optional
YAML file, then ``STENCIL_*`` environment variables.

Example ``stencil.yaml``::

    batch_size: 5
    blob_retries: 3
    ready_poll_attempts: 5
    extra_excludes:
      - "*.log"
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from stencil.github.client import GITHUB_API_BASE

logger = logging.getLogger(__name__)

ENV_PREFIX = "STENCIL_"
DEFAULT_CONFIG_FILE = "stencil.yaml"


@dataclass
class SyncSettings:
    """Tunables for enumeration, object building, cloning and syncing.

    Delays are in seconds.
    """

    # Content enumeration / object building
    batch_size: int = 5
    batch_delay: float = 0.3
    write_batch_delay: float = 0.5
    blob_retries: int = 3
    blob_retry_delay: float = 2.0
    blob_warmup_delay: float = 1.0

    # Repository creation
    repo_init_delay: float = 3.0
    ready_poll_attempts: int = 5
    ready_poll_interval: float = 2.0
    placeholder_path: str = "README.md"

    # Contents-API writes
    file_write_delay: float = 0.5
    conflict_retry_delay: float = 1.0
    committer_name: str = "Stencil"
    committer_email: str = "noreply@github.com"

    # Sync
    history_page_size: int = 100
    branch_create_delay: float = 1.0
    extra_excludes: list[str] = field(default_factory=list)

    # API
    api_url: str = GITHUB_API_BASE
    timeout: float = 30.0

    @classmethod
    def no_delays(cls, **overrides: Any) -> "SyncSettings":
        """Settings with every sleep set to zero."""
        zeroed = {
            f.name: 0.0
            for f in fields(cls)
            if f.name.endswith("_delay") or f.name.endswith("_interval")
        }
        zeroed.update(overrides)
        return cls(**zeroed)

    @property
    def committer(self) -> dict[str, str]:
        return {"name": self.committer_name, "email": self.committer_email}


def load_settings(path: str | Path | None = None) -> SyncSettings:
    """Build settings from defaults, a YAML file and the environment.

    Args:
        path: YAML file to read. When *None*, ``stencil.yaml`` in the
              current directory is used if it exists.
    """
    settings = SyncSettings()

    config_path = Path(path) if path else Path(DEFAULT_CONFIG_FILE)
    if path or config_path.exists():
        settings = _merge(settings, _read_yaml(config_path), source=str(config_path))

    env_values = {
        key[len(ENV_PREFIX):].lower(): value
        for key, value in os.environ.items()
        if key.startswith(ENV_PREFIX) and not key.endswith("_TOKEN")
    }
    if env_values:
        settings = _merge(settings, env_values, source="environment")

    return settings


def get_target_token() -> str:
    return os.environ.get("GITHUB_TOKEN", "")


def get_source_token() -> str:
    return os.environ.get(f"{ENV_PREFIX}SOURCE_TOKEN", "")


def _read_yaml(path: Path) -> dict:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Config file not found: {path}")
        return {}
    except yaml.YAMLError as e:
        logger.error(f"Config syntax error in {path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Ignoring config {path}: top level must be a mapping")
        return {}
    return data


def _merge(settings: SyncSettings, updates: dict[str, Any], source: str) -> SyncSettings:
    """Apply ``updates`` onto ``settings``, coercing each value to the field's type."""
    known = {f.name: f for f in fields(settings)}

    unknown = set(updates) - set(known)
    if unknown:
        logger.warning(f"Unknown config keys in {source}: {', '.join(sorted(unknown))}. Ignoring.")

    coerced: dict[str, Any] = {}
    for key, value in updates.items():
        if key not in known:
            continue
        default = getattr(settings, key)
        try:
            coerced[key] = _coerce(value, default)
        except (TypeError, ValueError) as e:
            logger.warning(f"Config error in {source}.{key}: {e}. Falling back to default.")

    return replace(settings, **coerced)


def _coerce(value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(default, list):
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        if not isinstance(value, list):
            raise ValueError(f"expected a list, got {type(value).__name__}")
        return [str(v) for v in value]
    return str(value)
