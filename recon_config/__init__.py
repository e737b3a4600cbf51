"""
recon_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains job
    definitions and schedules.  No other component reads configuration
    files or environment variables.

Resolution order:
    1. the ``path`` argument,
    2. the ``RECON_CONFIG_PATH`` environment variable,
    3. the packaged ``defaults.yaml``.

Failure modes:
    - ``FileNotFoundError`` -- the resolved file does not exist.
    - ``ConfigurationError`` -- parse or validation failures.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from recon_config.loader import load_engine_config
from recon_config.schema import EngineConfig, ReminderDefinition, RollupDefinition

_logger = logging.getLogger("recon.config")

CONFIG_PATH_ENV = "RECON_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | None = None) -> EngineConfig:
    """Load and validate the active engine configuration.

    Emits a ``RECON_CONFIG_TRACE`` log entry naming the file and checksum.
    """
    env_path = os.environ.get(CONFIG_PATH_ENV)
    resolved = path or (Path(env_path) if env_path else DEFAULT_CONFIG_PATH)

    config = load_engine_config(resolved)

    _logger.info(
        "RECON_CONFIG_TRACE",
        extra={
            "config_path": str(resolved),
            "checksum": config.checksum,
            "rollups": [r.name for r in config.rollups],
            "reminders": [r.name for r in config.reminders],
            "schedules": len(config.schedules),
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
    "EngineConfig",
    "ReminderDefinition",
    "RollupDefinition",
    "get_active_config",
]
