"""
Configuration Loader (``recon_config.loader``).

Responsibility
--------------
Loads a YAML engine configuration file and parses it into the frozen
dataclasses of ``recon_config.schema``.  Runtime callers go through
``recon_config.get_active_config()``; this module is its implementation.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing keys, bad enum values or bad numbers -> ``ConfigurationError``
  listing every problem found, not just the first.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from recon_batch.domain.types import BucketMode, JobSchedule, ScheduleFrequency, WindowScope
from recon_config.schema import EngineConfig, ReminderDefinition, RollupDefinition
from recon_config.validator import validate_config
from recon_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the raw configuration mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def parse_rollup(data: dict[str, Any]) -> RollupDefinition:
    """
    Parse a ``RollupDefinition`` from a dict.

    Raises:
        KeyError: if ``name``, ``source``, ``timestamp_field`` or
            ``measures`` is missing.
        ValueError: if ``bucket_mode`` / ``window_scope`` is not recognised.
    """
    return RollupDefinition(
        name=data["name"],
        source=data["source"],
        timestamp_field=data["timestamp_field"],
        measures=_tuple(data["measures"]),
        bucket_mode=BucketMode(data.get("bucket_mode", "weekly")),
        window_scope=WindowScope(data.get("window_scope", "month")),
        owner_field=data.get("owner_field"),
        statuses=_tuple(data.get("statuses")),
        chunk_size=int(data.get("chunk_size", 500)),
        description=data.get("description", ""),
    )


def parse_reminder(data: dict[str, Any]) -> ReminderDefinition:
    """Parse a ``ReminderDefinition`` from a dict."""
    return ReminderDefinition(
        name=data["name"],
        source=data["source"],
        timestamp_field=data["timestamp_field"],
        owner_field=data["owner_field"],
        stale_after_days=int(data["stale_after_days"]),
        lookback_days=int(data["lookback_days"]),
        statuses=_tuple(data.get("statuses")),
        due_in_days=int(data.get("due_in_days", 3)),
        chunk_size=int(data.get("chunk_size", 500)),
        subject=data.get("subject", "Follow up with {owner_ref}"),
        description=data.get("description", ""),
    )


def parse_schedule(data: dict[str, Any]) -> JobSchedule:
    """Parse a ``JobSchedule`` from a dict."""
    return JobSchedule(
        job_name=data["job"],
        frequency=ScheduleFrequency(data.get("frequency", "daily")),
        hour=int(data.get("hour", 0)),
        minute=int(data.get("minute", 0)),
        weekday=int(data.get("weekday", 0)),
        day=int(data.get("day", 1)),
        is_active=bool(data.get("active", True)),
    )


def _parse_section(items: Any, parser, section: str, errors: list[str]) -> tuple:
    parsed = []
    for i, item in enumerate(items or ()):
        if not isinstance(item, dict):
            errors.append(f"{section}[{i}]: expected a mapping, got {type(item).__name__}")
            continue
        try:
            parsed.append(parser(item))
        except KeyError as exc:
            errors.append(f"{section}[{i}]: missing key {exc}")
        except (TypeError, ValueError) as exc:
            errors.append(f"{section}[{i}]: {exc}")
    return tuple(parsed)


def parse_config(data: dict[str, Any]) -> EngineConfig:
    """Parse and validate a raw configuration mapping.

    Raises:
        ConfigurationError: with every parse and validation problem.
    """
    errors: list[str] = []
    config = EngineConfig(
        rollups=_parse_section(data.get("rollups"), parse_rollup, "rollups", errors),
        reminders=_parse_section(data.get("reminders"), parse_reminder, "reminders", errors),
        schedules=_parse_section(data.get("schedules"), parse_schedule, "schedules", errors),
        checksum=compute_checksum(data),
    )
    if errors:
        raise ConfigurationError(errors)

    problems = validate_config(config)
    if problems:
        raise ConfigurationError(problems)
    return config


def load_engine_config(path: Path) -> EngineConfig:
    """Load, parse and validate the YAML file at ``path``."""
    return parse_config(load_yaml_file(path))
