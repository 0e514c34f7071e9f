"""
Settings loader (``cmms_config.loader``).

Responsibility
--------------
Loads YAML settings files and parses them into the frozen
``cmms_config.schema`` dataclasses.  No service or orchestrator calls
this directly; the single public entry point is
``cmms_config.get_active_settings()``.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a misspelt key never
  silently falls back to its default.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  merged settings for identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong type, unknown key or out-of-range value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from cmms_config.schema import (
    BatchSettings,
    CmmsSettings,
    DatabaseSettings,
    PMSettings,
    RetrySettings,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_SECTIONS: dict[str, type] = {
    "database": DatabaseSettings,
    "retry": RetrySettings,
    "batch": BatchSettings,
    "pm": PMSettings,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping at top level")
    return data


def merge_settings(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``overrides`` onto ``base`` one section at a time."""
    merged = {name: dict(section or {}) for name, section in base.items()}
    for name, section in overrides.items():
        if section is None:
            continue
        if not isinstance(section, dict):
            raise ValueError(f"Settings section '{name}' must be a mapping")
        merged.setdefault(name, {}).update(section)
    return merged


def _coerce(section: str, key: str, value: Any, expected: Any) -> Any:
    """Check a YAML scalar against the default's type; ints are accepted as floats."""
    if isinstance(expected, bool):
        if not isinstance(value, bool):
            raise ValueError(f"{section}.{key} must be a boolean, got {value!r}")
        return value
    if isinstance(expected, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
        return value
    if isinstance(expected, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{section}.{key} must be a number, got {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"{section}.{key} must be a string, got {value!r}")
    return value


def parse_section(name: str, data: dict[str, Any]) -> Any:
    """Parse one section mapping into its schema dataclass."""
    cls = _SECTIONS[name]
    defaults = cls()
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in settings section '{name}': {sorted(unknown)}")
    values = {
        key: _coerce(name, key, value, getattr(defaults, key))
        for key, value in data.items()
    }
    return cls(**values)


def validate_settings(settings: CmmsSettings) -> list[str]:
    """Range checks across the parsed settings; returns error messages."""
    errors: list[str] = []
    if not settings.database.url:
        errors.append("database.url must not be empty")
    if settings.database.sqlite_busy_timeout < 0:
        errors.append("database.sqlite_busy_timeout cannot be negative")

    retry = settings.retry
    if retry.max_attempts < 1:
        errors.append("retry.max_attempts must be >= 1")
    if retry.initial_wait_seconds < 0 or retry.max_wait_seconds < 0:
        errors.append("retry wait bounds cannot be negative")
    elif retry.max_wait_seconds < retry.initial_wait_seconds:
        errors.append("retry.max_wait_seconds must be >= retry.initial_wait_seconds")

    if settings.batch.max_items_per_run < 1:
        errors.append("batch.max_items_per_run must be >= 1")
    if settings.batch.default_limit < 1:
        errors.append("batch.default_limit must be >= 1")

    if settings.pm.default_lead_time_days < 0:
        errors.append("pm.default_lead_time_days cannot be negative")
    if settings.pm.overdue_grace_days < 0:
        errors.append("pm.overdue_grace_days cannot be negative")
    return errors


def parse_settings(data: dict[str, Any], source: str = "") -> CmmsSettings:
    """
    Parse a merged settings mapping into ``CmmsSettings``.

    Raises:
        ValueError: unknown section or key, wrong type, or failed range check.
    """
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown settings sections: {sorted(unknown)}")

    settings = CmmsSettings(
        **{name: parse_section(name, data.get(name) or {}) for name in _SECTIONS},
        checksum=compute_checksum(data),
        source=source,
    )
    errors = validate_settings(settings)
    if errors:
        raise ValueError(
            "Settings validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )
    return settings


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
