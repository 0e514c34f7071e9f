"""
cmms_config -- single public entrypoint for runtime settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  No other component reads settings files
    directly.  Returns a frozen ``CmmsSettings``.

Architecture position:
    Configuration.  This package sits above ``cmms_kernel`` and beside
    ``cmms_batch``.  The kernel MUST NEVER import from ``cmms_config``;
    ``cmms_config.bridges`` translates settings into kernel-compatible
    policy objects.

Invariants enforced:
    - Single entrypoint: all runtime settings flow through
      ``get_active_settings()``.
    - The packaged ``defaults.yaml`` is always loaded first; a settings
      file only overrides keys it names.
    - Deterministic identity: the same merged settings always produce the
      same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings file does not exist.
    - ``ValueError`` -- unknown keys, wrong types, or out-of-range values.

Audit relevance:
    Every successful call emits a ``CMMS_CONFIG_TRACE`` log entry with
    the checksum and the effective retry and batch limits, tying each run
    to the exact settings that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from cmms_config.loader import DEFAULTS_PATH, load_yaml_file, merge_settings, parse_settings
from cmms_config.schema import CmmsSettings

__all__ = ["CmmsSettings", "get_active_settings"]

_logger = logging.getLogger("cmms_kernel.config")


def get_active_settings(config_path: Path | str | None = None) -> CmmsSettings:
    """The ONLY public settings entrypoint.

    Args:
        config_path: Optional YAML file overriding the packaged defaults.

    Returns:
        Validated, frozen CmmsSettings.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        ValueError: If the merged settings fail validation.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    source = str(DEFAULTS_PATH)
    if config_path is not None:
        path = Path(config_path)
        data = merge_settings(data, load_yaml_file(path))
        source = str(path)

    settings = parse_settings(data, source=source)

    _logger.info(
        "CMMS_CONFIG_TRACE",
        extra={
            "trace_type": "CMMS_CONFIG_TRACE",
            "source": settings.source,
            "checksum": settings.checksum,
            "dialect": settings.database.url.split(":", 1)[0],
            "retry_max_attempts": settings.retry.max_attempts,
            "batch_max_items_per_run": settings.batch.max_items_per_run,
        },
    )
    return settings
