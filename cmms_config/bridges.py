"""
Config -> Kernel Bridges.

Functions that convert CmmsSettings into kernel and batch inputs.  These
live in cmms_config (the producer) because the kernel must NEVER import
cmms_config.

Usage:
    from cmms_config import get_active_settings
    from cmms_config.bridges import build_generation_policy, build_retry_policy

    settings = get_active_settings()
    orchestrator = PMGenerationOrchestrator.from_session_factory(
        factory,
        retry_policy=build_retry_policy(settings),
        generation_policy=build_generation_policy(settings),
    )
"""

from __future__ import annotations

from typing import Any

from cmms_batch.domain.types import GenerationPolicy
from cmms_config.schema import CmmsSettings
from cmms_kernel.services.retry import RetryPolicy


def build_retry_policy(settings: CmmsSettings) -> RetryPolicy:
    retry = settings.retry
    return RetryPolicy(
        max_attempts=retry.max_attempts,
        initial_wait_seconds=retry.initial_wait_seconds,
        max_wait_seconds=retry.max_wait_seconds,
    )


def build_generation_policy(settings: CmmsSettings) -> GenerationPolicy:
    """Batch limits from ``batch`` plus PM timing defaults from ``pm``."""
    return GenerationPolicy(
        max_items_per_run=settings.batch.max_items_per_run,
        default_limit=settings.batch.default_limit,
        include_overdue=settings.batch.include_overdue,
        default_lead_time_days=settings.pm.default_lead_time_days,
        overdue_grace_days=settings.pm.overdue_grace_days,
    )


def engine_options(settings: CmmsSettings) -> dict[str, Any]:
    """Keyword arguments for ``cmms_kernel.db.engine.init_engine_from_url``."""
    db = settings.database
    return {
        "echo": db.echo,
        "pool_size": db.pool_size,
        "max_overflow": db.max_overflow,
        "pool_timeout": db.pool_timeout,
        "pool_recycle": db.pool_recycle,
        "sqlite_busy_timeout": db.sqlite_busy_timeout,
    }
