"""
CmmsSettings schema.

Typed, frozen view of the runtime settings.  YAML fragments are parsed
into these types by the loader; the bridges turn them into the kernel and
batch policy objects that services receive by injection.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """Engine URL plus pool and lock-wait options."""

    url: str = "sqlite:///cmms.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    sqlite_busy_timeout: float = 5.0


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetrySettings:
    """Optimistic-commit retry budget (seconds for the wait bounds)."""

    max_attempts: int = 5
    initial_wait_seconds: float = 0.01
    max_wait_seconds: float = 0.5


@dataclass(frozen=True)
class BatchSettings:
    max_items_per_run: int = 500
    default_limit: int = 50
    include_overdue: bool = True


@dataclass(frozen=True)
class PMSettings:
    default_lead_time_days: int = 7
    overdue_grace_days: int = 2


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CmmsSettings:
    """Complete runtime settings with the identity of their source."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    batch: BatchSettings = field(default_factory=BatchSettings)
    pm: PMSettings = field(default_factory=PMSettings)
    checksum: str = ""
    source: str = ""
