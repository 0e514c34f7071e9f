"""
AtomicRetry -- bounded optimistic-commit retry combinator.

Responsibility:
    Runs a unit of work in a fresh session and transaction, commits it,
    and re-runs the whole unit when the commit loses an optimistic race
    (StaleDataError from a versioned UPDATE) or hits a transient store
    error (lock timeout, deadlock, "database is locked").

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Used by StockLedgerService, InventoryService, and the PM work order
    generator.  Those services never open sessions themselves.

Invariants enforced:
    - Every attempt re-reads state: the unit of work receives a brand new
      session, so no stale identity-map object survives a retry.
    - The attempt ceiling is mandatory; RetryPolicy rejects zero.
    - Client errors (ValidationError, NotFoundError) are never retried.

Failure modes:
    - OptimisticLockError: conflicts persisted through every attempt.
    - StoreUnavailableError: transient store errors persisted, or a
      non-transient SQLAlchemyError escaped the unit of work.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from cmms_kernel.db.engine import session_scope
from cmms_kernel.exceptions import OptimisticLockError, StoreUnavailableError
from cmms_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling and jittered exponential backoff bounds (seconds)."""

    max_attempts: int = 5
    initial_wait_seconds: float = 0.01
    max_wait_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_wait_seconds < 0 or self.max_wait_seconds < 0:
            raise ValueError("Retry wait bounds cannot be negative")
        if self.max_wait_seconds < self.initial_wait_seconds:
            raise ValueError("max_wait_seconds must be >= initial_wait_seconds")


@dataclass(frozen=True)
class AttemptOutcome:
    """Value returned by the unit of work plus the attempt that committed it."""

    value: Any
    attempts: int


def is_transient(exc: BaseException) -> bool:
    """True for store errors worth a fresh attempt."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


class AtomicRetry:
    """
    Executes ``work(session)`` atomically with bounded retries.

    Contract:
        ``work`` performs reads and writes on the session it is handed and
        returns a value.  AtomicRetry commits on success and rolls back on
        any exception.  The value must not reference live ORM state; callers
        convert to DTOs inside ``work``.

    Non-goals:
        - Does NOT retry domain errors.  A ValidationError raised by
          ``work`` propagates on the first attempt.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    def run(
        self,
        operation: str,
        entity_id: Any,
        work: Callable[[Session], T],
    ) -> AttemptOutcome:
        """
        Run ``work`` until it commits or the budget is spent.

        Args:
            operation: Short name used in logs and errors (e.g. "issue").
            entity_id: Identifier of the contended row, for diagnostics.
            work: Unit of work; receives a fresh session per attempt.

        Returns:
            AttemptOutcome with the value of the committing attempt.

        Raises:
            OptimisticLockError: Version conflicts on every attempt.
            StoreUnavailableError: Transient or unexpected store failure.
        """
        policy = self._policy
        retrying = Retrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_random_exponential(
                multiplier=policy.initial_wait_seconds,
                max=policy.max_wait_seconds,
            ),
            retry=retry_if_exception(is_transient),
            before_sleep=self._before_sleep(operation, entity_id),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            for attempt in retrying:
                with attempt:
                    with session_scope(self._session_factory) as session:
                        value = work(session)
                    attempts = attempt.retry_state.attempt_number
        except StaleDataError as exc:
            logger.warning(
                "atomic_retry_exhausted",
                extra={
                    "operation": operation,
                    "entity_id": str(entity_id),
                    "attempts": policy.max_attempts,
                    "error_type": "StaleDataError",
                },
            )
            raise OptimisticLockError(
                operation=operation,
                entity_id=str(entity_id),
                attempts=policy.max_attempts,
            ) from exc
        except SQLAlchemyError as exc:
            attempts = policy.max_attempts if is_transient(exc) else 1
            logger.error(
                "atomic_store_failure",
                extra={
                    "operation": operation,
                    "entity_id": str(entity_id),
                    "attempts": attempts,
                    "error_type": type(exc).__name__,
                },
            )
            raise StoreUnavailableError(
                operation=operation,
                reason=str(exc.orig) if getattr(exc, "orig", None) is not None else str(exc),
                attempts=attempts,
            ) from exc

        if attempts > 1:
            logger.info(
                "atomic_retry_succeeded",
                extra={
                    "operation": operation,
                    "entity_id": str(entity_id),
                    "attempts": attempts,
                },
            )
        return AttemptOutcome(value=value, attempts=attempts)

    @staticmethod
    def _before_sleep(operation: str, entity_id: Any) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.info(
                "atomic_retry_scheduled",
                extra={
                    "operation": operation,
                    "entity_id": str(entity_id),
                    "attempt": retry_state.attempt_number,
                    "error_type": type(exc).__name__ if exc else None,
                    "wait_seconds": (
                        round(retry_state.next_action.sleep, 4)
                        if retry_state.next_action else 0.0
                    ),
                },
            )

        return log_retry
