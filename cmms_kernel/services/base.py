"""
BaseService -- abstract base for kernel services that write.

Responsibility:
    Provides the common constructor for every write service: an
    AtomicRetry combinator (which owns the session factory and the retry
    budget) and a Clock.  Concrete services express each operation as a
    unit of work and hand it to ``self._atomic.run()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Services never open, commit, or roll back sessions themselves; the
      combinator owns transaction boundaries so that every attempt is a
      fresh read-validate-write cycle.
    - Time comes from the injected Clock, never from datetime.now().

Failure modes:
    - InvalidQuantityError from ``checked_amount`` for input that is not a
      finite number.
"""

from abc import ABC
from collections.abc import Callable
from decimal import Decimal, InvalidOperation

from cmms_kernel.domain.clock import Clock, SystemClock
from cmms_kernel.exceptions import InvalidQuantityError
from cmms_kernel.services.retry import AtomicRetry


def checked_amount(
    operation: str,
    value,
    rounder: Callable[[object], Decimal],
    *,
    allow_negative: bool = True,
) -> Decimal:
    """
    Round caller input with ``rounder`` or reject it as InvalidQuantityError.

    Rejects text that is not a number, NaN and infinities, and negatives
    when ``allow_negative`` is False.  Sign rules that depend on the
    operation (quantity > 0 for an issue) stay with the calculator.
    """
    try:
        amount = rounder(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidQuantityError(operation, value, "Not a number") from None
    if not amount.is_finite():
        raise InvalidQuantityError(operation, value, "Must be a finite number")
    if not allow_negative and amount < 0:
        raise InvalidQuantityError(operation, amount, "Cannot be negative")
    return amount


class BaseService(ABC):
    """
    Abstract base class for write services.

    Non-goals:
        - Does NOT provide query-only (read) methods -- those belong
          in ``cmms_kernel/selectors/``.
    """

    def __init__(self, atomic: AtomicRetry, clock: Clock | None = None):
        """
        Args:
            atomic: Retry combinator bound to a session factory.
            clock: Time source; defaults to the system clock.
        """
        self._atomic = atomic
        self._clock = clock or SystemClock()

    @property
    def clock(self) -> Clock:
        return self._clock
