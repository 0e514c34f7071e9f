"""
Named counters for human-readable numbers.

``inventory_part`` feeds ``PART-0000001``, ``work_order`` feeds
``WO-0000001`` and ``pm_schedule`` feeds ``PM-0000001``.  Each name owns one
row in ``sequence_counters``; the row is created lazily at value 1.

Concurrency:
    The row is read FOR UPDATE (PostgreSQL) and written through its
    ``version`` column.  Two allocators that read the same value cannot both
    commit it: the second flush raises StaleDataError.  A race to create the
    row hits the UNIQUE name constraint, which is re-raised as StaleDataError
    too, so AtomicRetry treats both the same way and the next attempt sees
    the winner's row.

The caller owns the transaction.  A value is only taken once the caller's
unit of work commits; a rolled-back attempt gives its number back.
"""

from sqlalchemy import Integer, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column
from sqlalchemy.orm.exc import StaleDataError

from cmms_kernel.db.base import Base
from cmms_kernel.db.types import Sequence
from cmms_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), unique=True)
    current_value: Mapped[Sequence] = mapped_column(default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class SequenceService:
    """Allocates the next value of a named counter inside the caller's session."""

    INVENTORY_PART = "inventory_part"
    WORK_ORDER = "work_order"
    PM_SCHEDULE = "pm_schedule"

    def __init__(self, session: Session):
        self._session = session

    def _find(self, name: str, *, lock: bool) -> SequenceCounter | None:
        stmt = select(SequenceCounter).where(SequenceCounter.name == name)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.scalars(stmt).one_or_none()

    def next_value(self, name: str) -> int:
        """
        Increment ``name`` and return the new value (1 on first use).

        Raises:
            StaleDataError: Another transaction allocated or created the
                counter first; retry the whole unit of work.
        """
        counter = self._find(name, lock=True)
        if counter is not None:
            counter.current_value += 1
            self._session.flush()
        else:
            counter = SequenceCounter(name=name, current_value=1)
            self._session.add(counter)
            try:
                self._session.flush()
            except IntegrityError as exc:
                logger.debug("sequence_counter_race", extra={"sequence_name": name})
                raise StaleDataError(f"Counter {name!r} was created concurrently") from exc

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        """Last allocated value, or None if ``name`` was never used."""
        counter = self._find(name, lock=False)
        return None if counter is None else counter.current_value
