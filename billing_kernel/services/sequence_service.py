"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly monotonically increasing numbers for invoice numbers
    (``INV-<year>-<000001>``).  Uses a dedicated counter table with row-level
    locking (``SELECT ... FOR UPDATE``) to guarantee uniqueness under
    concurrent access.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by ReconciliationService.create_invoice.

Invariants enforced:
    - The locked counter row is the sole source of truth for the next value;
      the SQL aggregate-max-plus-one pattern is never used.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_kernel.logging_config import get_logger
from billing_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    INVOICE_NUMBER = "invoice_number"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Locks the sequence row (creating it on first use), increments it and
        returns the new value.  Values start at 1.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None and self._session.get_bind().dialect.name == "sqlite":
            # SQLite serializes writers on the database file; pysqlite would
            # also commit early on releasing an outermost savepoint.
            counter = SequenceCounter(name=sequence_name, current_value=1)
            self._session.add(counter)
            self._session.flush()
            logger.debug(
                "sequence_allocated",
                extra={"sequence_name": sequence_name, "value": 1},
            )
            return 1

        if counter is None:
            # Another transaction may create the counter at the same time;
            # a savepoint keeps the caller's work intact on conflict.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None if unused."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None

    def next_invoice_number(self, prefix: str, year: int) -> str:
        """Allocate the next invoice number for ``year`` (``INV-2024-000001``)."""
        value = self.next_value(f"{self.INVOICE_NUMBER}:{year}")
        return f"{prefix}-{year}-{value:06d}"
