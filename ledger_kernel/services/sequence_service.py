"""
SequenceService -- monotonic counters via locked rows.

Responsibility:
    Hands out strictly increasing integers per named sequence: journal
    numbers (one sequence per year), inventory transaction order and
    posting-log order.  The counter row is read ``FOR UPDATE``, incremented
    and flushed, so concurrent postings serialize on it.

Architecture position:
    Kernel > Services.  Called by JournalEngine, StockLedger and
    PostingLogService.

Invariants enforced:
    - Never MAX(x)+1: the counter row is the sole source of the next value.
    - The increment belongs to the caller's transaction; a rollback hands
      the value back.  Numbers are unique, not guaranteed gapless.

Failure modes:
    - IntegrityError on a concurrent first-use insert is absorbed by a
      savepoint and the row is re-read with a lock.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One named counter."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    INVENTORY_TXN = "inventory_txn"
    POSTING_LOG = "posting_log"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def journal_sequence(year: int) -> str:
        return f"journal:{year}"

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock, increment and return the next value of ``sequence_name``.

        Returns:
            An integer > 0, strictly greater than any value previously
            returned for this name in committed work.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
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
