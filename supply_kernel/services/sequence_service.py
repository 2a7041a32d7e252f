"""
SequenceService -- document numbers via locked counter rows.

Responsibility:
    Issues strictly increasing numbers for bills, returns, transports and
    payments.  A dedicated counter table is read with ``SELECT ... FOR
    UPDATE`` so concurrent issuers never hand out the same number.

Architecture position:
    Kernel > Services.  Called by BillService, TransportWorkflow and
    PaymentReconciler when a new document is created.  Edits keep the
    number they were issued with.

Invariants enforced:
    - Monotonic: the locked counter row is the sole source of the next
      value.  max()+1 over document tables is never used.
    - Transactional: an increment is visible only after the caller
      commits.  A rolled-back document returns its number.

Failure modes:
    - IntegrityError on the first use of a sequence by two transactions at
      once; handled by a savepoint rollback and re-read.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from supply_kernel.db.base import Base
from supply_kernel.logging_config import get_logger

logger = get_logger("services.sequence")

NUMBER_WIDTH = 6


class SequenceCounter(Base):
    """One named sequence and its last issued value."""

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "purchase_bill", "payment")
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def format_document_number(prefix: str, value: int) -> str:
    """``format_document_number("SB", 12) -> "SB-000012"``."""
    return f"{prefix}-{value:0{NUMBER_WIDTH}d}"


class SequenceService:
    """
    Transactional sequence numbers.

    Usage:
        number = SequenceService(session).next_number("sale_bill", "SB")
        # "SB-000001"; released again if the transaction rolls back
    """

    PURCHASE_BILL = "purchase_bill"
    SALE_BILL = "sale_bill"
    STOCK_RETURN = "stock_return"
    TRANSPORT = "transport"
    PAYMENT = "payment"

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
        Lock (or create) the counter row, increment it and return the value.

        Postconditions:
            - Returns an integer > 0 greater than any value previously
              returned for ``sequence_name``.
            - The counter row stays locked until the transaction ends.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use; another transaction may be creating it right now
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
        assert counter.current_value > 0, "sequence value must be strictly positive"
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_number(self, sequence_name: str, prefix: str) -> str:
        """Next value formatted as a document number."""
        return format_document_number(prefix, self.next_value(sequence_name))

    def current_value(self, sequence_name: str) -> int | None:
        """Last issued value, or None if the sequence was never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
