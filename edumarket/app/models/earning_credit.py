"""
Earning Credit database model.

Records each ledger entry applied to a teacher balance, with the
commission breakdown in effect at credit time.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime
from sqlalchemy.sql import func
from edumarket.app.db.session import Base, Money


class EarningCredit(Base):
    """
    Earning Credit model.

    The unique ledger_entry_id makes crediting idempotent: a second credit
    for the same ledger entry fails at the index and the stored breakdown
    is returned instead.
    """
    __tablename__ = "earning_credits"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    ledger_entry_id = Column(Integer, ForeignKey('ledger_entries.id'), nullable=False, unique=True, index=True)
    teacher_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    gross_amount = Column(Money, nullable=False)
    commission = Column(Money, nullable=False)
    teacher_share = Column(Money, nullable=False)
    commission_rate_used = Column(Numeric(5, 2), nullable=False)

    # Immutable - no updated_at
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<EarningCredit(ledger_entry_id={self.ledger_entry_id}, share={self.teacher_share})>"
