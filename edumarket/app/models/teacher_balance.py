"""
Teacher Balance database model.

One balance account per teacher, created lazily on first credit or
first payout-settings update.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, Enum, String, JSON, CheckConstraint
from sqlalchemy.sql import func
from edumarket.app.db.session import Base, Money
from edumarket.app.models.ledger_enums import PayoutMethod


class TeacherBalance(Base):
    """
    Teacher Balance model.

    Conservation: total_earnings == available_balance + pending_balance + withdrawn_amount.
    pending_balance is money reserved by in-flight payout requests.
    """
    __tablename__ = "teacher_balances"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    teacher_id = Column(Integer, ForeignKey('users.id'), nullable=False, unique=True, index=True)

    # Running totals
    total_earnings = Column(Money, default=0, nullable=False)
    available_balance = Column(Money, default=0, nullable=False)
    pending_balance = Column(Money, default=0, nullable=False)
    withdrawn_amount = Column(Money, default=0, nullable=False)

    # Per-account override of settings.platform_commission_rate
    commission_rate = Column(Numeric(5, 2), nullable=False)

    # Payout destination
    payout_method = Column(Enum(PayoutMethod), default=PayoutMethod.NOT_SET, nullable=False)
    esewa_id = Column(String(100), nullable=True)
    bank_details = Column(JSON, nullable=True)  # account_name, account_number, bank_name, branch_name

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('total_earnings >= 0', name='total_earnings_non_negative'),
        CheckConstraint('available_balance >= 0', name='available_non_negative'),
        CheckConstraint('pending_balance >= 0', name='pending_non_negative'),
        CheckConstraint('withdrawn_amount >= 0', name='withdrawn_non_negative'),
        CheckConstraint('commission_rate >= 0 AND commission_rate <= 100', name='commission_rate_range'),
    )

    def __repr__(self):
        return (
            f"<TeacherBalance(teacher_id={self.teacher_id}, available={self.available_balance}, "
            f"pending={self.pending_balance}, withdrawn={self.withdrawn_amount})>"
        )
