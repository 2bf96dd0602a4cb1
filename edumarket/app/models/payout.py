"""
Payout Request database model.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, String, Text, JSON, Index
from sqlalchemy.sql import func
from edumarket.app.db.session import Base, Money
from edumarket.app.models.ledger_enums import PayoutMethod, PayoutStatus


class PayoutRequest(Base):
    """
    Payout Request model.

    Follows: PENDING -> APPROVED -> PROCESSING -> COMPLETED, with
    REJECTED (admin) and CANCELLED (teacher, only while PENDING) as exits.
    The method and destination are a snapshot taken at request time.
    """
    __tablename__ = "payout_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    teacher_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    amount = Column(Money, nullable=False)
    method = Column(Enum(PayoutMethod), nullable=False)
    payout_details = Column(JSON, nullable=True)

    status = Column(Enum(PayoutStatus), default=PayoutStatus.PENDING, nullable=False, index=True)

    # Notes
    request_note = Column(Text, nullable=True)
    admin_note = Column(Text, nullable=True)

    # Processing
    processed_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    transaction_reference = Column(String(128), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_payout_requests_teacher_status', 'teacher_id', 'status'),
    )

    def __repr__(self):
        return f"<PayoutRequest(id={self.id}, status='{self.status.value}', amount={self.amount})>"
