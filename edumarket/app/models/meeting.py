"""
Meeting database model.

A scheduled tutoring session. Only the payment fields matter to the
ledger; scheduling and video rooms are handled elsewhere.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, String, Boolean
from sqlalchemy.sql import func
from edumarket.app.db.session import Base, Money
from edumarket.app.models.ledger_enums import MeetingStatus, SessionPaymentStatus


class Meeting(Base):
    """
    Meeting model.

    payment_status is changed only by the settlement orchestrator and the
    direct-transfer handshake.
    """
    __tablename__ = "meetings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Parties
    student_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)  # Payer
    teacher_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)  # Payee

    subject = Column(String(255), nullable=False)
    scheduled_time = Column(DateTime(timezone=True), nullable=True)
    status = Column(Enum(MeetingStatus), default=MeetingStatus.SCHEDULED, nullable=False)

    # Payment fields
    price = Column(Money, default=0, nullable=False)
    is_paid = Column(Boolean, default=False, nullable=False)
    payment_status = Column(Enum(SessionPaymentStatus), default=SessionPaymentStatus.NOT_REQUIRED, nullable=False)
    payment_proof = Column(String(128), nullable=True)
    payment_confirmed_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    payment_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    payment_id = Column(Integer, ForeignKey('ledger_entries.id'), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Meeting(id={self.id}, payment_status='{self.payment_status.value}', price={self.price})>"
