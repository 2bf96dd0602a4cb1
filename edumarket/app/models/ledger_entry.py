"""
Ledger Entry database model.

One record per payment attempt, keyed by a globally unique transaction id.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, String, JSON, UniqueConstraint
from sqlalchemy.sql import func
from edumarket.app.db.session import Base, Money
from edumarket.app.models.ledger_enums import PaymentPurpose, LedgerStatus, RefNamespace


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Status moves pending -> success | failed, and success -> refunded.
    transaction_id is immutable once created. An external reference is
    unique within its namespace, so a gateway refId and a pasted
    direct-transfer proof can never collide.
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    transaction_id = Column(String(64), unique=True, index=True, nullable=False)

    # Payer and purpose
    payer_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    purpose = Column(Enum(PaymentPurpose), nullable=False)
    purpose_id = Column(Integer, nullable=True, index=True)  # meeting / course id

    # Outcome
    status = Column(Enum(LedgerStatus), default=LedgerStatus.PENDING, nullable=False, index=True)
    payment_method = Column(String(32), default="esewa", nullable=False)
    external_ref = Column(String(128), nullable=True)
    external_ref_namespace = Column(Enum(RefNamespace), nullable=True)
    gateway_response = Column(JSON, nullable=True)
    meta_data = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('external_ref_namespace', 'external_ref'),
    )

    def __repr__(self):
        return f"<LedgerEntry(txn='{self.transaction_id}', status='{self.status.value}', amount={self.amount})>"
