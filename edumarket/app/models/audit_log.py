"""
Audit Log Database Model.

Tracks money movements and admin actions on the ledger.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from edumarket.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for ledger events.

    Events logged:
    - PAYMENT_INITIATED / PAYMENT_VERIFIED / PAYMENT_FAILED / PAYMENT_REFUNDED
    - PAYMENT_PROOF_SUBMITTED / PAYMENT_CONFIRMED
    - TEACHER_CREDITED
    - PAYOUT_* transitions and PAYOUT_SETTINGS_UPDATED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system and gateway actions)
    actor_id = Column(Integer, index=True, nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What it was performed on
    entity_type = Column(String(50), nullable=True, index=True)
    entity_id = Column(String(64), nullable=True, index=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
