"""
Dead Letter Queue (DLQ) Model.

Stores verifier calls that failed transiently, for retry or audit.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from sqlalchemy.sql import func
from edumarket.app.db.session import Base
import enum


class DLQStatus(str, enum.Enum):
    FAILED = "FAILED"
    RETRYING = "RETRYING"
    PROCESSED = "PROCESSED"
    ARCHIVED = "ARCHIVED"  # Payment resolved elsewhere


class DeadLetterQueue(Base):
    """
    Dead Letter Queue table.
    A row here means a ledger entry was left pending and needs another
    verification attempt.
    """
    __tablename__ = "dead_letter_queue"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    task_name = Column(String(100), nullable=False, index=True)
    error_message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)  # transaction_id, amount, external_ref

    status = Column(Enum(DLQStatus), default=DLQStatus.FAILED, nullable=False, index=True)
    retry_count = Column(Integer, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_retry_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<DLQ(id={self.id}, task='{self.task_name}', status='{self.status}')>"
