"""
Notification Database Model.

Payment and payout events surfaced to students and teachers in the app.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.sql import func
from edumarket.app.db.session import Base
import enum


class NotificationType(str, enum.Enum):
    INFO = "INFO"
    PAYMENT_UPDATE = "PAYMENT_UPDATE"
    PAYOUT_UPDATE = "PAYOUT_UPDATE"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    type = Column(Enum(NotificationType), default=NotificationType.INFO, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)  # action plus meeting / payout ids

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, type='{self.type}')>"
