"""
Course database model.

Purchase target for course payments; the uploader is the teacher credited.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, String
from sqlalchemy.sql import func
from edumarket.app.db.session import Base, Money


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    price = Column(Money, default=0, nullable=False)
    uploaded_by_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Course(id={self.id}, title='{self.title}')>"
