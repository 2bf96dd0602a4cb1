"""
Admin Operations Schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List, Dict, Any
from edumarket.app.models.dlq import DLQStatus


class DLQItemResponse(BaseModel):
    id: int
    task_name: str
    error_message: str
    payload: Optional[Dict[str, Any]]
    status: DLQStatus
    retry_count: int
    created_at: datetime
    last_retry_at: Optional[datetime]

    class Config:
        from_attributes = True


class DLQListResponse(BaseModel):
    items: List[DLQItemResponse]
    total: int
    page: int
    total_pages: int
