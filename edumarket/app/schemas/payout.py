"""
Payout Request Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from edumarket.app.models.ledger_enums import PayoutMethod, PayoutStatus


class PayoutCreateRequest(BaseModel):
    amount: Decimal
    request_note: Optional[str] = Field(None, max_length=500)


class PayoutActionRequest(BaseModel):
    """Admin action on a payout request."""
    admin_note: Optional[str] = Field(None, max_length=500)
    transaction_reference: Optional[str] = Field(None, max_length=128, description="Used on complete")


class PayoutResponse(BaseModel):
    """Schema for displaying a payout request."""
    id: int
    teacher_id: int
    amount: Decimal
    method: PayoutMethod
    payout_details: Optional[Dict[str, Any]]
    status: PayoutStatus
    request_note: Optional[str]
    admin_note: Optional[str]
    processed_by: Optional[int]
    processed_at: Optional[datetime]
    transaction_reference: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PayoutListResponse(BaseModel):
    items: List[PayoutResponse]
    total: int
    page: int
    total_pages: int
