"""
Payment Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from edumarket.app.models.ledger_enums import LedgerStatus, PaymentPurpose, RefNamespace


class PaymentInitiateRequest(BaseModel):
    """Schema for starting a payment. Amount and purpose are checked by the ledger."""
    amount: Decimal
    purpose: str = Field(..., description="course, meeting, consultation, subscription, donation or other")
    purpose_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    transaction_id: Optional[str] = Field(None, max_length=64, description="Client-supplied idempotency key")


class LedgerEntryResponse(BaseModel):
    """Schema for displaying a ledger entry."""
    id: int
    transaction_id: str
    payer_id: int
    amount: Decimal
    purpose: PaymentPurpose
    purpose_id: Optional[int]
    status: LedgerStatus
    payment_method: str
    external_ref: Optional[str]
    external_ref_namespace: Optional[RefNamespace]
    meta_data: Optional[Dict[str, Any]]
    created_at: datetime
    resolved_at: Optional[datetime]

    class Config:
        from_attributes = True


class PaymentInstructions(BaseModel):
    payment_url: str
    fields: Dict[str, str]


class PaymentInitiateResponse(BaseModel):
    payment: LedgerEntryResponse
    payment_instructions: PaymentInstructions


class CommissionBreakdownResponse(BaseModel):
    gross_amount: Decimal
    commission: Decimal
    teacher_share: Decimal
    commission_rate_used: Decimal


class PaymentVerifyResponse(BaseModel):
    """Outcome of a gateway callback."""
    message: str
    payment: LedgerEntryResponse
    breakdown: Optional[CommissionBreakdownResponse] = None


class PaymentListResponse(BaseModel):
    items: List[LedgerEntryResponse]
    total: int
    page: int
    total_pages: int


class StatusStatistic(BaseModel):
    status: LedgerStatus
    count: int
    total_amount: Decimal


class AdminPaymentListResponse(PaymentListResponse):
    statistics: List[StatusStatistic]


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
