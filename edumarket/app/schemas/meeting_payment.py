"""
Session Payment Schemas (direct-transfer handshake).
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional
from edumarket.app.models.ledger_enums import MeetingStatus, SessionPaymentStatus
from edumarket.app.schemas.payment import LedgerEntryResponse, CommissionBreakdownResponse


class PaymentProofRequest(BaseModel):
    proof_reference: str = Field(..., description="Transfer reference shown by the payer's bank or wallet")


class MeetingPaymentResponse(BaseModel):
    """Payment view of a meeting."""
    id: int
    student_id: int
    teacher_id: int
    subject: str
    status: MeetingStatus
    price: Decimal
    is_paid: bool
    payment_status: SessionPaymentStatus
    payment_proof: Optional[str]
    payment_confirmed_by: Optional[int]
    payment_confirmed_at: Optional[datetime]
    payment_id: Optional[int]

    class Config:
        from_attributes = True


class PaymentConfirmResponse(BaseModel):
    meeting: MeetingPaymentResponse
    payment: LedgerEntryResponse
    breakdown: Optional[CommissionBreakdownResponse] = None
