"""
Teacher Balance Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from edumarket.app.models.ledger_enums import PayoutMethod


class BankDetails(BaseModel):
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    bank_name: Optional[str] = None
    branch_name: Optional[str] = None


class PaymentSettingsUpdate(BaseModel):
    """Payout destination. Required fields depend on the method."""
    payout_method: str = Field(..., description="esewa or bank")
    esewa_id: Optional[str] = Field(None, max_length=100)
    bank_details: Optional[BankDetails] = None


class BalanceResponse(BaseModel):
    """Schema for displaying a teacher's balance."""
    teacher_id: int
    total_earnings: Decimal
    available_balance: Decimal
    pending_balance: Decimal
    withdrawn_amount: Decimal
    commission_rate: Decimal
    payout_method: PayoutMethod
    esewa_id: Optional[str]
    bank_details: Optional[Dict[str, Any]]
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EarningCreditResponse(BaseModel):
    id: int
    ledger_entry_id: int
    gross_amount: Decimal
    commission: Decimal
    teacher_share: Decimal
    commission_rate_used: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class EarningListResponse(BaseModel):
    items: List[EarningCreditResponse]
    total: int
    page: int
    total_pages: int
