"""
Teacher Balance & Payout API Endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from edumarket.app.db.session import get_db
from edumarket.app.db.pagination import page_envelope
from edumarket.app.core.guards import require_teacher
from edumarket.app.domain.ledger.balance_service import BalanceService
from edumarket.app.domain.ledger.payout_service import PayoutService
from edumarket.app.models.ledger_enums import PayoutStatus
from edumarket.app.schemas.balance import (
    BalanceResponse,
    PaymentSettingsUpdate,
    EarningListResponse,
)
from edumarket.app.schemas.payout import (
    PayoutCreateRequest,
    PayoutResponse,
    PayoutListResponse,
)

router = APIRouter(prefix="/teacher", tags=["Teacher - Earnings"])


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    current_user: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db)
):
    return await BalanceService.get_or_create(db, current_user["user_id"])


@router.put("/payment-settings", response_model=BalanceResponse)
async def update_payment_settings(
    req: PaymentSettingsUpdate,
    current_user: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db)
):
    """Set the payout destination (eSewa ID or bank account)."""
    return await BalanceService.update_payout_settings(
        db,
        current_user["user_id"],
        method=req.payout_method,
        esewa_id=req.esewa_id,
        bank_details=req.bank_details.model_dump() if req.bank_details else None,
    )


@router.get("/earnings", response_model=EarningListResponse)
async def earnings_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db)
):
    """Credits applied to the balance, with the commission taken from each."""
    items, total = await BalanceService.list_credits(db, current_user["user_id"], page, limit)
    return page_envelope(items, total, page, limit)


@router.post("/payouts", response_model=PayoutResponse)
async def request_payout(
    req: PayoutCreateRequest,
    current_user: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db)
):
    return await PayoutService.request(db, current_user["user_id"], req.amount, req.request_note)


@router.get("/payouts", response_model=PayoutListResponse)
async def payout_history(
    status: Optional[PayoutStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db)
):
    items, total = await PayoutService.list_payouts(
        db, teacher_id=current_user["user_id"], status=status, page=page, limit=limit
    )
    return page_envelope(items, total, page, limit)


@router.post("/payouts/{payout_id}/cancel", response_model=PayoutResponse)
async def cancel_payout(
    payout_id: int = Path(...),
    current_user: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db)
):
    """Only pending requests can be cancelled."""
    return await PayoutService.cancel(db, payout_id, current_user["user_id"])
