"""
Admin Payment & Payout API Endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from edumarket.app.db.session import get_db
from edumarket.app.db.pagination import page_envelope
from edumarket.app.core.guards import require_admin
from edumarket.app.domain.ledger.ledger_store import LedgerStore
from edumarket.app.domain.ledger.payout_service import PayoutService
from edumarket.app.domain.ledger.settlement_service import SettlementOrchestrator
from edumarket.app.models.ledger_enums import LedgerStatus, PaymentPurpose, PayoutStatus
from edumarket.app.schemas.payment import AdminPaymentListResponse, LedgerEntryResponse, RefundRequest
from edumarket.app.schemas.payout import PayoutActionRequest, PayoutListResponse, PayoutResponse

router = APIRouter(prefix="/admin", tags=["Admin - Payments"])


@router.get("/payments", response_model=AdminPaymentListResponse)
async def list_all_payments(
    status: Optional[LedgerStatus] = Query(None),
    purpose: Optional[PaymentPurpose] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """All payments with per-status counts and totals."""
    items, total = await LedgerStore.list_entries(db, status=status, purpose=purpose, page=page, limit=limit)
    statistics = await LedgerStore.status_statistics(db, status=status, purpose=purpose)
    return {**page_envelope(items, total, page, limit), "statistics": statistics}


@router.post("/payments/{transaction_id}/refund", response_model=LedgerEntryResponse)
async def refund_payment(
    transaction_id: str = Path(...),
    req: Optional[RefundRequest] = None,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    req = req or RefundRequest()
    return await SettlementOrchestrator.refund(db, transaction_id, current_user["user_id"], req.reason)


@router.get("/payouts", response_model=PayoutListResponse)
async def list_all_payouts(
    status: Optional[PayoutStatus] = Query(None),
    teacher_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    items, total = await PayoutService.list_payouts(
        db, teacher_id=teacher_id, status=status, page=page, limit=limit
    )
    return page_envelope(items, total, page, limit)


@router.post("/payouts/{payout_id}/approve", response_model=PayoutResponse)
async def approve_payout(
    payout_id: int = Path(...),
    req: Optional[PayoutActionRequest] = None,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    req = req or PayoutActionRequest()
    return await PayoutService.approve(db, payout_id, current_user["user_id"], req.admin_note)


@router.post("/payouts/{payout_id}/process", response_model=PayoutResponse)
async def process_payout(
    payout_id: int = Path(...),
    req: Optional[PayoutActionRequest] = None,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    req = req or PayoutActionRequest()
    return await PayoutService.mark_processing(db, payout_id, current_user["user_id"], req.admin_note)


@router.post("/payouts/{payout_id}/reject", response_model=PayoutResponse)
async def reject_payout(
    payout_id: int = Path(...),
    req: Optional[PayoutActionRequest] = None,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Reserved funds go back to the teacher's available balance."""
    req = req or PayoutActionRequest()
    return await PayoutService.reject(db, payout_id, current_user["user_id"], req.admin_note)


@router.post("/payouts/{payout_id}/complete", response_model=PayoutResponse)
async def complete_payout(
    payout_id: int = Path(...),
    req: Optional[PayoutActionRequest] = None,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    req = req or PayoutActionRequest()
    return await PayoutService.complete(
        db, payout_id, current_user["user_id"], req.admin_note, req.transaction_reference
    )
