"""
Payment API Endpoints.

Payers start payments here; the gateway redirects back to /verify.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from edumarket.app.db.session import get_db
from edumarket.app.db.pagination import page_envelope
from edumarket.app.core.dependencies import get_current_user
from edumarket.app.core.exceptions import InsufficientPermissionsError
from edumarket.app.domain.ledger.ledger_store import LedgerStore
from edumarket.app.domain.ledger.settlement_service import SettlementOrchestrator
from edumarket.app.integrations.esewa import get_payment_verifier
from edumarket.app.models.enums import UserRole
from edumarket.app.models.ledger_enums import LedgerStatus, PaymentPurpose
from edumarket.app.schemas.payment import (
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentVerifyResponse,
    PaymentListResponse,
    LedgerEntryResponse,
)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/initiate", response_model=PaymentInitiateResponse)
async def initiate_payment(
    req: PaymentInitiateRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a pending payment and return the gateway form."""
    entry, instructions = await SettlementOrchestrator.initiate(
        db,
        payer_id=current_user["user_id"],
        amount=req.amount,
        purpose=req.purpose,
        purpose_id=req.purpose_id,
        metadata=req.metadata,
        transaction_id=req.transaction_id,
    )
    return {"payment": entry, "payment_instructions": instructions}


@router.get("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    oid: str = Query(..., description="Transaction ID"),
    amt: str = Query(..., description="Amount reported by the gateway"),
    refId: str = Query(..., description="Gateway reference"),
    db: AsyncSession = Depends(get_db),
    verifier=Depends(get_payment_verifier)
):
    """
    Gateway success callback.

    Unauthenticated: the verifier, not the caller, decides the outcome.
    """
    entry, breakdown = await SettlementOrchestrator.confirm_via_external_verifier(
        db, oid, verifier, external_ref=refId, external_amount=amt
    )
    if entry.status == LedgerStatus.SUCCESS:
        message = "Payment verified successfully"
    else:
        message = "Payment verification failed"
    return {
        "message": message,
        "payment": entry,
        "breakdown": asdict(breakdown) if breakdown else None,
    }


@router.get("/history", response_model=PaymentListResponse)
async def payment_history(
    status: Optional[LedgerStatus] = Query(None),
    purpose: Optional[PaymentPurpose] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Current user's payments, newest first."""
    items, total = await LedgerStore.list_entries(
        db, payer_id=current_user["user_id"], status=status, purpose=purpose, page=page, limit=limit
    )
    return page_envelope(items, total, page, limit)


@router.get("/{transaction_id}", response_model=LedgerEntryResponse)
async def get_payment(
    transaction_id: str = Path(...),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    entry = await LedgerStore.get_by_transaction_id(db, transaction_id)
    if entry.payer_id != current_user["user_id"] and current_user.get("role") != UserRole.ADMIN.value:
        raise InsufficientPermissionsError("You can only view your own payments")
    return entry
