"""
Session Payment API Endpoints (direct-transfer handshake).
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from edumarket.app.db.session import get_db
from edumarket.app.core.guards import require_student, require_teacher
from edumarket.app.domain.ledger.direct_transfer import DirectTransferHandshake
from edumarket.app.domain.ledger.settlement_service import load_meeting
from edumarket.app.schemas.meeting_payment import (
    PaymentProofRequest,
    MeetingPaymentResponse,
    PaymentConfirmResponse,
)

router = APIRouter(prefix="/meetings", tags=["Meeting Payments"])


@router.post("/{meeting_id}/payment-proof", response_model=MeetingPaymentResponse)
async def submit_payment_proof(
    req: PaymentProofRequest,
    meeting_id: int = Path(...),
    current_user: dict = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """Student reports an off-platform transfer."""
    return await DirectTransferHandshake.submit_proof(
        db, meeting_id, current_user["user_id"], req.proof_reference
    )


@router.post("/{meeting_id}/confirm-payment", response_model=PaymentConfirmResponse)
async def confirm_payment(
    meeting_id: int = Path(...),
    current_user: dict = Depends(require_teacher),
    db: AsyncSession = Depends(get_db)
):
    """Teacher confirms receipt; the payment is settled and credited."""
    entry, breakdown = await DirectTransferHandshake.confirm(db, meeting_id, current_user["user_id"])
    meeting = await load_meeting(db, meeting_id)
    return {
        "meeting": meeting,
        "payment": entry,
        "breakdown": asdict(breakdown) if breakdown else None,
    }
