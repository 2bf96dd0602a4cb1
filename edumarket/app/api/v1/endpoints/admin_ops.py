"""
Admin Operations API Endpoints.

Dead letter queue of payment verifications the gateway could not answer.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from edumarket.app.db.session import get_db
from edumarket.app.db.pagination import paginate, page_envelope
from edumarket.app.models.dlq import DeadLetterQueue, DLQStatus
from edumarket.app.core.guards import require_admin
from edumarket.app.domain.ledger.settlement_service import SettlementOrchestrator
from edumarket.app.integrations.esewa import get_payment_verifier
from edumarket.app.schemas.ops import DLQItemResponse, DLQListResponse

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.get("/dlq", response_model=DLQListResponse)
async def list_dlq_items(
    status: Optional[DLQStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    query = select(DeadLetterQueue).order_by(desc(DeadLetterQueue.created_at), desc(DeadLetterQueue.id))
    if status is not None:
        query = query.where(DeadLetterQueue.status == status)
    items, total = await paginate(db, query, page, limit)
    return page_envelope(items, total, page, limit)


@router.post("/dlq/{dlq_id}/retry", response_model=DLQItemResponse)
async def retry_dlq_item(
    dlq_id: int = Path(..., description="DLQ Item ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    verifier=Depends(get_payment_verifier)
):
    """
    Ask the verifier again for a payment left pending.

    Answers 503 (and leaves the item FAILED) if it is still unreachable.
    An item whose payment was already resolved comes back ARCHIVED.
    """
    return await SettlementOrchestrator.retry_deferred(db, dlq_id, verifier)
