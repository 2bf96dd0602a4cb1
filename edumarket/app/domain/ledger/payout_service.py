"""
Payout Request Queue (Domain Logic).

Teachers request withdrawals from their available balance; admins move the
request through approval to completion. Each status change and its balance
movement commit together.

    PENDING -> APPROVED -> PROCESSING -> COMPLETED
       |          |            |
       +-> CANCELLED (teacher) +-> REJECTED (admin, from any non-terminal)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, desc
from sqlalchemy.ext.asyncio import AsyncSession

from edumarket.app.core.config import settings
from edumarket.app.core.exceptions import (
    BelowMinimumError,
    IllegalTransitionError,
    InsufficientPermissionsError,
    InvalidAmountError,
    PayoutMethodNotSetError,
    ResourceNotFoundError,
)
from edumarket.app.db.pagination import paginate
from edumarket.app.domain.ledger.balance_service import BalanceService, check_conservation
from edumarket.app.domain.ledger.commission import to_money
from edumarket.app.models.ledger_enums import PayoutMethod, PayoutStatus
from edumarket.app.models.payout import PayoutRequest
from edumarket.app.services.audit import log_event, AuditAction
from edumarket.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class PayoutService:

    @staticmethod
    async def get(db: AsyncSession, payout_id: int) -> PayoutRequest:
        result = await db.execute(
            select(PayoutRequest)
            .where(PayoutRequest.id == payout_id)
            .execution_options(populate_existing=True)
        )
        payout = result.scalar_one_or_none()
        if payout is None:
            raise ResourceNotFoundError("Payout request", payout_id)
        return payout

    @staticmethod
    async def request(
        db: AsyncSession,
        teacher_id: int,
        amount: Any,
        note: Optional[str] = None
    ) -> PayoutRequest:
        """
        Reserve `amount` and queue a payout request.

        Raises:
            PayoutMethodNotSetError: no payout destination configured
            BelowMinimumError: amount < settings.min_payout_amount
            InsufficientBalanceError: amount > available balance
        """
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError(amount)

        balance = await BalanceService.find(db, teacher_id)
        if balance is None or balance.payout_method == PayoutMethod.NOT_SET:
            raise PayoutMethodNotSetError()

        if amount < settings.min_payout_amount:
            raise BelowMinimumError(amount, settings.min_payout_amount)

        try:
            balance = await BalanceService.reserve_for_payout(db, teacher_id, amount, commit=False)
            payout = PayoutRequest(
                teacher_id=teacher_id,
                amount=amount,
                method=balance.payout_method,
                payout_details={
                    "esewa_id": balance.esewa_id,
                    "bank_details": balance.bank_details,
                },
                status=PayoutStatus.PENDING,
                request_note=note,
            )
            db.add(payout)
            await db.flush()
            check_conservation(balance)

            await log_event(
                db,
                action=AuditAction.PAYOUT_REQUESTED,
                actor_id=teacher_id,
                entity_type="payout",
                entity_id=payout.id,
                metadata={"amount": str(amount), "method": balance.payout_method.value}
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Payout requested",
            extra={"payout_id": payout.id, "teacher_id": teacher_id, "amount": str(amount)}
        )
        return await PayoutService.get(db, payout.id)

    @staticmethod
    async def _transition(
        db: AsyncSession,
        payout_id: int,
        allowed_from: Sequence[PayoutStatus],
        target: PayoutStatus,
        action: str,
        actor_id: int,
        balance_step=None,
        values: Optional[Dict[str, Any]] = None,
        notify: bool = True
    ) -> PayoutRequest:
        payout = await PayoutService.get(db, payout_id)
        teacher_id = payout.teacher_id
        amount = payout.amount

        try:
            result = await db.execute(
                update(PayoutRequest)
                .where(PayoutRequest.id == payout_id, PayoutRequest.status.in_(allowed_from))
                .values(status=target, **(values or {}))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = await PayoutService.get(db, payout_id)
                raise IllegalTransitionError("Payout request", current.status, target)

            if balance_step is not None:
                balance = await balance_step(db, teacher_id, amount, commit=False)
                check_conservation(balance)

            payout = await PayoutService.get(db, payout_id)
            await log_event(
                db,
                action=action,
                actor_id=actor_id,
                entity_type="payout",
                entity_id=payout_id,
                metadata={"amount": str(amount), "status": target.value}
            )
            if notify:
                await NotificationService.notify_payout_status(db, payout)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Payout status changed",
            extra={"payout_id": payout_id, "teacher_id": teacher_id, "status": target.value}
        )
        return await PayoutService.get(db, payout_id)

    @staticmethod
    def _processed(processor_id: int, note: Optional[str], **extra) -> Dict[str, Any]:
        values = {"processed_by": processor_id, "processed_at": datetime.now(timezone.utc), **extra}
        if note is not None:
            values["admin_note"] = note
        return values

    @staticmethod
    async def cancel(db: AsyncSession, payout_id: int, requester_id: int) -> PayoutRequest:
        """Teacher withdraws a request that no admin has acted on yet."""
        payout = await PayoutService.get(db, payout_id)
        if payout.teacher_id != requester_id:
            raise InsufficientPermissionsError("You can only cancel your own payout requests")
        return await PayoutService._transition(
            db, payout_id,
            allowed_from=(PayoutStatus.PENDING,),
            target=PayoutStatus.CANCELLED,
            action=AuditAction.PAYOUT_CANCELLED,
            actor_id=requester_id,
            balance_step=BalanceService.release_from_payout,
            notify=False,
        )

    @staticmethod
    async def approve(db: AsyncSession, payout_id: int, processor_id: int, note: Optional[str] = None) -> PayoutRequest:
        return await PayoutService._transition(
            db, payout_id,
            allowed_from=(PayoutStatus.PENDING,),
            target=PayoutStatus.APPROVED,
            action=AuditAction.PAYOUT_APPROVED,
            actor_id=processor_id,
            values=PayoutService._processed(processor_id, note),
        )

    @staticmethod
    async def mark_processing(
        db: AsyncSession,
        payout_id: int,
        processor_id: int,
        note: Optional[str] = None
    ) -> PayoutRequest:
        return await PayoutService._transition(
            db, payout_id,
            allowed_from=(PayoutStatus.APPROVED,),
            target=PayoutStatus.PROCESSING,
            action=AuditAction.PAYOUT_PROCESSING,
            actor_id=processor_id,
            values=PayoutService._processed(processor_id, note),
        )

    @staticmethod
    async def reject(db: AsyncSession, payout_id: int, processor_id: int, note: Optional[str] = None) -> PayoutRequest:
        """Refuse a request and return the reserved amount to available."""
        return await PayoutService._transition(
            db, payout_id,
            allowed_from=(PayoutStatus.PENDING, PayoutStatus.APPROVED, PayoutStatus.PROCESSING),
            target=PayoutStatus.REJECTED,
            action=AuditAction.PAYOUT_REJECTED,
            actor_id=processor_id,
            balance_step=BalanceService.release_from_payout,
            values=PayoutService._processed(processor_id, note),
        )

    @staticmethod
    async def complete(
        db: AsyncSession,
        payout_id: int,
        processor_id: int,
        note: Optional[str] = None,
        transaction_reference: Optional[str] = None
    ) -> PayoutRequest:
        """Record the money as sent; the reserved amount becomes withdrawn."""
        extra = {}
        if transaction_reference:
            extra["transaction_reference"] = transaction_reference
        return await PayoutService._transition(
            db, payout_id,
            allowed_from=(PayoutStatus.APPROVED, PayoutStatus.PROCESSING),
            target=PayoutStatus.COMPLETED,
            action=AuditAction.PAYOUT_COMPLETED,
            actor_id=processor_id,
            balance_step=BalanceService.finalize_payout,
            values=PayoutService._processed(processor_id, note, **extra),
        )

    @staticmethod
    async def list_payouts(
        db: AsyncSession,
        teacher_id: Optional[int] = None,
        status: Optional[PayoutStatus] = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[PayoutRequest], int]:
        query = select(PayoutRequest).order_by(desc(PayoutRequest.created_at), desc(PayoutRequest.id))
        if teacher_id is not None:
            query = query.where(PayoutRequest.teacher_id == teacher_id)
        if status is not None:
            query = query.where(PayoutRequest.status == status)
        return await paginate(db, query, page, limit)
