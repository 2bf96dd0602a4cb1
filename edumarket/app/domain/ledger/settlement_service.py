"""
Settlement Orchestrator (Domain Logic).

Moves a payment from "initiated" to "teacher credited and target marked
paid". The ledger status change, the teacher credit and the target update
are written in one database transaction; a settlement that is retried
after a crash re-applies each step idempotently.

Flow (gateway):
1. Lock the transaction id (Redis, short TTL)
2. Reject callback amounts that differ from the recorded amount
3. Ask the verifier (circuit breaker, bounded timeout)
4. Success -> settle; definite failure -> FAILED; no answer -> stay PENDING + DLQ
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from edumarket.app.core.exceptions import (
    ExternalVerifierUnavailableError,
    IllegalTransitionError,
    InsufficientPermissionsError,
    InvalidAmountError,
    LedgerValidationError,
    PaymentAmountMismatchError,
    ProofReferenceReusedError,
    ResourceNotFoundError,
)
from edumarket.app.core.reliability import CircuitOpenError, gateway_circuit_breaker
from edumarket.app.domain.ledger.balance_service import BalanceService
from edumarket.app.domain.ledger.commission import CommissionBreakdown, to_money
from edumarket.app.domain.ledger.ledger_store import LedgerStore, coerce_purpose
from edumarket.app.integrations.esewa import VerifierUnavailableError, build_payment_instructions
from edumarket.app.models.course import Course
from edumarket.app.models.dlq import DeadLetterQueue, DLQStatus
from edumarket.app.models.ledger_entry import LedgerEntry
from edumarket.app.models.ledger_enums import (
    LedgerStatus,
    MeetingStatus,
    PaymentPurpose,
    RefNamespace,
    SessionPaymentStatus,
)
from edumarket.app.models.meeting import Meeting
from edumarket.app.services.audit import log_event, AuditAction
from edumarket.app.services.notification_service import NotificationService
from edumarket.app.services.settlement_lock import settlement_lock

logger = logging.getLogger(__name__)

VERIFY_TASK_NAME = "verify_payment"

# Errors that mean "no answer" rather than "payment failed"
TRANSIENT_VERIFIER_ERRORS = (httpx.HTTPError, VerifierUnavailableError, CircuitOpenError)


async def load_meeting(db: AsyncSession, meeting_id: int) -> Meeting:
    result = await db.execute(
        select(Meeting).where(Meeting.id == meeting_id).execution_options(populate_existing=True)
    )
    meeting = result.scalar_one_or_none()
    if meeting is None:
        raise ResourceNotFoundError("Meeting", meeting_id)
    return meeting


async def load_course(db: AsyncSession, course_id: int) -> Course:
    result = await db.execute(select(Course).where(Course.id == course_id))
    course = result.scalar_one_or_none()
    if course is None:
        raise ResourceNotFoundError("Course", course_id)
    return course


class SettlementOrchestrator:

    @staticmethod
    async def initiate(
        db: AsyncSession,
        payer_id: int,
        amount: Any,
        purpose: Any,
        purpose_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        transaction_id: Optional[str] = None
    ) -> Tuple[LedgerEntry, Dict[str, Any]]:
        """
        Create a pending ledger entry and return the gateway payment form.

        Course payments need an existing course. Meeting payments need a
        completed, unpaid meeting of the payer, for exactly its price.
        """
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError(amount)
        purpose = coerce_purpose(purpose)

        if purpose in (PaymentPurpose.COURSE, PaymentPurpose.MEETING) and purpose_id is None:
            raise LedgerValidationError(
                f"purpose_id is required for {purpose.value} payments",
                error_code="ERR_VALIDATION_009",
                details={"purpose": purpose.value}
            )

        if purpose == PaymentPurpose.COURSE:
            await load_course(db, purpose_id)

        if purpose == PaymentPurpose.MEETING:
            meeting = await load_meeting(db, purpose_id)
            if meeting.student_id != payer_id:
                raise InsufficientPermissionsError("You can only pay for your own meetings")
            if meeting.status != MeetingStatus.COMPLETED:
                raise LedgerValidationError(
                    "Can only pay for completed meetings",
                    error_code="ERR_VALIDATION_010",
                    details={"meeting_id": meeting.id, "status": meeting.status.value}
                )
            if meeting.is_paid:
                raise LedgerValidationError(
                    "Meeting has already been paid for",
                    error_code="ERR_VALIDATION_011",
                    details={"meeting_id": meeting.id}
                )
            if meeting.price != amount:
                raise LedgerValidationError(
                    "Amount must equal the meeting price",
                    error_code="ERR_VALIDATION_012",
                    details={"meeting_id": meeting.id, "price": str(meeting.price), "amount": str(amount)}
                )

        entry = await LedgerStore.create_pending_entry(
            db,
            payer_id=payer_id,
            amount=amount,
            purpose=purpose,
            purpose_id=purpose_id,
            metadata=metadata,
            transaction_id=transaction_id,
        )
        return entry, build_payment_instructions(entry.transaction_id, entry.amount)

    @staticmethod
    async def resolve_payee(db: AsyncSession, entry: LedgerEntry) -> Optional[int]:
        """Teacher credited for an entry, or None when nobody is."""
        if entry.purpose == PaymentPurpose.MEETING and entry.purpose_id is not None:
            return (await load_meeting(db, entry.purpose_id)).teacher_id
        if entry.purpose == PaymentPurpose.COURSE and entry.purpose_id is not None:
            return (await load_course(db, entry.purpose_id)).uploaded_by_id
        teacher_id = (entry.meta_data or {}).get("teacher_id")
        return int(teacher_id) if teacher_id is not None else None

    @staticmethod
    async def confirm_via_external_verifier(
        db: AsyncSession,
        transaction_id: str,
        verifier,
        external_ref: str,
        external_amount: Any = None,
        defer_to_dlq: bool = True
    ) -> Tuple[LedgerEntry, Optional[CommissionBreakdown]]:
        """
        Settle a gateway payment after confirming it with the verifier.

        Returns:
            (entry, breakdown); breakdown is None when the payment failed or
            credits nobody

        Raises:
            SettlementInProgressError: another worker is settling this payment
            PaymentAmountMismatchError: callback amount differs from the entry
            ExternalVerifierUnavailableError: no answer; entry left PENDING
        """
        async with settlement_lock(transaction_id):
            entry = await LedgerStore.get_by_transaction_id(db, transaction_id)

            if external_amount is not None and to_money(external_amount) != entry.amount:
                logger.warning(
                    "Callback amount mismatch",
                    extra={"transaction_id": transaction_id, "expected": str(entry.amount),
                           "received": str(external_amount)}
                )
                raise PaymentAmountMismatchError(transaction_id, entry.amount, external_amount)

            if entry.status == LedgerStatus.SUCCESS:
                # Resume: finish any step a crashed attempt left undone
                return await SettlementOrchestrator._settle(
                    db, transaction_id, RefNamespace.GATEWAY, external_ref=external_ref
                )
            if entry.status == LedgerStatus.FAILED:
                return entry, None
            if entry.status != LedgerStatus.PENDING:
                raise IllegalTransitionError("Ledger entry", entry.status, LedgerStatus.SUCCESS)

            try:
                result = await gateway_circuit_breaker.call(
                    verifier.verify, transaction_id, entry.amount, external_ref
                )
            except TRANSIENT_VERIFIER_ERRORS as exc:
                if defer_to_dlq:
                    await SettlementOrchestrator._defer(db, entry, external_ref, exc)
                logger.warning(
                    "Payment verifier unavailable, payment left pending",
                    extra={"transaction_id": transaction_id, "error_type": type(exc).__name__}
                )
                raise ExternalVerifierUnavailableError(transaction_id, str(exc) or type(exc).__name__)

            gateway_response = {
                "verification_response": result.raw_response,
                "verified_at": datetime.now(timezone.utc).isoformat(),
                **result.details,
            }

            if not result.success:
                entry, _ = await LedgerStore.mark_outcome(
                    db, transaction_id, LedgerStatus.FAILED,
                    gateway_response=gateway_response, commit=False
                )
                await log_event(
                    db,
                    action=AuditAction.PAYMENT_FAILED,
                    entity_type="ledger_entry",
                    entity_id=transaction_id,
                    metadata={"external_ref": external_ref}
                )
                await db.commit()
                return entry, None

            return await SettlementOrchestrator._settle(
                db, transaction_id, RefNamespace.GATEWAY,
                external_ref=external_ref,
                gateway_response=gateway_response,
            )

    @staticmethod
    async def _defer(db: AsyncSession, entry: LedgerEntry, external_ref: str, exc: Exception) -> None:
        db.add(DeadLetterQueue(
            task_name=VERIFY_TASK_NAME,
            error_message=str(exc) or type(exc).__name__,
            payload={
                "transaction_id": entry.transaction_id,
                "amount": str(entry.amount),
                "external_ref": external_ref,
            },
            status=DLQStatus.FAILED,
        ))
        await log_event(
            db,
            action=AuditAction.PAYMENT_VERIFICATION_DEFERRED,
            entity_type="ledger_entry",
            entity_id=entry.transaction_id,
            metadata={"error_type": type(exc).__name__}
        )
        await db.commit()

    @staticmethod
    async def _settle(
        db: AsyncSession,
        transaction_id: str,
        namespace: RefNamespace,
        external_ref: Optional[str] = None,
        gateway_response: Optional[Dict[str, Any]] = None,
        confirmer_id: Optional[int] = None
    ) -> Tuple[LedgerEntry, Optional[CommissionBreakdown]]:
        entry = await LedgerStore.get_by_transaction_id(db, transaction_id)
        teacher_id = await SettlementOrchestrator.resolve_payee(db, entry)
        if teacher_id is not None:
            await BalanceService.get_or_create(db, teacher_id)

        try:
            entry, changed = await LedgerStore.mark_outcome(
                db, transaction_id, LedgerStatus.SUCCESS,
                external_ref=external_ref,
                namespace=namespace,
                gateway_response=gateway_response,
                commit=False
            )

            breakdown = None
            if teacher_id is not None:
                breakdown, _ = await BalanceService.credit(
                    db, teacher_id, entry.amount, entry.id, commit=False
                )

            if entry.purpose == PaymentPurpose.MEETING and entry.purpose_id is not None:
                await SettlementOrchestrator._mark_meeting_paid(db, entry, confirmer_id)

            if changed:
                await log_event(
                    db,
                    action=(AuditAction.PAYMENT_CONFIRMED if confirmer_id is not None
                            else AuditAction.PAYMENT_VERIFIED),
                    actor_id=confirmer_id,
                    entity_type="ledger_entry",
                    entity_id=transaction_id,
                    metadata={
                        "external_ref": entry.external_ref,
                        "teacher_id": teacher_id,
                        "breakdown": breakdown.as_dict() if breakdown else None,
                    }
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Payment settled",
            extra={
                "transaction_id": transaction_id,
                "teacher_id": teacher_id,
                "resumed": not changed,
            }
        )
        return await LedgerStore.get_by_transaction_id(db, transaction_id), breakdown

    @staticmethod
    async def _mark_meeting_paid(db: AsyncSession, entry: LedgerEntry, confirmer_id: Optional[int]) -> None:
        values = {
            "is_paid": True,
            "payment_status": SessionPaymentStatus.COMPLETED,
            "payment_id": entry.id,
        }
        if confirmer_id is not None:
            values["payment_confirmed_by"] = confirmer_id
            values["payment_confirmed_at"] = datetime.now(timezone.utc)
            guard = Meeting.payment_status == SessionPaymentStatus.PAID_AWAITING_CONFIRMATION
        else:
            guard = Meeting.is_paid.is_(False)

        result = await db.execute(
            update(Meeting)
            .where(Meeting.id == entry.purpose_id, guard)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return

        meeting = await load_meeting(db, entry.purpose_id)
        if meeting.payment_id == entry.id:
            return
        if confirmer_id is not None:
            raise IllegalTransitionError("Meeting payment", meeting.payment_status, SessionPaymentStatus.COMPLETED)
        # TODO: route double payments for one meeting to the refund queue
        logger.warning(
            "Meeting already paid by another payment",
            extra={"meeting_id": meeting.id, "payment_id": meeting.payment_id,
                   "transaction_id": entry.transaction_id}
        )

    @staticmethod
    async def confirm_via_manual_handshake(
        db: AsyncSession,
        meeting_id: int,
        confirmer_id: int
    ) -> Tuple[LedgerEntry, Optional[CommissionBreakdown]]:
        """
        Teacher confirms a direct transfer the student reported.

        The ledger entry is keyed by the proof reference, so confirming twice
        (or two teachers racing) produces one entry and one credit.
        """
        meeting = await load_meeting(db, meeting_id)
        if meeting.teacher_id != confirmer_id:
            raise InsufficientPermissionsError("Only the meeting's teacher can confirm payment")
        if meeting.payment_status != SessionPaymentStatus.PAID_AWAITING_CONFIRMATION:
            raise IllegalTransitionError(
                "Meeting payment", meeting.payment_status, SessionPaymentStatus.COMPLETED
            )
        if meeting.price <= 0:
            raise InvalidAmountError(meeting.price)

        proof = meeting.payment_proof
        student_id = meeting.student_id
        price = meeting.price

        async with settlement_lock(f"meeting:{meeting_id}"):
            entry = await LedgerStore.find_or_create_for_external_ref(
                db,
                RefNamespace.DIRECT_TRANSFER,
                proof,
                factory=lambda: LedgerEntry(
                    payer_id=student_id,
                    amount=price,
                    purpose=PaymentPurpose.MEETING,
                    purpose_id=meeting_id,
                    status=LedgerStatus.PENDING,
                    payment_method="direct_transfer",
                    meta_data={"proof_reference": proof},
                ),
            )
            if entry.purpose != PaymentPurpose.MEETING or entry.purpose_id != meeting_id:
                raise ProofReferenceReusedError(proof)

            entry, breakdown = await SettlementOrchestrator._settle(
                db, entry.transaction_id, RefNamespace.DIRECT_TRANSFER, confirmer_id=confirmer_id
            )

        meeting = await load_meeting(db, meeting_id)
        await NotificationService.notify_payment_confirmed(db, student_id, meeting, entry.transaction_id)
        await db.commit()
        return entry, breakdown

    @staticmethod
    async def refund(
        db: AsyncSession,
        transaction_id: str,
        admin_id: int,
        reason: Optional[str] = None
    ) -> LedgerEntry:
        """
        Mark a settled payment refunded.

        The teacher's credit is left in place; moving the money back is a
        separate manual process.
        """
        entry, changed = await LedgerStore.mark_refunded(db, transaction_id, admin_id, reason, commit=False)
        if not changed:
            return entry

        if entry.purpose == PaymentPurpose.MEETING and entry.purpose_id is not None:
            await db.execute(
                update(Meeting)
                .where(
                    Meeting.id == entry.purpose_id,
                    Meeting.payment_id == entry.id,
                    Meeting.payment_status == SessionPaymentStatus.COMPLETED
                )
                .values(payment_status=SessionPaymentStatus.REFUNDED)
                .execution_options(synchronize_session=False)
            )

        await log_event(
            db,
            action=AuditAction.PAYMENT_REFUNDED,
            actor_id=admin_id,
            entity_type="ledger_entry",
            entity_id=transaction_id,
            metadata={"reason": reason, "amount": str(entry.amount)}
        )
        await db.commit()

        logger.info("Payment refunded", extra={"transaction_id": transaction_id, "admin_id": admin_id})
        return entry

    @staticmethod
    async def retry_deferred(db: AsyncSession, dlq_id: int, verifier) -> DeadLetterQueue:
        """
        Re-run a verification recorded in the dead letter queue.

        The DLQ row ends PROCESSED when the verifier answered (either way),
        ARCHIVED when the payment was resolved some other way meanwhile, and
        FAILED when the retry could not finish.
        """
        item = await SettlementOrchestrator._load_dlq_item(db, dlq_id)
        if item.status in (DLQStatus.PROCESSED, DLQStatus.ARCHIVED):
            return item
        if item.task_name != VERIFY_TASK_NAME:
            raise LedgerValidationError(
                f"Cannot retry task {item.task_name}",
                error_code="ERR_VALIDATION_013",
                details={"dlq_id": dlq_id}
            )

        payload = item.payload or {}
        transaction_id = payload.get("transaction_id")
        entry = await LedgerStore.find_by_transaction_id(db, transaction_id) if transaction_id else None
        if entry is None or entry.status not in (LedgerStatus.PENDING, LedgerStatus.SUCCESS):
            logger.info(
                "Deferred verification no longer needed",
                extra={"dlq_id": dlq_id, "transaction_id": transaction_id,
                       "status": entry.status.value if entry else None}
            )
            return await SettlementOrchestrator._set_dlq_status(db, dlq_id, DLQStatus.ARCHIVED)

        item.status = DLQStatus.RETRYING
        item.retry_count = (item.retry_count or 0) + 1
        item.last_retry_at = datetime.now(timezone.utc)
        await db.commit()

        try:
            await SettlementOrchestrator.confirm_via_external_verifier(
                db,
                transaction_id,
                verifier,
                payload.get("external_ref"),
                defer_to_dlq=False,
            )
        except Exception:
            await db.rollback()
            await SettlementOrchestrator._set_dlq_status(db, dlq_id, DLQStatus.FAILED)
            raise

        return await SettlementOrchestrator._set_dlq_status(db, dlq_id, DLQStatus.PROCESSED)

    @staticmethod
    async def _load_dlq_item(db: AsyncSession, dlq_id: int) -> DeadLetterQueue:
        result = await db.execute(
            select(DeadLetterQueue)
            .where(DeadLetterQueue.id == dlq_id)
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise ResourceNotFoundError("DLQ item", dlq_id)
        return item

    @staticmethod
    async def _set_dlq_status(db: AsyncSession, dlq_id: int, status: DLQStatus) -> DeadLetterQueue:
        # Statement update: the retry may have rolled the session back
        await db.execute(
            update(DeadLetterQueue)
            .where(DeadLetterQueue.id == dlq_id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return await SettlementOrchestrator._load_dlq_item(db, dlq_id)
