"""
Direct-Transfer Handshake (Domain Logic).

The student pays the teacher outside the platform and pastes the transfer
reference as proof; the teacher confirms receipt, which settles the payment
exactly like a verified gateway payment.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from edumarket.app.core.exceptions import (
    IllegalTransitionError,
    InsufficientPermissionsError,
    InvalidAmountError,
    LedgerValidationError,
    ProofReferenceReusedError,
)
from edumarket.app.domain.ledger.commission import CommissionBreakdown
from edumarket.app.domain.ledger.ledger_store import LedgerStore
from edumarket.app.domain.ledger.settlement_service import SettlementOrchestrator, load_meeting
from edumarket.app.models.ledger_entry import LedgerEntry
from edumarket.app.models.ledger_enums import PaymentPurpose, RefNamespace, SessionPaymentStatus
from edumarket.app.models.meeting import Meeting
from edumarket.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)

MAX_PROOF_LENGTH = 128


class DirectTransferHandshake:

    @staticmethod
    async def submit_proof(
        db: AsyncSession,
        meeting_id: int,
        payer_id: int,
        proof_reference: str
    ) -> Meeting:
        """
        Record the student's proof of transfer and wait for the teacher.

        Raises:
            LedgerValidationError: blank or oversized proof
            InsufficientPermissionsError: payer is not the meeting's student
            IllegalTransitionError: meeting is not awaiting payment
            ProofReferenceReusedError: proof already settled another payment
        """
        proof = (proof_reference or "").strip()
        if not proof:
            raise LedgerValidationError("Payment proof is required", details={"field": "proof_reference"})
        if len(proof) > MAX_PROOF_LENGTH:
            raise LedgerValidationError(
                f"Payment proof must be at most {MAX_PROOF_LENGTH} characters",
                details={"field": "proof_reference"}
            )

        meeting = await load_meeting(db, meeting_id)
        if meeting.student_id != payer_id:
            raise InsufficientPermissionsError("Only the meeting's student can submit payment proof")
        if meeting.price <= 0:
            raise InvalidAmountError(meeting.price)

        used = await LedgerStore.find_by_external_ref(db, RefNamespace.DIRECT_TRANSFER, proof)
        if used is not None and not (used.purpose == PaymentPurpose.MEETING and used.purpose_id == meeting_id):
            raise ProofReferenceReusedError(proof)

        result = await db.execute(
            update(Meeting)
            .where(Meeting.id == meeting_id, Meeting.payment_status == SessionPaymentStatus.PENDING)
            .values(payment_status=SessionPaymentStatus.PAID_AWAITING_CONFIRMATION, payment_proof=proof)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await load_meeting(db, meeting_id)
            raise IllegalTransitionError(
                "Meeting payment", current.payment_status, SessionPaymentStatus.PAID_AWAITING_CONFIRMATION
            )

        await log_event(
            db,
            action=AuditAction.PAYMENT_PROOF_SUBMITTED,
            actor_id=payer_id,
            entity_type="meeting",
            entity_id=meeting_id,
            metadata={"proof_reference": proof}
        )
        await db.commit()

        logger.info("Payment proof submitted", extra={"meeting_id": meeting_id, "payer_id": payer_id})
        return await load_meeting(db, meeting_id)

    @staticmethod
    async def confirm(
        db: AsyncSession,
        meeting_id: int,
        confirmer_id: int
    ) -> Tuple[LedgerEntry, Optional[CommissionBreakdown]]:
        return await SettlementOrchestrator.confirm_via_manual_handshake(db, meeting_id, confirmer_id)
