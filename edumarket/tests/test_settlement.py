"""
Settlement Orchestrator Tests (gateway flow).
"""

import httpx
import pytest
from decimal import Decimal
from sqlalchemy import select

from conftest import FakeVerifier, make_course, make_meeting
from edumarket.app.core.exceptions import (
    ExternalVerifierUnavailableError,
    InsufficientPermissionsError,
    LedgerValidationError,
    PaymentAmountMismatchError,
    ResourceNotFoundError,
    SettlementInProgressError,
)
from edumarket.app.domain.ledger.balance_service import BalanceService
from edumarket.app.domain.ledger.ledger_store import LedgerStore
from edumarket.app.domain.ledger.settlement_service import SettlementOrchestrator, load_meeting
from edumarket.app.integrations.esewa import VerificationResult
from edumarket.app.models.dlq import DeadLetterQueue, DLQStatus
from edumarket.app.models.ledger_enums import (
    LedgerStatus,
    MeetingStatus,
    SessionPaymentStatus,
)
from edumarket.app.services.audit import get_audit_trail, AuditAction


async def _initiate_meeting_payment(db, student_id, teacher_id, price=Decimal("1000.00")):
    meeting_id = await make_meeting(db, student_id, teacher_id, price=price)
    entry, instructions = await SettlementOrchestrator.initiate(
        db, student_id, price, "meeting", purpose_id=meeting_id
    )
    return meeting_id, entry.transaction_id, instructions


@pytest.mark.asyncio
async def test_initiate_returns_payment_instructions(db_session, student_id, teacher_id):
    _, tid, instructions = await _initiate_meeting_payment(db_session, student_id, teacher_id)
    assert instructions["fields"]["pid"] == tid
    assert instructions["fields"]["tAmt"] == "1000.00"
    assert instructions["fields"]["scd"] == "EPAYTEST"
    assert tid in instructions["fields"]["su"]


@pytest.mark.asyncio
async def test_initiate_meeting_preconditions(db_session, student_id, teacher_id):
    scheduled = await make_meeting(db_session, student_id, teacher_id, status=MeetingStatus.SCHEDULED)
    with pytest.raises(LedgerValidationError):
        await SettlementOrchestrator.initiate(db_session, student_id, "1000", "meeting", purpose_id=scheduled)

    completed = await make_meeting(db_session, student_id, teacher_id)
    with pytest.raises(LedgerValidationError):
        await SettlementOrchestrator.initiate(db_session, student_id, "999", "meeting", purpose_id=completed)
    with pytest.raises(InsufficientPermissionsError):
        await SettlementOrchestrator.initiate(db_session, teacher_id, "1000", "meeting", purpose_id=completed)
    with pytest.raises(ResourceNotFoundError):
        await SettlementOrchestrator.initiate(db_session, student_id, "1000", "meeting", purpose_id=9999)
    with pytest.raises(ResourceNotFoundError):
        await SettlementOrchestrator.initiate(db_session, student_id, "500", "course", purpose_id=9999)


@pytest.mark.asyncio
async def test_gateway_success_settles_everything(db_session, student_id, teacher_id):
    meeting_id, tid, _ = await _initiate_meeting_payment(db_session, student_id, teacher_id)
    verifier = FakeVerifier()

    entry, breakdown = await SettlementOrchestrator.confirm_via_external_verifier(
        db_session, tid, verifier, external_ref="ESEWA-REF-1", external_amount="1000.0"
    )

    assert entry.status == LedgerStatus.SUCCESS
    assert entry.external_ref == "ESEWA-REF-1"
    assert breakdown.commission == Decimal("200.00")
    assert breakdown.teacher_share == Decimal("800.00")

    balance = await BalanceService.find(db_session, teacher_id)
    assert balance.available_balance == Decimal("800.00")

    meeting = await load_meeting(db_session, meeting_id)
    assert meeting.is_paid
    assert meeting.payment_status == SessionPaymentStatus.COMPLETED
    assert meeting.payment_id == entry.id

    trail = await get_audit_trail(db_session, entity_type="ledger_entry", entity_id=tid)
    assert AuditAction.PAYMENT_VERIFIED in [log.action for log in trail]


@pytest.mark.asyncio
async def test_course_payment_credits_uploader(db_session, student_id, teacher_id):
    course_id = await make_course(db_session, teacher_id, price=Decimal("500.00"))
    entry, _ = await SettlementOrchestrator.initiate(db_session, student_id, "500", "course", purpose_id=course_id)

    _, breakdown = await SettlementOrchestrator.confirm_via_external_verifier(
        db_session, entry.transaction_id, FakeVerifier(), external_ref="ESEWA-C-1"
    )
    assert breakdown.teacher_share == Decimal("400.00")
    balance = await BalanceService.find(db_session, teacher_id)
    assert balance.total_earnings == Decimal("400.00")


@pytest.mark.asyncio
async def test_donation_without_teacher_credits_nobody(db_session, student_id):
    entry, _ = await SettlementOrchestrator.initiate(db_session, student_id, "50", "donation")
    settled, breakdown = await SettlementOrchestrator.confirm_via_external_verifier(
        db_session, entry.transaction_id, FakeVerifier(), external_ref="ESEWA-D-1"
    )
    assert settled.status == LedgerStatus.SUCCESS
    assert breakdown is None


@pytest.mark.asyncio
async def test_verifier_failure_leaves_target_untouched(db_session, student_id, teacher_id):
    meeting_id, tid, _ = await _initiate_meeting_payment(db_session, student_id, teacher_id)
    verifier = FakeVerifier()
    verifier.result = VerificationResult(success=False, raw_response="<response_code>failure</response_code>")

    entry, breakdown = await SettlementOrchestrator.confirm_via_external_verifier(
        db_session, tid, verifier, external_ref="ESEWA-REF-2"
    )

    assert entry.status == LedgerStatus.FAILED
    assert breakdown is None
    assert await BalanceService.find(db_session, teacher_id) is None
    meeting = await load_meeting(db_session, meeting_id)
    assert not meeting.is_paid
    assert meeting.payment_status == SessionPaymentStatus.PENDING


@pytest.mark.asyncio
async def test_repeated_callback_on_failed_payment_is_a_no_op(db_session, student_id, teacher_id):
    _, tid, _ = await _initiate_meeting_payment(db_session, student_id, teacher_id)
    verifier = FakeVerifier()
    verifier.result = VerificationResult(success=False, raw_response="<response_code>failure</response_code>")
    await SettlementOrchestrator.confirm_via_external_verifier(db_session, tid, verifier, "ESEWA-REF-F")

    entry, breakdown = await SettlementOrchestrator.confirm_via_external_verifier(
        db_session, tid, verifier, "ESEWA-REF-F"
    )

    assert entry.status == LedgerStatus.FAILED
    assert breakdown is None
    assert len(verifier.calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    httpx.ConnectTimeout("timed out"),
    httpx.ConnectError("connection refused"),
])
async def test_verifier_unavailable_keeps_entry_pending(db_session, student_id, teacher_id, error):
    meeting_id, tid, _ = await _initiate_meeting_payment(db_session, student_id, teacher_id)
    verifier = FakeVerifier()
    verifier.error = error

    with pytest.raises(ExternalVerifierUnavailableError):
        await SettlementOrchestrator.confirm_via_external_verifier(
            db_session, tid, verifier, external_ref="ESEWA-REF-3"
        )

    entry = await LedgerStore.find_by_transaction_id(db_session, tid)
    assert entry.status == LedgerStatus.PENDING

    result = await db_session.execute(select(DeadLetterQueue))
    items = result.scalars().all()
    assert len(items) == 1
    assert items[0].payload["transaction_id"] == tid
    assert items[0].status == DLQStatus.FAILED


@pytest.mark.asyncio
async def test_amount_mismatch_rejected(db_session, student_id, teacher_id):
    _, tid, _ = await _initiate_meeting_payment(db_session, student_id, teacher_id)
    verifier = FakeVerifier()

    with pytest.raises(PaymentAmountMismatchError):
        await SettlementOrchestrator.confirm_via_external_verifier(
            db_session, tid, verifier, external_ref="ESEWA-REF-4", external_amount="10"
        )

    assert verifier.calls == []
    entry = await LedgerStore.find_by_transaction_id(db_session, tid)
    assert entry.status == LedgerStatus.PENDING


@pytest.mark.asyncio
async def test_resume_after_partial_settlement(db_session, student_id, teacher_id):
    """An entry marked success without its credit is completed on retry, once."""
    meeting_id, tid, _ = await _initiate_meeting_payment(db_session, student_id, teacher_id)
    await LedgerStore.mark_outcome(db_session, tid, LedgerStatus.SUCCESS, external_ref="ESEWA-REF-5")

    verifier = FakeVerifier()
    for _ in range(2):
        entry, breakdown = await SettlementOrchestrator.confirm_via_external_verifier(
            db_session, tid, verifier, external_ref="ESEWA-REF-5"
        )
        assert breakdown.teacher_share == Decimal("800.00")

    assert verifier.calls == []
    balance = await BalanceService.find(db_session, teacher_id)
    assert balance.total_earnings == Decimal("800.00")
    meeting = await load_meeting(db_session, meeting_id)
    assert meeting.payment_id == entry.id


@pytest.mark.asyncio
async def test_settlement_lock_held_elsewhere(db_session, student_id, teacher_id, redis_client_session):
    _, tid, _ = await _initiate_meeting_payment(db_session, student_id, teacher_id)
    await redis_client_session.set(f"settlement:lock:{tid}", "other-worker")

    with pytest.raises(SettlementInProgressError):
        await SettlementOrchestrator.confirm_via_external_verifier(
            db_session, tid, FakeVerifier(), external_ref="ESEWA-REF-6"
        )

    # Foreign lock is left alone
    assert await redis_client_session.get(f"settlement:lock:{tid}") == "other-worker"


@pytest.mark.asyncio
async def test_refund_marks_meeting_refunded(db_session, student_id, teacher_id, admin_id):
    meeting_id, tid, _ = await _initiate_meeting_payment(db_session, student_id, teacher_id)
    await SettlementOrchestrator.confirm_via_external_verifier(
        db_session, tid, FakeVerifier(), external_ref="ESEWA-REF-7"
    )

    entry = await SettlementOrchestrator.refund(db_session, tid, admin_id, "session cancelled")
    assert entry.status == LedgerStatus.REFUNDED

    meeting = await load_meeting(db_session, meeting_id)
    assert meeting.payment_status == SessionPaymentStatus.REFUNDED
    # Credit is not reversed
    balance = await BalanceService.find(db_session, teacher_id)
    assert balance.total_earnings == Decimal("800.00")


@pytest.mark.asyncio
async def test_retry_deferred_verification(db_session, student_id, teacher_id):
    _, tid, _ = await _initiate_meeting_payment(db_session, student_id, teacher_id)
    verifier = FakeVerifier()
    verifier.error = httpx.ReadTimeout("slow gateway")

    with pytest.raises(ExternalVerifierUnavailableError):
        await SettlementOrchestrator.confirm_via_external_verifier(
            db_session, tid, verifier, external_ref="ESEWA-REF-8"
        )
    dlq_id = (await db_session.execute(select(DeadLetterQueue.id))).scalar_one()

    verifier.error = None
    item = await SettlementOrchestrator.retry_deferred(db_session, dlq_id, verifier)

    assert item.status == DLQStatus.PROCESSED
    assert item.retry_count == 1
    entry = await LedgerStore.find_by_transaction_id(db_session, tid)
    assert entry.status == LedgerStatus.SUCCESS
    assert entry.external_ref == "ESEWA-REF-8"
