"""
Balance Account Tests.
"""

import pytest
from decimal import Decimal

from edumarket.app.core.exceptions import (
    InsufficientBalanceError,
    InvariantViolationError,
    PayoutSettingsError,
)
from edumarket.app.domain.ledger.balance_service import BalanceService, check_conservation
from edumarket.app.domain.ledger.ledger_store import LedgerStore
from edumarket.app.models.ledger_enums import LedgerStatus, PayoutMethod


async def _entry_id(db, payer_id, amount="1000"):
    entry = await LedgerStore.create_pending_entry(db, payer_id, amount, "donation")
    return entry.id


@pytest.mark.asyncio
async def test_get_or_create_defaults(db_session, teacher_id):
    balance = await BalanceService.get_or_create(db_session, teacher_id)
    assert balance.commission_rate == Decimal("20")
    assert balance.available_balance == Decimal("0")
    assert balance.payout_method == PayoutMethod.NOT_SET

    again = await BalanceService.get_or_create(db_session, teacher_id)
    assert again.id == balance.id


@pytest.mark.asyncio
async def test_credit_applies_teacher_share(db_session, teacher_id, student_id):
    await BalanceService.get_or_create(db_session, teacher_id)
    entry_id = await _entry_id(db_session, student_id)

    breakdown, applied = await BalanceService.credit(db_session, teacher_id, "1000", entry_id)
    assert applied
    assert breakdown.teacher_share == Decimal("800.00")

    balance = await BalanceService.find(db_session, teacher_id)
    assert balance.total_earnings == Decimal("800.00")
    assert balance.available_balance == Decimal("800.00")
    check_conservation(balance)


@pytest.mark.asyncio
async def test_credit_is_idempotent_per_ledger_entry(db_session, teacher_id, student_id):
    await BalanceService.get_or_create(db_session, teacher_id)
    entry_id = await _entry_id(db_session, student_id)

    first, _ = await BalanceService.credit(db_session, teacher_id, "1000", entry_id)
    second, applied = await BalanceService.credit(db_session, teacher_id, "1000", entry_id)

    assert not applied
    assert second == first
    balance = await BalanceService.find(db_session, teacher_id)
    assert balance.available_balance == Decimal("800.00")


@pytest.mark.asyncio
async def test_lost_credit_race_keeps_callers_pending_work(db_session, teacher_id, student_id, mocker):
    await BalanceService.get_or_create(db_session, teacher_id)
    entry_id = await _entry_id(db_session, student_id)
    await BalanceService.credit(db_session, teacher_id, "1000", entry_id)
    other = await LedgerStore.create_pending_entry(db_session, student_id, "200", "donation")

    # The pre-check misses a credit written by another worker
    original_find_credit = BalanceService.find_credit
    lookups = []

    async def racing_find_credit(db, ledger_entry_id):
        lookups.append(ledger_entry_id)
        if len(lookups) == 1:
            return None
        return await original_find_credit(db, ledger_entry_id)

    mocker.patch.object(BalanceService, "find_credit", side_effect=racing_find_credit)

    await LedgerStore.mark_outcome(
        db_session, other.transaction_id, LedgerStatus.SUCCESS, external_ref="ESEWA-SP-1", commit=False
    )
    breakdown, applied = await BalanceService.credit(db_session, teacher_id, "1000", entry_id, commit=False)
    await db_session.commit()

    assert not applied
    assert breakdown.teacher_share == Decimal("800.00")
    assert len(lookups) == 2
    other = await LedgerStore.find_by_transaction_id(db_session, other.transaction_id)
    assert other.status == LedgerStatus.SUCCESS
    balance = await BalanceService.find(db_session, teacher_id)
    assert balance.available_balance == Decimal("800.00")


@pytest.mark.asyncio
async def test_credit_keeps_rate_in_effect_at_credit_time(db_session, teacher_id, student_id):
    await BalanceService.get_or_create(db_session, teacher_id, default_commission_rate="10")
    first_id = await _entry_id(db_session, student_id, "100")
    await BalanceService.credit(db_session, teacher_id, "100", first_id)

    balance = await BalanceService.find(db_session, teacher_id)
    balance.commission_rate = Decimal("30")
    await db_session.commit()

    second_id = await _entry_id(db_session, student_id, "100")
    await BalanceService.credit(db_session, teacher_id, "100", second_id)

    credits, total = await BalanceService.list_credits(db_session, teacher_id)
    assert total == 2
    rates = sorted(c.commission_rate_used for c in credits)
    assert rates == [Decimal("10"), Decimal("30")]

    balance = await BalanceService.find(db_session, teacher_id)
    assert balance.total_earnings == Decimal("160.00")


@pytest.mark.asyncio
async def test_reserve_release_finalize(db_session, teacher_id, student_id):
    await BalanceService.get_or_create(db_session, teacher_id)
    await BalanceService.credit(db_session, teacher_id, "1000", await _entry_id(db_session, student_id))

    balance = await BalanceService.reserve_for_payout(db_session, teacher_id, "300")
    assert balance.available_balance == Decimal("500.00")
    assert balance.pending_balance == Decimal("300.00")
    check_conservation(balance)

    balance = await BalanceService.release_from_payout(db_session, teacher_id, "100")
    assert balance.available_balance == Decimal("600.00")
    assert balance.pending_balance == Decimal("200.00")

    balance = await BalanceService.finalize_payout(db_session, teacher_id, "200")
    assert balance.pending_balance == Decimal("0.00")
    assert balance.withdrawn_amount == Decimal("200.00")
    assert balance.total_earnings == Decimal("800.00")
    check_conservation(balance)


@pytest.mark.asyncio
async def test_reserve_more_than_available(db_session, teacher_id, student_id):
    await BalanceService.get_or_create(db_session, teacher_id)
    await BalanceService.credit(db_session, teacher_id, "1000", await _entry_id(db_session, student_id))

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await BalanceService.reserve_for_payout(db_session, teacher_id, "800.01")
    assert exc_info.value.details["available_balance"] == "800.00"

    balance = await BalanceService.find(db_session, teacher_id)
    assert balance.available_balance == Decimal("800.00")
    assert balance.pending_balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_release_more_than_pending_is_invariant_violation(db_session, teacher_id):
    await BalanceService.get_or_create(db_session, teacher_id)
    with pytest.raises(InvariantViolationError):
        await BalanceService.release_from_payout(db_session, teacher_id, "1")
    with pytest.raises(InvariantViolationError):
        await BalanceService.finalize_payout(db_session, teacher_id, "1")


@pytest.mark.asyncio
async def test_update_payout_settings(db_session, teacher_id):
    balance = await BalanceService.update_payout_settings(db_session, teacher_id, "esewa", esewa_id=" 9800000001 ")
    assert balance.payout_method == PayoutMethod.ESEWA
    assert balance.esewa_id == "9800000001"

    balance = await BalanceService.update_payout_settings(
        db_session, teacher_id, PayoutMethod.BANK,
        bank_details={"account_name": "T", "account_number": "0012", "bank_name": "NIC"}
    )
    assert balance.payout_method == PayoutMethod.BANK
    assert balance.bank_details["account_number"] == "0012"


@pytest.mark.asyncio
@pytest.mark.parametrize("method,kwargs", [
    ("paypal", {}),
    ("not_set", {}),
    ("esewa", {"esewa_id": "  "}),
    ("bank", {"bank_details": {"account_name": "T"}}),
])
async def test_update_payout_settings_rejects(db_session, teacher_id, method, kwargs):
    with pytest.raises(PayoutSettingsError):
        await BalanceService.update_payout_settings(db_session, teacher_id, method, **kwargs)


def test_conservation_check_detects_drift():
    from edumarket.app.models.teacher_balance import TeacherBalance

    balance = TeacherBalance(
        teacher_id=1,
        total_earnings=Decimal("100"),
        available_balance=Decimal("50"),
        pending_balance=Decimal("20"),
        withdrawn_amount=Decimal("20"),
    )
    with pytest.raises(InvariantViolationError):
        check_conservation(balance)
