"""
Balance Account Service (Domain Logic).

Maintains each teacher's running balance. Every mutation is a single
conditional UPDATE evaluated at the row, so two concurrent payouts cannot
both spend the same available balance.

Conservation:
    total_earnings == available_balance + pending_balance + withdrawn_amount
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from edumarket.app.core.config import settings
from edumarket.app.core.exceptions import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvariantViolationError,
    PayoutSettingsError,
    ResourceNotFoundError,
)
from edumarket.app.db.pagination import paginate
from edumarket.app.domain.ledger.commission import CommissionBreakdown, split, to_money
from edumarket.app.models.earning_credit import EarningCredit
from edumarket.app.models.ledger_enums import PayoutMethod
from edumarket.app.models.teacher_balance import TeacherBalance
from edumarket.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)


def check_conservation(balance: TeacherBalance) -> None:
    """Raise InvariantViolationError if the balance does not add up."""
    parts = balance.available_balance + balance.pending_balance + balance.withdrawn_amount
    if balance.total_earnings != parts:
        raise InvariantViolationError(
            "Balance conservation violated",
            details={
                "teacher_id": balance.teacher_id,
                "total_earnings": str(balance.total_earnings),
                "available_balance": str(balance.available_balance),
                "pending_balance": str(balance.pending_balance),
                "withdrawn_amount": str(balance.withdrawn_amount),
            }
        )
    for field in ("available_balance", "pending_balance", "withdrawn_amount"):
        if getattr(balance, field) < 0:
            raise InvariantViolationError(
                f"Negative {field}",
                details={"teacher_id": balance.teacher_id, field: str(getattr(balance, field))}
            )


def _breakdown_from_credit(credit: EarningCredit) -> CommissionBreakdown:
    return CommissionBreakdown(
        gross_amount=credit.gross_amount,
        commission=credit.commission,
        teacher_share=credit.teacher_share,
        commission_rate_used=Decimal(str(credit.commission_rate_used)),
    )


class BalanceService:

    @staticmethod
    async def find(db: AsyncSession, teacher_id: int) -> Optional[TeacherBalance]:
        result = await db.execute(
            select(TeacherBalance)
            .where(TeacherBalance.teacher_id == teacher_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create(
        db: AsyncSession,
        teacher_id: int,
        default_commission_rate: Any = None
    ) -> TeacherBalance:
        """
        Return the teacher's balance account, creating an empty one if absent.

        Two concurrent creators race on the unique teacher_id; the loser
        reads the winner's row.
        """
        balance = await BalanceService.find(db, teacher_id)
        if balance is not None:
            return balance

        rate = default_commission_rate
        if rate is None:
            rate = settings.platform_commission_rate

        balance = TeacherBalance(
            teacher_id=teacher_id,
            total_earnings=Decimal("0"),
            available_balance=Decimal("0"),
            pending_balance=Decimal("0"),
            withdrawn_amount=Decimal("0"),
            commission_rate=Decimal(str(rate)),
            payout_method=PayoutMethod.NOT_SET,
        )
        db.add(balance)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            balance = await BalanceService.find(db, teacher_id)
            if balance is None:
                raise
            return balance

        logger.info("Balance account created", extra={"teacher_id": teacher_id})
        return balance

    @staticmethod
    async def find_credit(db: AsyncSession, ledger_entry_id: int) -> Optional[EarningCredit]:
        result = await db.execute(
            select(EarningCredit).where(EarningCredit.ledger_entry_id == ledger_entry_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def credit(
        db: AsyncSession,
        teacher_id: int,
        gross_amount: Any,
        ledger_entry_id: int,
        commit: bool = True
    ) -> Tuple[CommissionBreakdown, bool]:
        """
        Apply a settled payment to the teacher's balance.

        The EarningCredit row is unique per ledger entry, so a second credit
        for the same entry returns the stored breakdown and leaves the
        balance untouched.

        The account must already exist (see get_or_create); with
        commit=False the caller owns the transaction.

        Returns:
            (breakdown, applied) where applied is False for a repeat
        """
        existing = await BalanceService.find_credit(db, ledger_entry_id)
        if existing is not None:
            return _breakdown_from_credit(existing), False

        balance = await BalanceService.find(db, teacher_id)
        if balance is None:
            raise ResourceNotFoundError("Teacher balance", teacher_id)

        breakdown = split(gross_amount, balance.commission_rate)

        try:
            # Savepoint, so a duplicate leaves the caller's transaction intact
            async with db.begin_nested():
                db.add(EarningCredit(
                    ledger_entry_id=ledger_entry_id,
                    teacher_id=teacher_id,
                    gross_amount=breakdown.gross_amount,
                    commission=breakdown.commission,
                    teacher_share=breakdown.teacher_share,
                    commission_rate_used=breakdown.commission_rate_used,
                ))
        except IntegrityError:
            # Another worker credited this entry first
            existing = await BalanceService.find_credit(db, ledger_entry_id)
            if existing is None:
                raise
            return _breakdown_from_credit(existing), False

        share = breakdown.teacher_share
        result = await db.execute(
            update(TeacherBalance)
            .where(TeacherBalance.teacher_id == teacher_id)
            .values(
                total_earnings=TeacherBalance.total_earnings + share,
                available_balance=TeacherBalance.available_balance + share,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise InvariantViolationError(
                "Balance account disappeared during credit",
                details={"teacher_id": teacher_id, "ledger_entry_id": ledger_entry_id}
            )

        await log_event(
            db,
            action=AuditAction.TEACHER_CREDITED,
            entity_type="teacher_balance",
            entity_id=teacher_id,
            metadata={"ledger_entry_id": ledger_entry_id, **breakdown.as_dict()}
        )

        if commit:
            await db.commit()

        logger.info(
            "Teacher credited",
            extra={
                "teacher_id": teacher_id,
                "ledger_entry_id": ledger_entry_id,
                "teacher_share": str(share),
                "commission": str(breakdown.commission),
            }
        )
        return breakdown, True

    @staticmethod
    async def _apply(
        db: AsyncSession,
        teacher_id: int,
        amount: Decimal,
        guard,
        values: Dict[str, Any],
        commit: bool
    ) -> bool:
        result = await db.execute(
            update(TeacherBalance)
            .where(TeacherBalance.teacher_id == teacher_id, guard)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False
        if commit:
            await db.commit()
        return True

    @staticmethod
    def _positive(amount: Any) -> Decimal:
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError(amount)
        return amount

    @staticmethod
    async def reserve_for_payout(
        db: AsyncSession,
        teacher_id: int,
        amount: Any,
        commit: bool = True
    ) -> TeacherBalance:
        """
        Move `amount` from available to pending.

        Raises:
            InsufficientBalanceError: amount > available_balance
        """
        amount = BalanceService._positive(amount)
        applied = await BalanceService._apply(
            db, teacher_id, amount,
            TeacherBalance.available_balance >= amount,
            {
                "available_balance": TeacherBalance.available_balance - amount,
                "pending_balance": TeacherBalance.pending_balance + amount,
            },
            commit,
        )
        balance = await BalanceService.find(db, teacher_id)
        if not applied:
            available = balance.available_balance if balance is not None else Decimal("0.00")
            raise InsufficientBalanceError(amount, available)
        return balance

    @staticmethod
    async def release_from_payout(
        db: AsyncSession,
        teacher_id: int,
        amount: Any,
        commit: bool = True
    ) -> TeacherBalance:
        """Move `amount` from pending back to available."""
        amount = BalanceService._positive(amount)
        applied = await BalanceService._apply(
            db, teacher_id, amount,
            TeacherBalance.pending_balance >= amount,
            {
                "available_balance": TeacherBalance.available_balance + amount,
                "pending_balance": TeacherBalance.pending_balance - amount,
            },
            commit,
        )
        return await BalanceService._after_pending_change(db, teacher_id, amount, applied, "release")

    @staticmethod
    async def finalize_payout(
        db: AsyncSession,
        teacher_id: int,
        amount: Any,
        commit: bool = True
    ) -> TeacherBalance:
        """Move `amount` from pending to withdrawn."""
        amount = BalanceService._positive(amount)
        applied = await BalanceService._apply(
            db, teacher_id, amount,
            TeacherBalance.pending_balance >= amount,
            {
                "pending_balance": TeacherBalance.pending_balance - amount,
                "withdrawn_amount": TeacherBalance.withdrawn_amount + amount,
            },
            commit,
        )
        return await BalanceService._after_pending_change(db, teacher_id, amount, applied, "finalize")

    @staticmethod
    async def _after_pending_change(
        db: AsyncSession,
        teacher_id: int,
        amount: Decimal,
        applied: bool,
        operation: str
    ) -> TeacherBalance:
        if not applied:
            balance = await BalanceService.find(db, teacher_id)
            await db.rollback()
            # Pending never drops below what live payout requests reserved
            raise InvariantViolationError(
                f"Cannot {operation} more than the pending balance",
                details={
                    "teacher_id": teacher_id,
                    "amount": str(amount),
                    "pending_balance": str(balance.pending_balance) if balance else None,
                }
            )
        return await BalanceService.find(db, teacher_id)

    @staticmethod
    async def update_payout_settings(
        db: AsyncSession,
        teacher_id: int,
        method: Any,
        esewa_id: Optional[str] = None,
        bank_details: Optional[Dict[str, Any]] = None
    ) -> TeacherBalance:
        """
        Set where payouts are sent.

        Raises:
            PayoutSettingsError: method is not esewa/bank, or its destination
                fields are missing
        """
        try:
            method = PayoutMethod(getattr(method, "value", method))
        except ValueError:
            method = None
        if method not in (PayoutMethod.ESEWA, PayoutMethod.BANK):
            raise PayoutSettingsError(
                "Invalid payout method",
                details={"allowed": [PayoutMethod.ESEWA.value, PayoutMethod.BANK.value]}
            )

        values: Dict[str, Any] = {"payout_method": method}
        if method == PayoutMethod.ESEWA:
            if not esewa_id or not esewa_id.strip():
                raise PayoutSettingsError("eSewa ID is required", details={"field": "esewa_id"})
            values["esewa_id"] = esewa_id.strip()
        else:
            if not bank_details or not str(bank_details.get("account_number") or "").strip():
                raise PayoutSettingsError(
                    "Bank account details are required",
                    details={"field": "bank_details.account_number"}
                )
            values["bank_details"] = dict(bank_details)

        await BalanceService.get_or_create(db, teacher_id)
        await db.execute(
            update(TeacherBalance)
            .where(TeacherBalance.teacher_id == teacher_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await log_event(
            db,
            action=AuditAction.PAYOUT_SETTINGS_UPDATED,
            actor_id=teacher_id,
            entity_type="teacher_balance",
            entity_id=teacher_id,
            metadata={"payout_method": method.value}
        )
        await db.commit()

        logger.info("Payout settings updated", extra={"teacher_id": teacher_id, "method": method.value})
        return await BalanceService.find(db, teacher_id)

    @staticmethod
    async def list_credits(
        db: AsyncSession,
        teacher_id: int,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[EarningCredit], int]:
        """Earnings history, newest first."""
        query = (
            select(EarningCredit)
            .where(EarningCredit.teacher_id == teacher_id)
            .order_by(desc(EarningCredit.created_at), desc(EarningCredit.id))
        )
        return await paginate(db, query, page, limit)
