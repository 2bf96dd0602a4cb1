"""
Ledger Entry Store (Domain Logic).

Persists payment attempts and guards their status transitions.
Every transition is a conditional UPDATE on the expected current status,
so concurrent callbacks for the same transaction cannot both win.
"""

import logging
import secrets
import string
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, update, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from edumarket.app.core.exceptions import (
    DuplicateTransactionError,
    IllegalTransitionError,
    InvalidAmountError,
    InvalidPurposeError,
    LedgerValidationError,
    ResourceNotFoundError,
)
from edumarket.app.db.pagination import paginate
from edumarket.app.domain.ledger.commission import to_money
from edumarket.app.models.ledger_entry import LedgerEntry
from edumarket.app.models.ledger_enums import LedgerStatus, PaymentPurpose, RefNamespace
from edumarket.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)

_TXN_ALPHABET = string.ascii_uppercase + string.digits


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_purpose(purpose: Any) -> PaymentPurpose:
    try:
        return PaymentPurpose(getattr(purpose, "value", purpose))
    except ValueError:
        raise InvalidPurposeError(purpose, [p.value for p in PaymentPurpose])


class LedgerStore:

    @staticmethod
    def generate_transaction_id() -> str:
        """TXN + epoch millis + 9 random uppercase alphanumerics."""
        suffix = "".join(secrets.choice(_TXN_ALPHABET) for _ in range(9))
        return f"TXN{int(time.time() * 1000)}{suffix}"

    @staticmethod
    async def find_by_transaction_id(db: AsyncSession, transaction_id: str) -> Optional[LedgerEntry]:
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.transaction_id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def find_by_external_ref(
        db: AsyncSession,
        namespace: RefNamespace,
        external_ref: str
    ) -> Optional[LedgerEntry]:
        result = await db.execute(
            select(LedgerEntry)
            .where(
                LedgerEntry.external_ref_namespace == namespace,
                LedgerEntry.external_ref == external_ref
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_transaction_id(db: AsyncSession, transaction_id: str) -> LedgerEntry:
        entry = await LedgerStore.find_by_transaction_id(db, transaction_id)
        if entry is None:
            raise ResourceNotFoundError("Payment", transaction_id)
        return entry

    @staticmethod
    async def create_pending_entry(
        db: AsyncSession,
        payer_id: int,
        amount: Any,
        purpose: Any,
        purpose_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        transaction_id: Optional[str] = None,
        payment_method: str = "esewa"
    ) -> LedgerEntry:
        """
        Record a new payment attempt in PENDING.

        A caller-supplied transaction id that already exists returns the
        stored entry if it describes the same payment (a retried request),
        otherwise raises DuplicateTransactionError. Never stores two entries
        for one transaction id.

        Raises:
            InvalidAmountError: amount <= 0
            InvalidPurposeError: purpose outside the closed set
            DuplicateTransactionError: id taken by a different payment
        """
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError(amount)
        purpose = coerce_purpose(purpose)

        if transaction_id:
            existing = await LedgerStore.find_by_transaction_id(db, transaction_id)
            if existing is not None:
                return LedgerStore._resolve_duplicate(existing, payer_id, amount, purpose)
        else:
            transaction_id = LedgerStore.generate_transaction_id()

        entry = LedgerEntry(
            transaction_id=transaction_id,
            payer_id=payer_id,
            amount=amount,
            purpose=purpose,
            purpose_id=purpose_id,
            status=LedgerStatus.PENDING,
            payment_method=payment_method,
            meta_data=metadata or {}
        )
        db.add(entry)

        try:
            await db.flush()
            await log_event(
                db,
                action=AuditAction.PAYMENT_INITIATED,
                actor_id=payer_id,
                entity_type="ledger_entry",
                entity_id=transaction_id,
                metadata={"amount": str(amount), "purpose": purpose.value, "purpose_id": purpose_id}
            )
            await db.commit()
        except IntegrityError:
            # Lost the race on the unique transaction id
            await db.rollback()
            existing = await LedgerStore.find_by_transaction_id(db, transaction_id)
            if existing is None:
                raise
            return LedgerStore._resolve_duplicate(existing, payer_id, amount, purpose)

        logger.info(
            "Ledger entry created",
            extra={"transaction_id": transaction_id, "amount": str(amount), "purpose": purpose.value}
        )
        return entry

    @staticmethod
    def _resolve_duplicate(
        existing: LedgerEntry,
        payer_id: int,
        amount: Decimal,
        purpose: PaymentPurpose
    ) -> LedgerEntry:
        if existing.payer_id == payer_id and existing.amount == amount and existing.purpose == purpose:
            return existing
        raise DuplicateTransactionError(existing.transaction_id)

    @staticmethod
    async def mark_outcome(
        db: AsyncSession,
        transaction_id: str,
        outcome: LedgerStatus,
        external_ref: Optional[str] = None,
        namespace: RefNamespace = RefNamespace.GATEWAY,
        gateway_response: Optional[Dict[str, Any]] = None,
        commit: bool = True
    ) -> Tuple[LedgerEntry, bool]:
        """
        Resolve a PENDING entry to SUCCESS or FAILED.

        Repeating the same outcome on an already-resolved entry returns the
        entry unchanged, so duplicate gateway callbacks are harmless.

        Returns:
            (entry, changed) where changed is False for the idempotent no-op

        Raises:
            ResourceNotFoundError: unknown transaction id
            IllegalTransitionError: entry resolved to a different status
        """
        if outcome not in (LedgerStatus.SUCCESS, LedgerStatus.FAILED):
            raise LedgerValidationError(f"Outcome must be success or failed, got {outcome}")

        entry = await LedgerStore.get_by_transaction_id(db, transaction_id)

        values = {"status": outcome, "resolved_at": utcnow()}
        if external_ref:
            values["external_ref"] = external_ref
            values["external_ref_namespace"] = namespace
        if gateway_response is not None:
            values["gateway_response"] = gateway_response

        try:
            result = await db.execute(
                update(LedgerEntry)
                .where(LedgerEntry.id == entry.id, LedgerEntry.status == LedgerStatus.PENDING)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except IntegrityError:
            await db.rollback()
            raise LedgerValidationError(
                "External reference already recorded for another payment",
                error_code="ERR_VALIDATION_008",
                details={"transaction_id": transaction_id, "external_ref": external_ref}
            )

        if result.rowcount == 0:
            current = await LedgerStore.get_by_transaction_id(db, transaction_id)
            if current.status == outcome:
                return current, False
            raise IllegalTransitionError("Ledger entry", current.status, outcome)

        if commit:
            await db.commit()

        logger.info(
            "Ledger entry resolved",
            extra={"transaction_id": transaction_id, "status": outcome.value}
        )
        return await LedgerStore.get_by_transaction_id(db, transaction_id), True

    @staticmethod
    async def find_or_create_for_external_ref(
        db: AsyncSession,
        namespace: RefNamespace,
        external_ref: str,
        factory: Callable[[], LedgerEntry]
    ) -> LedgerEntry:
        """
        Return the entry holding `external_ref` in `namespace`, creating it
        with `factory()` if there is none.

        Concurrent calls with the same reference create at most one entry:
        the loser of the insert race hits the unique constraint and reads
        the winner's row.
        """
        existing = await LedgerStore.find_by_external_ref(db, namespace, external_ref)
        if existing is not None:
            return existing

        entry = factory()
        entry.external_ref = external_ref
        entry.external_ref_namespace = namespace
        if not entry.transaction_id:
            entry.transaction_id = LedgerStore.generate_transaction_id()
        db.add(entry)

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            existing = await LedgerStore.find_by_external_ref(db, namespace, external_ref)
            if existing is None:
                raise
            return existing

        logger.info(
            "Ledger entry created for external reference",
            extra={"transaction_id": entry.transaction_id, "namespace": namespace.value}
        )
        return entry

    @staticmethod
    async def mark_refunded(
        db: AsyncSession,
        transaction_id: str,
        admin_id: int,
        reason: Optional[str] = None,
        commit: bool = True
    ) -> Tuple[LedgerEntry, bool]:
        """
        Move a SUCCESS entry to REFUNDED. Refunding twice is a no-op.

        Raises:
            IllegalTransitionError: entry is not SUCCESS
        """
        entry = await LedgerStore.get_by_transaction_id(db, transaction_id)
        if entry.status == LedgerStatus.REFUNDED:
            return entry, False

        meta = dict(entry.meta_data or {})
        meta.update({
            "refund_reason": reason,
            "refunded_at": utcnow().isoformat(),
            "refunded_by": admin_id
        })
        result = await db.execute(
            update(LedgerEntry)
            .where(LedgerEntry.id == entry.id, LedgerEntry.status == LedgerStatus.SUCCESS)
            .values(status=LedgerStatus.REFUNDED, meta_data=meta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await LedgerStore.get_by_transaction_id(db, transaction_id)
            if current.status == LedgerStatus.REFUNDED:
                return current, False
            raise IllegalTransitionError("Ledger entry", current.status, LedgerStatus.REFUNDED)

        if commit:
            await db.commit()
        return await LedgerStore.get_by_transaction_id(db, transaction_id), True

    @staticmethod
    def _filtered(query, payer_id=None, status=None, purpose=None):
        if payer_id is not None:
            query = query.where(LedgerEntry.payer_id == payer_id)
        if status is not None:
            query = query.where(LedgerEntry.status == status)
        if purpose is not None:
            query = query.where(LedgerEntry.purpose == purpose)
        return query

    @staticmethod
    async def list_entries(
        db: AsyncSession,
        payer_id: Optional[int] = None,
        status: Optional[LedgerStatus] = None,
        purpose: Optional[PaymentPurpose] = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[LedgerEntry], int]:
        """Newest first. payer_id=None lists every payer (admin)."""
        query = LedgerStore._filtered(
            select(LedgerEntry).order_by(desc(LedgerEntry.created_at), desc(LedgerEntry.id)),
            payer_id, status, purpose
        )
        return await paginate(db, query, page, limit)

    @staticmethod
    async def status_statistics(
        db: AsyncSession,
        status: Optional[LedgerStatus] = None,
        purpose: Optional[PaymentPurpose] = None
    ) -> List[Dict[str, Any]]:
        """Count and total amount per status."""
        query = LedgerStore._filtered(
            select(
                LedgerEntry.status,
                func.count(LedgerEntry.id),
                func.coalesce(func.sum(LedgerEntry.amount), 0)
            ).group_by(LedgerEntry.status),
            status=status, purpose=purpose
        )
        result = await db.execute(query)
        return [
            {"status": row[0].value, "count": row[1], "total_amount": to_money(row[2])}
            for row in result.all()
        ]
