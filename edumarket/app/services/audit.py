"""
Audit logging service for ledger events.

Every money-moving action leaves an audit row. Rows are added to the
caller's transaction, so they commit (or roll back) together with the
change they describe.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from edumarket.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Payments
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_VERIFIED = "PAYMENT_VERIFIED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_VERIFICATION_DEFERRED = "PAYMENT_VERIFICATION_DEFERRED"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED"

    # Direct transfer handshake
    PAYMENT_PROOF_SUBMITTED = "PAYMENT_PROOF_SUBMITTED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"

    # Balances
    TEACHER_CREDITED = "TEACHER_CREDITED"
    PAYOUT_SETTINGS_UPDATED = "PAYOUT_SETTINGS_UPDATED"

    # Payouts
    PAYOUT_REQUESTED = "PAYOUT_REQUESTED"
    PAYOUT_CANCELLED = "PAYOUT_CANCELLED"
    PAYOUT_APPROVED = "PAYOUT_APPROVED"
    PAYOUT_PROCESSING = "PAYOUT_PROCESSING"
    PAYOUT_REJECTED = "PAYOUT_REJECTED"
    PAYOUT_COMPLETED = "PAYOUT_COMPLETED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[Any] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Add a ledger event to the audit log.

    Args:
        db: Database session (caller commits)
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action, None for system/gateway
        entity_type: "ledger_entry", "payout", "meeting", "teacher_balance"
        entity_id: Identifier of the entity
        metadata: Additional context as JSON

    Returns:
        Pending AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    entity_type: Optional[str] = None,
    entity_id: Optional[Any] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)

    if entity_id is not None:
        query = query.where(AuditLog.entity_id == str(entity_id))

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
