"""
Ledger, payout and session-payment enumerations.
"""

import enum


class PaymentPurpose(str, enum.Enum):
    """What a payment is for. Closed set."""
    COURSE = "course"
    MEETING = "meeting"
    CONSULTATION = "consultation"
    SUBSCRIPTION = "subscription"
    DONATION = "donation"
    OTHER = "other"


class LedgerStatus(str, enum.Enum):
    """
    Ledger entry status.

    pending -> success | failed, success -> refunded. Nothing else.
    """
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefNamespace(str, enum.Enum):
    """Origin of an external reference."""
    GATEWAY = "gateway"  # gateway refId, set after verification
    DIRECT_TRANSFER = "direct_transfer"  # proof pasted by the payer


class PayoutMethod(str, enum.Enum):
    NOT_SET = "not_set"
    ESEWA = "esewa"
    BANK = "bank"


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"  # Requested, funds reserved
    APPROVED = "approved"  # Approved by admin
    PROCESSING = "processing"  # Transfer under way
    COMPLETED = "completed"  # Funds withdrawn
    REJECTED = "rejected"  # Refused by admin, funds released
    CANCELLED = "cancelled"  # Withdrawn by teacher, funds released


PAYOUT_TERMINAL_STATUSES = (PayoutStatus.COMPLETED, PayoutStatus.REJECTED, PayoutStatus.CANCELLED)


class MeetingStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SessionPaymentStatus(str, enum.Enum):
    """Payment status of a paid session (direct-transfer handshake)."""
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    PAID_AWAITING_CONFIRMATION = "paid_awaiting_confirmation"
    COMPLETED = "completed"
    REFUNDED = "refunded"
