"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from edumarket.app.api.v1.endpoints import (
    payments, meeting_payments, teacher_balance,
    admin_payments, admin_ops
)

router = APIRouter()

# Payments and gateway callback
router.include_router(payments.router)

# Direct-transfer handshake
router.include_router(meeting_payments.router)

# Teacher earnings and payouts
router.include_router(teacher_balance.router)

# Admin
router.include_router(admin_payments.router)
router.include_router(admin_ops.router)
