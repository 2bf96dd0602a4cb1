"""eSewa payment gateway client."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict

import httpx

from edumarket.app.core.config import settings

logger = logging.getLogger(__name__)

SUCCESS_MARKER = "<response_code>Success</response_code>"


class VerifierUnavailableError(Exception):
    """The gateway gave no answer (any non-200 status). Safe to retry."""


@dataclass
class VerificationResult:
    success: bool
    raw_response: str = ""
    details: Dict[str, Any] = field(default_factory=dict)


class EsewaVerifier:
    """
    Confirms a payment with eSewa's transaction-record endpoint.

    A definite answer is returned as a VerificationResult. Anything that is
    not an answer (transport error or non-200 status) is raised so the caller
    can leave the payment pending.
    """

    def __init__(
        self,
        verify_url: str = None,
        merchant_id: str = None,
        timeout: float = None,
        transport: httpx.AsyncBaseTransport = None
    ):
        self.verify_url = verify_url or settings.esewa_verify_url
        self.merchant_id = merchant_id or settings.esewa_merchant_id
        self.timeout = timeout or settings.verifier_timeout_seconds
        self.transport = transport

    async def verify(self, transaction_id: str, amount: Decimal, external_ref: str) -> VerificationResult:
        params = {
            "amt": str(amount),
            "rid": external_ref,
            "pid": transaction_id,
            "scd": self.merchant_id,
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.get(self.verify_url, params=params)

        # Only a 200 carries an answer
        if resp.status_code != 200:
            raise VerifierUnavailableError(f"eSewa returned HTTP {resp.status_code}")

        body = resp.text
        success = SUCCESS_MARKER in body
        logger.info(
            "eSewa verification answered",
            extra={"transaction_id": transaction_id, "status_code": resp.status_code, "success": success}
        )
        return VerificationResult(
            success=success,
            raw_response=body,
            details={"status_code": resp.status_code}
        )


def build_payment_instructions(transaction_id: str, amount: Decimal) -> Dict[str, Any]:
    """Form fields the client posts to eSewa to start the payment."""
    amount = str(amount)
    return {
        "payment_url": settings.esewa_payment_url,
        "fields": {
            "amt": amount,
            "psc": "0",
            "pdc": "0",
            "txAmt": "0",
            "tAmt": amount,
            "pid": transaction_id,
            "scd": settings.esewa_merchant_id,
            "su": f"{settings.esewa_success_url}?txnId={transaction_id}",
            "fu": f"{settings.esewa_failure_url}?txnId={transaction_id}",
        },
    }


def get_payment_verifier() -> EsewaVerifier:
    """FastAPI dependency; overridden in tests."""
    return EsewaVerifier()
