"""
Reliability Utilities.

Circuit Breaker guarding calls to the payment verifier.
"""

import logging
import time
from typing import Callable, Any

from edumarket.app.core.config import settings

logger = logging.getLogger(__name__)


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' consecutive failures occur, the circuit opens
    and rejects calls for 'reset_timeout' seconds, then lets one call
    through (HALF_OPEN) to probe the dependency.
    """
    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError(f"Circuit {self.name} is OPEN")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.state == "HALF_OPEN" or self.failures >= self.failure_threshold:
            if self.state != "OPEN":
                logger.warning("Circuit opened", extra={"circuit": self.name, "failures": self.failures})
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"


# Global instance for the payment gateway
gateway_circuit_breaker = CircuitBreaker(
    "payment_gateway",
    failure_threshold=settings.verifier_failure_threshold,
    reset_timeout=settings.verifier_reset_timeout,
)
