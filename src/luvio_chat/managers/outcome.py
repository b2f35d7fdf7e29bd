"""Classification of send attempts into outcomes with user-facing text."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..utils.errors import (
    LuvioError, ValidationError, TransportFailureError, RateLimitedError,
    PaymentRequiredError, RequestAbortedError, StreamError
)


GENERIC_FAILURE_MESSAGE = "Failed to send message"


class Outcome(Enum):
    """Result category of one send."""
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    PAYMENT_REQUIRED = "payment_required"
    ABORTED = "aborted"
    TRANSPORT_FAILURE = "transport_failure"
    VALIDATION_FAILURE = "validation_failure"


@dataclass(frozen=True)
class SendResult:
    """Outcome of a send, with the message to show the user."""
    outcome: Outcome
    message: Optional[str] = None
    status: Optional[int] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def is_user_visible(self) -> bool:
        """Aborts are silent and successes need no notification."""
        return self.outcome not in (Outcome.SUCCESS, Outcome.ABORTED)


def classify_status(status: int, body: Any = None) -> SendResult:
    """Classify an HTTP status and its decoded JSON error body."""
    if 200 <= status < 300:
        return SendResult(Outcome.SUCCESS, status=status)
    if status == 429:
        return SendResult(Outcome.RATE_LIMITED, RateLimitedError.default_message, status)
    if status == 402:
        return SendResult(Outcome.PAYMENT_REQUIRED, PaymentRequiredError.default_message, status)

    message = None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        message = body["error"]
    return SendResult(
        Outcome.TRANSPORT_FAILURE,
        message or TransportFailureError.default_message,
        status
    )


def classify_exception(exc: BaseException) -> SendResult:
    """Map an exception raised while sending onto an outcome."""
    if isinstance(exc, (asyncio.CancelledError, RequestAbortedError)):
        return SendResult(Outcome.ABORTED, error=exc)
    if isinstance(exc, RateLimitedError):
        return SendResult(Outcome.RATE_LIMITED, exc.message, 429, exc)
    if isinstance(exc, PaymentRequiredError):
        return SendResult(Outcome.PAYMENT_REQUIRED, exc.message, 402, exc)
    if isinstance(exc, TransportFailureError):
        return SendResult(Outcome.TRANSPORT_FAILURE, exc.message, exc.status, exc)
    if isinstance(exc, ValidationError):
        return SendResult(Outcome.VALIDATION_FAILURE, exc.message, error=exc)
    if isinstance(exc, (StreamError, LuvioError)):
        return SendResult(Outcome.TRANSPORT_FAILURE, exc.message, error=exc)
    return SendResult(
        Outcome.TRANSPORT_FAILURE,
        str(exc) or GENERIC_FAILURE_MESSAGE,
        error=exc
    )


__all__ = [
    'Outcome',
    'SendResult',
    'classify_status',
    'classify_exception',
    'GENERIC_FAILURE_MESSAGE',
]
