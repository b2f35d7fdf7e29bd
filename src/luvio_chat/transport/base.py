"""Base transport interface for the completion service."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict


class CompletionTransport(ABC):
    """Issues one completion request and yields the raw response body."""

    @abstractmethod
    def stream(self, payload: Dict[str, Any]) -> AsyncIterator[bytes]:
        """POST ``payload`` and yield body chunks as they arrive.

        Implementations raise ``RateLimitedError``, ``PaymentRequiredError``
        or ``TransportFailureError`` before yielding when the service
        rejects the request.
        """

    async def close(self) -> None:
        """Release any connection resources."""
