"""HTTP transport for the streaming completion endpoint."""

import json
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from .base import CompletionTransport
from ..utils.config import ClientConfig
from ..utils.errors import (
    RateLimitedError, PaymentRequiredError, TransportFailureError
)
from ..utils.logging import get_logger

logger = get_logger("luvio-chat.transport")


class CompletionClient(CompletionTransport):
    """Posts chat turns and streams back the ``text/event-stream`` body.

    Owns its ``aiohttp.ClientSession`` unless one is passed in.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        connect_timeout: Optional[float] = 30.0,
        read_timeout: Optional[float] = None,
        chunk_size: int = 8192
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.chunk_size = chunk_size
        self._timeout = aiohttp.ClientTimeout(
            total=None,
            connect=connect_timeout,
            sock_read=read_timeout
        )
        self._session = session
        self._owns_session = session is None
        self._stats = {"requests": 0, "failures": 0, "bytes_received": 0}

    @classmethod
    def from_config(cls, config: ClientConfig, chunk_size: int = 8192) -> "CompletionClient":
        return cls(
            endpoint=config.endpoint,
            api_key=config.api_key,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            chunk_size=chunk_size,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def stream(self, payload: Dict[str, Any]) -> AsyncIterator[bytes]:
        session = await self._get_session()
        self._stats["requests"] += 1

        try:
            async with session.post(
                self.endpoint,
                json=payload,
                headers=self._headers()
            ) as response:
                if not 200 <= response.status < 300:
                    self._stats["failures"] += 1
                    message = await self._read_error(response)
                    logger.warning(
                        "completion_request_rejected",
                        status=response.status,
                        error=message
                    )
                    raise self._error_for_status(response.status, message)

                logger.debug("completion_stream_opened", status=response.status)
                async for chunk in response.content.iter_chunked(self.chunk_size):
                    self._stats["bytes_received"] += len(chunk)
                    yield chunk

        except aiohttp.ClientError as e:
            self._stats["failures"] += 1
            logger.error("completion_transport_error", error=str(e))
            raise TransportFailureError(cause=e) from e

    async def _read_error(self, response: aiohttp.ClientResponse) -> Optional[str]:
        """Pull the ``error`` text out of a JSON error body."""
        try:
            body = await response.text()
            data = json.loads(body)
        except (aiohttp.ClientError, UnicodeDecodeError, json.JSONDecodeError):
            return None
        if isinstance(data, dict) and isinstance(data.get("error"), str):
            return data["error"]
        return None

    @staticmethod
    def _error_for_status(status: int, message: Optional[str]) -> TransportFailureError:
        # 429 and 402 carry fixed user-facing text regardless of the body
        if status == 429:
            return RateLimitedError()
        if status == 402:
            return PaymentRequiredError()
        return TransportFailureError(message, status=status)

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._stats, endpoint=self.endpoint)

    def __repr__(self) -> str:
        return f"CompletionClient(endpoint={self.endpoint})"
