"""At-most-one in-flight request per chat session, with explicit abort."""

import asyncio
import uuid
from typing import Optional

from ..utils.logging import get_logger

logger = get_logger("luvio-chat.cancellation")


class RequestToken:
    """Opaque handle for one logical request.

    The abort signal is an ``asyncio.Event``; the network task running the
    request may be bound to the token so that aborting also cancels it.
    """

    def __init__(self):
        self.id = uuid.uuid4().hex
        self._aborted = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def bind(self, task: asyncio.Task) -> None:
        """Attach the task that performs the request."""
        self._task = task
        if self.aborted and not task.done():
            task.cancel()

    async def wait_aborted(self) -> None:
        await self._aborted.wait()

    def _abort(self) -> bool:
        if self.aborted:
            return False
        self._aborted.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return True

    def __repr__(self) -> str:
        return f"RequestToken(id={self.id[:8]}, aborted={self.aborted})"


class CancellationManager:
    """Tracks the active request token of a session."""

    def __init__(self):
        self._active: Optional[RequestToken] = None

    @property
    def active(self) -> Optional[RequestToken]:
        return self._active

    def start_request(self) -> RequestToken:
        """Abort the outstanding request, if any, and mint a new token."""
        if self._active is not None:
            logger.info("request_superseded", token=self._active.id)
            self.cancel(self._active)
        token = RequestToken()
        self._active = token
        return token

    def cancel(self, token: Optional[RequestToken]) -> None:
        """Abort ``token``. Safe to call repeatedly."""
        if token is None:
            return
        if token._abort():
            logger.debug("request_cancelled", token=token.id)
        if self._active is token:
            self._active = None

    def release(self, token: RequestToken) -> None:
        """Clear ``token`` after it completed without aborting it."""
        if self._active is token:
            self._active = None

    def is_current(self, token: RequestToken) -> bool:
        return self._active is token and not token.aborted


__all__ = ['RequestToken', 'CancellationManager']
