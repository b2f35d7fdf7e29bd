"""Rate limiting of content publishes for streaming replies."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .assembler import Delta
from ..utils.logging import get_logger

logger = get_logger("luvio-chat.streaming.throttle")


@dataclass
class ThrottleMetrics:
    """Metrics for publish coalescing."""
    submitted: int = 0
    published: int = 0
    coalesced: int = 0
    trailing_publishes: int = 0


class UpdateThrottler:
    """Coalescing publisher.

    Deltas arrive at whatever rate the network delivers them; the publisher
    forwards at most one per ``interval`` seconds. A delta that arrives too
    early replaces any earlier pending one and is published by a trailing
    timer, so the most recent content always wins. ``flush`` publishes the
    final pending value immediately and closes the throttler.
    """

    def __init__(
        self,
        publish: Callable[[Delta], None],
        interval: float = 0.016,
        clock: Callable[[], float] = time.monotonic,
        loop: Optional[asyncio.AbstractEventLoop] = None
    ):
        """Initialize throttler.

        Args:
            publish: Callback receiving published deltas
            interval: Minimum seconds between publishes
            clock: Monotonic time source
            loop: Event loop for trailing publishes (running loop if None)
        """
        self.publish = publish
        self.interval = interval
        self.clock = clock
        self._loop = loop

        self._pending: Optional[Delta] = None
        self._last: Optional[Delta] = None
        self._last_publish_time: Optional[float] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False

        self.metrics = ThrottleMetrics()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_published(self) -> Optional[Delta]:
        return self._last

    def submit(self, delta: Delta) -> None:
        """Offer a new accumulated value for publishing."""
        if self._closed:
            return
        self.metrics.submitted += 1

        if self._regresses(delta):
            logger.debug("stale_delta_dropped", response_id=delta.response_id)
            return

        now = self.clock()
        if self._last_publish_time is None or now - self._last_publish_time >= self.interval:
            self._cancel_timer()
            self._pending = None
            self._emit(delta, now)
            return

        if self._pending is not None:
            self.metrics.coalesced += 1
        self._pending = delta

        if self._timer is None:
            delay = self.interval - (now - self._last_publish_time)
            loop = self._loop or asyncio.get_running_loop()
            self._timer = loop.call_later(delay, self._on_timer)

    def flush(self) -> Optional[Delta]:
        """Publish the pending value unthrottled and close.

        Returns:
            The final value seen by this throttler, if any
        """
        if self._closed:
            return self._last
        self._closed = True
        self._cancel_timer()

        if self._pending is not None:
            pending, self._pending = self._pending, None
            self._emit(pending, self.clock())

        return self._last

    def _on_timer(self) -> None:
        self._timer = None
        if self._closed or self._pending is None:
            return
        pending, self._pending = self._pending, None
        self.metrics.trailing_publishes += 1
        self._emit(pending, self.clock())

    def _emit(self, delta: Delta, now: float) -> None:
        self._last = delta
        self._last_publish_time = now
        self.metrics.published += 1
        try:
            self.publish(delta)
        except Exception as e:
            logger.error(
                "publish_callback_error",
                response_id=delta.response_id,
                error=str(e),
                exc_info=True
            )

    def _regresses(self, delta: Delta) -> bool:
        reference = self._pending or self._last
        return (
            reference is not None
            and reference.response_id == delta.response_id
            and len(delta.content) < len(reference.content)
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def get_stats(self) -> Dict[str, Any]:
        """Get throttling statistics."""
        return {
            'interval': self.interval,
            'closed': self._closed,
            'has_pending': self._pending is not None,
            'metrics': {
                'submitted': self.metrics.submitted,
                'published': self.metrics.published,
                'coalesced': self.metrics.coalesced,
                'trailing_publishes': self.metrics.trailing_publishes,
            }
        }


__all__ = ['UpdateThrottler', 'ThrottleMetrics']
