"""
Server-sent event frame decoder for Luvio Chat.

This module turns a chunked ``text/event-stream`` body into frames with:
- Carry-over buffering of partial lines across chunk boundaries
- Incremental UTF-8 decoding
- Keep-alive and comment suppression
- End-of-stream sentinel detection
- Push-back resynchronization for payloads split mid-record
"""

import codecs
import json
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional

from ..utils.logging import get_logger
from ..utils.errors import StreamError

logger = get_logger("luvio-chat.streaming.decoder")


DATA_PREFIX = "data: "
COMMENT_PREFIX = ":"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class Frame:
    """One ``data:`` line whose payload parsed as a JSON record."""
    payload: str
    record: Any


class FrameDecoder:
    """Splits raw byte chunks into protocol frames."""

    def __init__(self, max_buffer_size: int = 1024 * 1024):
        """
        Initialize frame decoder.

        Args:
            max_buffer_size: Maximum undecoded carry-over, in characters
        """
        self.max_buffer_size = max_buffer_size

        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._finished = False

        # Stats
        self._total_bytes = 0
        self._frames = 0
        self._pushbacks = 0

    @property
    def finished(self) -> bool:
        """True once the end-of-stream sentinel was seen."""
        return self._finished

    @property
    def pending(self) -> str:
        """Text received but not yet decoded into frames."""
        return self._buffer

    def feed(self, chunk: bytes) -> List[Frame]:
        """
        Consume one chunk and return the frames it completes.

        Args:
            chunk: Raw bytes in arrival order

        Returns:
            Frames decoded from complete lines

        Raises:
            StreamError: If the carry-over buffer exceeds its limit
        """
        if self._finished:
            return []

        self._total_bytes += len(chunk)
        self._buffer += self._decoder.decode(chunk)

        frames: List[Frame] = []
        while not self._finished:
            newline_index = self._buffer.find("\n")
            if newline_index == -1:
                break

            line = self._buffer[:newline_index]
            self._buffer = self._buffer[newline_index + 1:]

            if line.endswith("\r"):
                line = line[:-1]
            if line.startswith(COMMENT_PREFIX) or line.strip() == "":
                continue
            if not line.startswith(DATA_PREFIX):
                continue

            payload = line[len(DATA_PREFIX):].strip()
            if payload == DONE_SENTINEL:
                self._finished = True
                break

            try:
                record = json.loads(payload)
            except json.JSONDecodeError:
                # Possibly a record split by the upstream transport: retry
                # the line once more input has arrived.
                self._buffer = line + "\n" + self._buffer
                self._pushbacks += 1
                logger.debug(
                    "frame_pushed_back",
                    length=len(payload),
                    pushbacks=self._pushbacks
                )
                break

            self._frames += 1
            frames.append(Frame(payload=payload, record=record))

        if len(self._buffer) > self.max_buffer_size:
            raise StreamError(
                f"Frame buffer overflow: {len(self._buffer)} characters exceeds max {self.max_buffer_size}"
            )

        return frames

    async def decode(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[Frame]:
        """
        Decode an entire async byte stream.

        Args:
            chunks: Async iterable of byte chunks

        Yields:
            Frames in arrival order, stopping at the sentinel
        """
        async for chunk in chunks:
            for frame in self.feed(chunk):
                yield frame
            if self._finished:
                break
        self.close()

    def close(self) -> Optional[str]:
        """
        Finish decoding.

        Returns:
            Leftover text that never formed a frame, if any
        """
        self._buffer += self._decoder.decode(b"", final=True)
        leftover = self._buffer.strip()
        self._buffer = ""
        if leftover and not self._finished:
            logger.warning(
                "unparsed_stream_data",
                length=len(leftover),
                preview=leftover[:100]
            )
        return leftover or None

    def get_stats(self) -> Dict[str, Any]:
        """Get decoder statistics."""
        return {
            "total_bytes": self._total_bytes,
            "frames": self._frames,
            "pushbacks": self._pushbacks,
            "buffered": len(self._buffer),
            "finished": self._finished,
        }


__all__ = ['Frame', 'FrameDecoder', 'DATA_PREFIX', 'DONE_SENTINEL']
