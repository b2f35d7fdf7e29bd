"""
Attachment encoder for Luvio Chat.

This module prepares multimodal payloads with:
- Inline base64 data URLs for image attachments
- Pass-through references for other attachments
- Per-attachment memoization of the encoded payload
- A bounded pool for concurrent fetches
- Soft failure back to the original URL
"""

import asyncio
import base64
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse, unquote

import aiofiles
import aiohttp

from ..models.chat import Attachment, Message
from ..utils.config import AttachmentConfig
from ..utils.errors import LuvioError, NetworkError
from ..utils.logging import get_logger

logger = get_logger("luvio-chat.attachments")


DEFAULT_MIME_TYPE = "application/octet-stream"


class AttachmentEncoder:
    """Converts attachment references into model-consumable payload parts."""

    def __init__(
        self,
        max_concurrency: int = 4,
        fetch_timeout: float = 30.0,
        max_size: int = 10 * 1024 * 1024,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize attachment encoder.

        Args:
            max_concurrency: Maximum fetches in flight at once
            fetch_timeout: Timeout for one remote fetch, in seconds
            max_size: Largest resource that will be inlined, in bytes
            session: HTTP session to reuse (one is created on demand if None)
        """
        self.max_concurrency = max_concurrency
        self.fetch_timeout = fetch_timeout
        self.max_size = max_size

        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._session = session
        self._owns_session = session is None
        self._stats = {"encoded": 0, "cache_hits": 0, "fallbacks": 0}

    @classmethod
    def from_config(cls, config: AttachmentConfig) -> "AttachmentEncoder":
        return cls(
            max_concurrency=config.max_concurrency,
            fetch_timeout=config.fetch_timeout,
            max_size=config.max_size,
        )

    async def encode(self, attachment: Attachment) -> str:
        """
        Inline payload for an attachment.

        Args:
            attachment: Attachment to encode

        Returns:
            A ``data:`` URL, or the original URL if the resource could not
            be fetched or converted
        """
        if attachment.inline_cache is not None:
            self._stats["cache_hits"] += 1
            return attachment.inline_cache

        if attachment.url.startswith("data:"):
            attachment.inline_cache = attachment.url
            return attachment.inline_cache

        try:
            async with self._semaphore:
                data, mime_type = await self._fetch(attachment)
        except (LuvioError, aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            self._stats["fallbacks"] += 1
            logger.warning(
                "attachment_encode_failed",
                name=attachment.name,
                url=attachment.url[:200],
                error=str(e)
            )
            return attachment.url

        encoded = base64.b64encode(data).decode("ascii")
        attachment.inline_cache = f"data:{mime_type};base64,{encoded}"
        self._stats["encoded"] += 1
        logger.debug("attachment_encoded", name=attachment.name, size=len(data))
        return attachment.inline_cache

    async def prepare_messages(self, messages: Sequence[Message]) -> List[Dict[str, Any]]:
        """
        Build the outgoing ``messages`` list of a completion request.

        Image attachments of every message are encoded concurrently; other
        attachments are passed by reference.
        """
        images = [a for m in messages for a in m.attachments if a.is_image]
        encoded = await asyncio.gather(*(self.encode(a) for a in images))
        inline = {id(a): payload for a, payload in zip(images, encoded)}

        prepared = []
        for message in messages:
            if not message.attachments:
                prepared.append({"role": message.role.value, "content": message.content})
                continue

            parts: List[Dict[str, Any]] = [{"type": "text", "text": message.content}]
            for attachment in message.attachments:
                if attachment.is_image:
                    parts.append({
                        "type": "image_url",
                        "image_url": {"url": inline[id(attachment)]},
                    })
                else:
                    parts.append({
                        "type": "file_url",
                        "file_url": {"url": attachment.url, "name": attachment.name},
                    })
            prepared.append({"role": message.role.value, "content": parts})

        return prepared

    async def _fetch(self, attachment: Attachment) -> tuple[bytes, str]:
        parsed = urlparse(attachment.url)
        if parsed.scheme in ("http", "https"):
            return await self._fetch_remote(attachment)
        if parsed.scheme == "file":
            return await self._read_local(attachment, Path(unquote(parsed.path)))
        if parsed.scheme == "" or len(parsed.scheme) == 1:
            # Bare path, including Windows drive letters
            return await self._read_local(attachment, Path(attachment.url))
        raise ValueError(f"Unsupported attachment URL scheme: {parsed.scheme}")

    async def _fetch_remote(self, attachment: Attachment) -> tuple[bytes, str]:
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.fetch_timeout)
        async with session.get(attachment.url, timeout=timeout) as response:
            if response.status >= 400:
                raise NetworkError(f"HTTP {response.status} fetching {attachment.name}")
            if response.content_length and response.content_length > self.max_size:
                raise NetworkError(f"{attachment.name} exceeds {self.max_size} bytes")
            data = await response.read()
            mime_type = (
                attachment.mime_type
                or (response.content_type if response.content_type != DEFAULT_MIME_TYPE else None)
                or self._guess_mime(attachment)
            )
        self._check_size(attachment, data)
        return data, mime_type

    async def _read_local(self, attachment: Attachment, path: Path) -> tuple[bytes, str]:
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        self._check_size(attachment, data)
        return data, attachment.mime_type or self._guess_mime(attachment)

    def _check_size(self, attachment: Attachment, data: bytes) -> None:
        if len(data) > self.max_size:
            raise NetworkError(f"{attachment.name} exceeds {self.max_size} bytes")

    @staticmethod
    def _guess_mime(attachment: Attachment) -> str:
        guessed, _ = mimetypes.guess_type(attachment.name)
        if guessed is None:
            guessed, _ = mimetypes.guess_type(urlparse(attachment.url).path)
        if guessed is None and attachment.is_image:
            return "image/png"
        return guessed or DEFAULT_MIME_TYPE

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._stats, max_concurrency=self.max_concurrency)


__all__ = ['AttachmentEncoder']
