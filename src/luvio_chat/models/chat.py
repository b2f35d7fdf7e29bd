"""Conversation data model: messages and their attachments."""

import mimetypes
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class Role(Enum):
    """Author of a message."""
    USER = "user"
    ASSISTANT = "assistant"


class AttachmentKind(Enum):
    """Coarse MIME category of an attachment."""
    IMAGE = "image"
    FILE = "file"


def new_id() -> str:
    """Mint an opaque identifier."""
    return str(uuid.uuid4())


@dataclass
class Attachment:
    """A resource attached to a user turn.

    ``type`` is either a category (``image``/``file``) or a full MIME type.
    ``inline_cache`` holds the encoded payload once the encoder has fetched it.
    """
    url: str
    type: str
    name: str
    inline_cache: Optional[str] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_path(cls, path: Path) -> "Attachment":
        """Attachment for a local file, typed from its extension."""
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(url=path.resolve().as_uri(), type=mime_type or "file", name=path.name)

    @property
    def kind(self) -> AttachmentKind:
        if self.type == "image" or self.type.startswith("image/"):
            return AttachmentKind.IMAGE
        return AttachmentKind.FILE

    @property
    def is_image(self) -> bool:
        return self.kind is AttachmentKind.IMAGE

    @property
    def mime_type(self) -> Optional[str]:
        """Full MIME type when one was given."""
        return self.type if "/" in self.type else None


@dataclass
class Message:
    """One entry of the conversation.

    User messages never change after creation. The assistant message of the
    reply being streamed has its ``content`` replaced until the stream ends.
    """
    role: Role
    content: str
    id: str = field(default_factory=new_id)
    attachments: List[Attachment] = field(default_factory=list)

    @classmethod
    def user(cls, text: str, attachments: Optional[List[Attachment]] = None) -> "Message":
        """Build a user turn, listing attachment names after the text."""
        attachments = list(attachments or [])
        content = text.strip()
        if attachments:
            names = ", ".join(a.name for a in attachments)
            content = f"{content}\n\n[Attachments: {names}]"
        return cls(role=Role.USER, content=content, attachments=attachments)

    @classmethod
    def assistant(cls, message_id: str, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, id=message_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "attachments": [
                {"url": a.url, "type": a.type, "name": a.name}
                for a in self.attachments
            ],
        }


__all__ = [
    'Role',
    'AttachmentKind',
    'Attachment',
    'Message',
    'new_id',
]
