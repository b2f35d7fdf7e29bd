"""Data models for Luvio Chat."""

from .chat import Role, AttachmentKind, Attachment, Message, new_id
from .modules import BrainModule, BRAIN_MODULES, DEFAULT_MODULE, DEFAULT_SYSTEM_PROMPT, get_module

__all__ = [
    'Role',
    'AttachmentKind',
    'Attachment',
    'Message',
    'new_id',
    'BrainModule',
    'BRAIN_MODULES',
    'DEFAULT_MODULE',
    'DEFAULT_SYSTEM_PROMPT',
    'get_module',
]
