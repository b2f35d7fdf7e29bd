"""
Managers package for Luvio Chat.
"""

from .session import ChatSession, SessionState
from .cancellation import CancellationManager, RequestToken
from .outcome import Outcome, SendResult, classify_status, classify_exception
from .attachments import AttachmentEncoder

__all__ = [
    # Session
    'ChatSession',
    'SessionState',

    # Cancellation
    'CancellationManager',
    'RequestToken',

    # Outcomes
    'Outcome',
    'SendResult',
    'classify_status',
    'classify_exception',

    # Attachments
    'AttachmentEncoder',
]
