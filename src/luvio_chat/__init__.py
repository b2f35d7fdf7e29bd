"""
Luvio Chat - A streaming chat client for the Luvio completion service.

This package provides a chat session engine with:
- Incremental decoding of server-sent completion streams
- Throttled in-place updates of the assistant reply
- Request supersession and cancellation
- Multimodal attachments
- Conversation persistence
"""

__version__ = "0.1.0"
__author__ = "Luvio Team"

__all__ = [
    '__version__',
]
