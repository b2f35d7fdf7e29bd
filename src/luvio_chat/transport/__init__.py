"""Completion transport layer.

This module provides the transport used to reach the remote completion
service over HTTP with a streamed response body.
"""

from .base import CompletionTransport
from .completion import CompletionClient

__all__ = [
    "CompletionTransport",
    "CompletionClient",
]
