"""
Error handling framework for Luvio Chat.

This module provides:
- Hierarchical exception classes
- Error context preservation
- User-facing error messages
- Structured error responses
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    NETWORK = "network"
    SERVICE = "service"
    QUOTA = "quota"
    STREAM = "stream"
    STORAGE = "storage"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    CANCELLATION = "cancellation"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None
    conversation_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class LuvioError(Exception):
    """Base exception for all Luvio Chat errors."""

    code: str = "LUVIO_ERROR"
    default_message: str = "An error occurred in Luvio Chat"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        **kwargs
    ):
        """Initialize Luvio error."""
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.kwargs = kwargs
        super().__init__(self.message)

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "severity": self.severity.value,
                "category": self.category.value,
                "is_retryable": self.is_retryable,
                "suggestions": self.get_suggestions(),
                "context": {
                    "timestamp": self.context.timestamp.isoformat(),
                    "request_id": self.context.request_id,
                    "conversation_id": self.context.conversation_id,
                    "component": self.context.component,
                    "operation": self.context.operation,
                    "metadata": self.context.metadata
                }
            }
        }


class ConfigurationError(LuvioError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Ensure the completion endpoint is set",
        ]


class ValidationError(LuvioError):
    """Input validation errors."""
    code = "VALIDATION_ERROR"
    default_message = "Validation error"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        message = f"Validation failed for field '{field}': {constraint}"
        super().__init__(message, **kwargs)


# Network and service errors

class NetworkError(LuvioError):
    """Network-related errors."""
    code = "NETWORK_ERROR"
    default_message = "Network error occurred"
    category = ErrorCategory.NETWORK
    is_retryable = True


class TransportFailureError(NetworkError):
    """Non-2xx response or connection failure talking to the completion service."""
    code = "TRANSPORT_FAILURE"
    default_message = "Failed to get response"

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None, **kwargs):
        self.status = status
        super().__init__(message, **kwargs)


class RateLimitedError(TransportFailureError):
    """The completion service answered 429."""
    code = "RATE_LIMITED"
    default_message = "Rate limit exceeded. कृपया कुछ देर बाद try करें।"
    category = ErrorCategory.SERVICE
    severity = ErrorSeverity.WARNING

    def __init__(self, message: Optional[str] = None, **kwargs):
        super().__init__(message, status=429, **kwargs)

    def get_suggestions(self) -> List[str]:
        return ["Wait a moment and send the message again"]


class PaymentRequiredError(TransportFailureError):
    """The completion service answered 402."""
    code = "PAYMENT_REQUIRED"
    default_message = "Credits खत्म हो गए। Please add credits to continue."
    category = ErrorCategory.QUOTA
    severity = ErrorSeverity.WARNING
    is_retryable = False

    def __init__(self, message: Optional[str] = None, **kwargs):
        super().__init__(message, status=402, **kwargs)

    def get_suggestions(self) -> List[str]:
        return ["Add credits to your workspace to continue"]


class StreamError(LuvioError):
    """Malformed or oversized response stream."""
    code = "STREAM_ERROR"
    default_message = "Response stream error"
    category = ErrorCategory.STREAM


class RequestAbortedError(LuvioError):
    """The request was superseded or stopped by the caller."""
    code = "REQUEST_ABORTED"
    default_message = "Request aborted"
    category = ErrorCategory.CANCELLATION
    severity = ErrorSeverity.INFO


class PersistenceError(LuvioError):
    """Conversation storage errors."""
    code = "PERSISTENCE_ERROR"
    default_message = "Failed to persist conversation data"
    category = ErrorCategory.STORAGE


# Export public API
__all__ = [
    'LuvioError',
    'ErrorContext',
    'ErrorSeverity',
    'ErrorCategory',
    'ConfigurationError',
    'ValidationError',
    'NetworkError',
    'TransportFailureError',
    'RateLimitedError',
    'PaymentRequiredError',
    'StreamError',
    'RequestAbortedError',
    'PersistenceError',
]
