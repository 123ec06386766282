"""Custom error types and error classification utilities."""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    """Categories of errors for better handling."""
    VALIDATION = "validation"
    MEMORY = "memory"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


class ChatServiceError(Exception):
    """Base exception for chat service errors."""

    code = "INTERNAL_ERROR"
    user_message = "Internal server error"

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.status_code = status_code
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/telemetry."""
        return {
            "error": self.message,
            "code": self.code,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "status_code": self.status_code,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(ChatServiceError):
    """Inbound request failed validation before streaming started."""

    code = "VALIDATION_ERROR"
    user_message = "Invalid request body"

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            details={"errors": errors or []},
            recoverable=False,  # Validation errors require fixing input
            status_code=400,
        )
        self.errors = errors or []


class MemoryRetrievalError(ChatServiceError):
    """Memory lookup failed; callers degrade to no context."""

    code = "MEMORY_ERROR"

    def __init__(self, message: str, operation: Optional[str] = None):
        details = {"operation": operation} if operation else {}
        super().__init__(
            message=message,
            category=ErrorCategory.MEMORY,
            details=details,
            recoverable=True,
        )


class TransportError(ChatServiceError):
    """The client connection went away or could not be written to."""

    code = "TRANSPORT_ERROR"

    def __init__(self, message: str = "Client transport closed"):
        super().__init__(message=message, category=ErrorCategory.TRANSPORT)


class SessionStateError(ChatServiceError):
    """A streaming session operation was called in the wrong state."""

    code = "SESSION_STATE_ERROR"

    def __init__(self, message: str, state: Optional[str] = None):
        super().__init__(message=message, details={"state": state} if state else {})


class UsageAlreadyFinalizedError(ChatServiceError):
    """Usage was already computed for this turn."""

    code = "USAGE_ALREADY_FINALIZED"

    def __init__(self, message: str = "Usage has already been finalized for this turn"):
        super().__init__(message=message)


class ProviderError(ChatServiceError):
    """Upstream completion failure after classification."""

    code = "PROVIDER_ERROR"
    user_message = "Service temporarily unavailable. Please try again."

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        status_code: Optional[int] = None,
        recoverable: bool = False,
        original: Optional[BaseException] = None,
    ):
        details: Dict[str, Any] = {}
        if original is not None:
            details["original_error"] = f"{type(original).__module__}.{type(original).__name__}"
        super().__init__(
            message=message,
            category=category,
            details=details,
            recoverable=recoverable,
            status_code=status_code,
        )
        self.original = original


class ProviderAuthError(ProviderError):
    code = "AUTH_ERROR"
    user_message = "The assistant is not available right now. Please contact support."

    def __init__(self, message: str, status_code: Optional[int] = None, original=None):
        super().__init__(message, ErrorCategory.AUTHENTICATION, status_code, False, original)


class RateLimitError(ProviderError):
    code = "RATE_LIMIT"
    user_message = "Overloaded, please try again soon."

    def __init__(self, message: str, status_code: Optional[int] = 429, original=None):
        super().__init__(message, ErrorCategory.RATE_LIMIT, status_code, True, original)


class ProviderServerError(ProviderError):
    code = "SERVER_ERROR"
    user_message = "Server error, please try again later."

    def __init__(self, message: str, status_code: Optional[int] = None, original=None):
        super().__init__(message, ErrorCategory.SERVER, status_code, True, original)


class ProviderTimeoutError(ProviderError):
    code = "PROVIDER_TIMEOUT"
    user_message = "Request timed out. Please try again with a shorter message."

    def __init__(self, message: str, status_code: Optional[int] = None, original=None):
        super().__init__(message, ErrorCategory.TIMEOUT, status_code, True, original)


class UnknownProviderError(ProviderError):
    code = "PROVIDER_ERROR"
    user_message = "Service temporarily unavailable. Please try again."

    def __init__(self, message: str, status_code: Optional[int] = None, original=None):
        super().__init__(message, ErrorCategory.UNKNOWN, status_code, False, original)


# Exception type names that indicate a timeout regardless of message
TIMEOUT_EXCEPTION_PATTERNS = (
    "TimeoutError",
    "APITimeoutError",
    "TimeoutException",
    "ReadTimeout",
    "ConnectTimeout",
)

AUTH_PATTERNS = [
    r"invalid api key",
    r"incorrect api key",
    r"authentication",
    r"unauthorized",
    r"permission denied",
]

RATE_LIMIT_PATTERNS = [
    r"rate limit",
    r"too many requests",
    r"quota",
]


def status_from_error(error: BaseException) -> Optional[int]:
    """Best-effort extraction of an HTTP status code carried by an exception."""
    for attr in ("status_code", "status", "http_status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def classify_provider_error(
    error: BaseException,
    status_code: Optional[int] = None,
) -> ProviderError:
    """Classify an upstream failure into the provider error taxonomy.

    Uses a multi-stage classification:
    1. Explicit or embedded HTTP status code
    2. Exception type names known to mean timeout
    3. Message keyword patterns
    """
    if isinstance(error, ProviderError):
        return error

    status = status_code if status_code is not None else status_from_error(error)
    message = str(error) or type(error).__name__
    error_type = type(error).__name__
    error_str = message.lower()

    # Stage 1: status code
    if status is not None:
        if status in (401, 403):
            return ProviderAuthError(f"Authentication error: {message}", status, error)
        if status == 429:
            return RateLimitError(f"Rate limit: {message}", status, error)
        if status in (408, 504) or "timeout" in error_str:
            return ProviderTimeoutError(f"Timeout: {message}", status, error)
        if status >= 500:
            return ProviderServerError(f"Server error: {message}", status, error)

    # Stage 2: exception type
    if any(error_type.endswith(pattern) for pattern in TIMEOUT_EXCEPTION_PATTERNS):
        return ProviderTimeoutError(f"Timeout: {message}", status, error)

    # Stage 3: keywords
    if "timeout" in error_str or "timed out" in error_str:
        return ProviderTimeoutError(f"Timeout: {message}", status, error)
    for pattern in RATE_LIMIT_PATTERNS:
        if re.search(pattern, error_str):
            return RateLimitError(f"Rate limit: {message}", status, error)
    for pattern in AUTH_PATTERNS:
        if re.search(pattern, error_str):
            return ProviderAuthError(f"Authentication error: {message}", status, error)

    return UnknownProviderError(message, status, error)


def is_retryable_status(status_code: Optional[int]) -> bool:
    """Transient statuses that may be retried before any token was sent."""
    if status_code is None:
        return False
    return status_code == 429 or status_code >= 500
