"""Exception hierarchy for the gateway.

Every error raised inside the gateway carries a symbolic ``code`` from the
error table in :mod:`fxgate.core.response`, optional ``details`` and an
HTTP status.  FastAPI exception handlers in :mod:`fxgate.main` turn them
into error envelopes; the dispatcher does the same for handler failures.
"""
from typing import Any, Optional


class FxError(Exception):
    """Base exception for gateway errors."""
    code: str = "INTERNAL_ERROR"
    status_code: Optional[int] = None

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Any = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_response(self) -> dict:
        """Render as an error envelope."""
        from fxgate.core.response import error_response

        return error_response(self.code, self.message, self.details, self.status_code)


class ValidationFailed(FxError):
    """Raised when handler input does not match its schema."""
    code = "VALIDATION_FAILED"

    def __init__(self, message: str = "Validation failed", details: Any = None):
        super().__init__(message, details=details if details is not None else [])


class FunctionNotFound(FxError):
    """Raised when no handler is registered for a category/function pair."""
    code = "FUNCTION_NOT_FOUND"

    def __init__(self, category: str, function: str, available_categories=None):
        self.category = category
        self.function = function
        super().__init__(
            f"Function '{category}/{function}' not found",
            details={
                "category": category,
                "function": function,
                "availableCategories": list(available_categories or []),
            },
        )


class InvalidFunctionResponse(FxError):
    """Raised when a handler returns something that is not an envelope."""
    code = "INVALID_FUNCTION_RESPONSE"

    def __init__(self, category: str, function: str):
        super().__init__(
            f"Function '{category}/{function}' returned an invalid response",
            details={"category": category, "function": function},
        )


class StorageError(FxError):
    """Raised by the temp storage manager (missing, oversize, I/O)."""
    code = "STORAGE_ERROR"


class UpstreamError(FxError):
    """Raised when an outbound API call fails after all retries."""
    code = "API_ERROR"

    def __init__(self, message: str, url: str = "", status: Optional[int] = None, code: Optional[str] = None):
        self.url = url
        self.upstream_status = status
        super().__init__(message, code=code, details={"url": url, "status": status})


class MediaError(FxError):
    """Raised for unreadable or unsupported media input."""
    code = "INVALID_MEDIA"


class RateLimitExceeded(FxError):
    """Raised when a client exceeds its request budget."""
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(
            "Too many requests, please try again later.",
            details={"retryAfter": retry_after},
        )
