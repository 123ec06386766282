"""
Error response helpers for FastAPI endpoints.

Every error that happens before a stream is committed is rendered with the
same JSON body: ``{"error": <code>, "message": <text>, ...details}``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import status
from fastapi.responses import JSONResponse

from chat_stream.core.logging import get_logger

logger = get_logger(__name__)


class APIError(Exception):
    """Base exception for API errors with status code and details."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or "INTERNAL_ERROR"
        self.details = details or {}


def create_error_response(
    message: str,
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    error_code: str = "INTERNAL_ERROR",
    details: Optional[dict] = None,
) -> JSONResponse:
    """
    Create a standardized error response.

    Args:
        message: Human-readable error message
        status_code: HTTP status code
        error_code: Machine-readable error code
        details: Additional error details

    Returns:
        JSONResponse with standardized error format
    """
    content: Dict[str, Any] = {
        "error": error_code,
        "message": message,
    }
    if details:
        content.update(details)

    return JSONResponse(
        status_code=status_code,
        content=content,
    )


def summarize_validation_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Reduce pydantic error dicts to JSON-safe ``{field, message}`` pairs."""
    summary = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        summary.append({
            "field": ".".join(location) or None,
            "message": str(error.get("msg", "Invalid value")),
        })
    return summary
