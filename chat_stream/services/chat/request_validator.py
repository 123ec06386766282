"""Validation of inbound chat turn requests."""

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from chat_stream.core.errors import ValidationError
from chat_stream.core.logging import get_logger
from chat_stream.models.chat import ChatTurnRequest
from chat_stream.utils.error_handlers import summarize_validation_errors

logger = get_logger(__name__)


def validate_chat_request(payload: Any) -> ChatTurnRequest:
    """Parse and validate a raw request body.

    Args:
        payload: Decoded JSON body.

    Returns:
        The immutable ChatTurnRequest.

    Raises:
        ValidationError: If the body is not an object or violates a field rule.
    """
    if not isinstance(payload, dict):
        raise ValidationError(
            "Invalid request body",
            errors=[{"field": None, "message": "Request body must be a JSON object"}],
        )

    try:
        return ChatTurnRequest.model_validate(payload)
    except PydanticValidationError as e:
        errors = summarize_validation_errors(e.errors())
        logger.info("Rejected chat request", extra={"validation_errors": errors})
        raise ValidationError("Invalid request body", errors=errors) from e
