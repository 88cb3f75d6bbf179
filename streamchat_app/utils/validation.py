"""
Chat message validation shared by the HTTP and socket entry points.
"""

from typing import Any

from .error_handling import ValidationError, ErrorCode

DEFAULT_MAX_MESSAGE_LENGTH = 1000


def validate_message(message: Any, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH) -> str:
    """
    Validate an inbound chat message and return it trimmed.

    Raises:
        ValidationError: the message is missing, not text, blank, or longer
            than ``max_length`` characters.
    """
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Message cannot be empty", code=ErrorCode.MISSING_FIELD)

    message = message.strip()
    if len(message) > max_length:
        raise ValidationError(
            f"Message too long. Maximum {max_length} characters allowed.",
            code=ErrorCode.OUT_OF_RANGE,
            details={'length': len(message), 'max_length': max_length}
        )
    return message


def extract_message_text(data: Any) -> Any:
    """Accept either a bare string or a ``{"message": ...}`` object"""
    if isinstance(data, dict):
        return data.get('message')
    return data
