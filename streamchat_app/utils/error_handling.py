"""
Error taxonomy for StreamChat.

Every failure the chat pipeline can surface to a caller is an
`ApplicationError` subclass carrying an internal message (for logs), a
user-facing message (for HTTP bodies and socket `error` events), a numeric
code and the HTTP status it maps to. Which stage raised the error determines
what has already been persisted:

- ValidationError: before anything is stored
- GenerationError: after the user message is stored, before the reply is
- DeliveryError: after both messages are stored; never rolls anything back
"""

from datetime import datetime, timezone
from typing import Dict, Any, Optional


class ErrorCode:
    """Standardized error codes for the application"""

    # General errors (1000-1999)
    UNKNOWN_ERROR = 1000
    AUTHENTICATION_FAILED = 1002

    # Validation errors (2000-2999)
    VALIDATION_ERROR = 2000
    MISSING_FIELD = 2001
    OUT_OF_RANGE = 2003

    # AI/Model errors (4000-4999)
    MODEL_ERROR = 4000
    EMPTY_RESPONSE = 4006

    # Delivery errors (6000-6999)
    DELIVERY_FAILED = 6005


class ApplicationError(Exception):
    """Base application error with enhanced context"""

    status_code = 500
    error_type = 'internal_error'

    def __init__(self, message: str, code: int = ErrorCode.UNKNOWN_ERROR,
                 details: Optional[Dict[str, Any]] = None, cause: Optional[Exception] = None,
                 user_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.cause = cause
        self.user_message = user_message or self._generate_user_message()
        self.timestamp = datetime.now(timezone.utc)

    def _generate_user_message(self) -> str:
        """Generate user-friendly message based on error code"""
        user_messages = {
            ErrorCode.VALIDATION_ERROR: "The provided data is invalid. Please check your input.",
            ErrorCode.MISSING_FIELD: "A required field is missing.",
            ErrorCode.AUTHENTICATION_FAILED: "Authentication failed. Please check your credentials.",
            ErrorCode.MODEL_ERROR: "Failed to generate AI response",
            ErrorCode.EMPTY_RESPONSE: "Failed to generate AI response",
        }
        return user_messages.get(self.code, "An unexpected error occurred. Please try again.")

    def to_event(self) -> Dict[str, Any]:
        """Payload for a socket `error` event; never carries internal detail"""
        return {
            'message': self.user_message,
            'code': self.code,
            'timestamp': self.timestamp.isoformat()
        }


class ValidationError(ApplicationError):
    """Malformed or empty input. Raised before any persistence."""

    status_code = 400
    error_type = 'validation_error'

    def __init__(self, message: str, code: int = ErrorCode.VALIDATION_ERROR, **kwargs):
        kwargs.setdefault('user_message', message)
        super().__init__(message, code=code, **kwargs)


class AuthenticationError(ApplicationError):
    """Missing, invalid or expired credential"""

    status_code = 401
    error_type = 'authentication_error'

    def __init__(self, message: str = 'Authentication failed', **kwargs):
        super().__init__(message, code=ErrorCode.AUTHENTICATION_FAILED, **kwargs)


class GenerationError(ApplicationError):
    """The generation step failed or produced blank text"""

    status_code = 500
    error_type = 'generation_error'

    def __init__(self, message: str, code: int = ErrorCode.MODEL_ERROR, **kwargs):
        super().__init__(message, code=code, **kwargs)


class DeliveryError(ApplicationError):
    """No live connection for the target user; the stream is dropped"""

    status_code = 410
    error_type = 'delivery_error'

    def __init__(self, user_id: str, stream_id: Optional[str] = None, **kwargs):
        details = {'user_id': user_id, 'stream_id': stream_id}
        super().__init__(
            f"No live connection for user {user_id}",
            code=ErrorCode.DELIVERY_FAILED,
            details=details,
            user_message="Connection lost while delivering the response",
            **kwargs
        )
        self.user_id = user_id
        self.stream_id = stream_id
