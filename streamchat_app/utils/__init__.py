"""
Utilities module initialization - error taxonomy and response helpers.
"""

from .error_handling import (
    ErrorCode,
    ApplicationError,
    ValidationError,
    AuthenticationError,
    GenerationError,
    DeliveryError,
)

__all__ = [
    'ErrorCode',
    'ApplicationError',
    'ValidationError',
    'AuthenticationError',
    'GenerationError',
    'DeliveryError',
]
