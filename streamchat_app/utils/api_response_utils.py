"""
Standardized API response utilities for consistent error handling
"""

from flask import jsonify, Response
from typing import Dict, Any, Optional, Tuple
from ..logger import log_error


def format_error_response(
    error_message: str,
    error_type: str = 'internal_error',
    status_code: int = 500,
    details: Optional[Dict[str, Any]] = None
) -> Tuple[Response, int]:
    """Format standardized error response"""
    response = {
        'success': False,
        'data': None,
        'error': error_message,
        'error_type': error_type
    }

    if details:
        response['details'] = details

    return jsonify(response), status_code


def format_application_error(error) -> Tuple[Response, int]:
    """Map an ApplicationError onto its status code, exposing only the user message"""
    if error.status_code >= 500:
        log_error(f"{type(error).__name__}: {error.message}")
    return format_error_response(
        error_message=error.user_message,
        error_type=error.error_type,
        status_code=error.status_code
    )
