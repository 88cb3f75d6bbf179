"""
Centralized Logging System for StreamChat
Provides structured logging with file rotation, level management, and error handling decorators
"""

import logging
import logging.handlers
import os
import sys
import threading
import time
from datetime import datetime
from functools import wraps
from flask import jsonify, has_request_context, request
from .config import Config

# Root of the package logger tree; modules using logging.getLogger(__name__) propagate here
LOGGER_NAME = 'streamchat_app'


class ChatLogger:
    """Centralized logger for the StreamChat application"""

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(ChatLogger, cls).__new__(cls)
                    cls._instance._logger = None
                    cls._instance._setup_logger()
        return cls._instance

    def _setup_logger(self):
        """Setup the main application logger"""
        self._logger = logging.getLogger(LOGGER_NAME)
        self._logger.setLevel(getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO))

        # Clear existing handlers
        self._logger.handlers.clear()

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        self._logger.addHandler(console_handler)

        # Setup file handler with rotation
        try:
            log_dir = os.path.dirname(Config.LOG_FILE_PATH)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                Config.LOG_FILE_PATH,
                maxBytes=Config.LOG_MAX_BYTES,
                backupCount=Config.LOG_BACKUP_COUNT,
                encoding='utf-8'
            )
            file_handler.setLevel(getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO))
            file_handler.setFormatter(formatter)
            self._logger.addHandler(file_handler)

        except OSError as e:
            self._logger.error(f"Failed to setup file logging: {e}")

        self._logger.info(f"StreamChat {Config.VERSION} - Logging system initialized")
        self._logger.debug(f"Log level: {Config.LOG_LEVEL}, log file: {Config.LOG_FILE_PATH}")

        # Simple deduplication cache for noisy API logs
        self._api_log_cache = {}
        self._api_log_window_seconds = 5

    def debug(self, message, **kwargs):
        self._logger.debug(message, **kwargs)

    def info(self, message, **kwargs):
        self._logger.info(message, **kwargs)

    def warning(self, message, **kwargs):
        self._logger.warning(message, **kwargs)

    def error(self, message, **kwargs):
        self._logger.error(message, **kwargs)

    def log_exception(self, exception, context=None):
        """
        Log exception with structured context

        Args:
            exception: The exception that occurred
            context: Additional context information

        Returns:
            The structured context dict that was logged
        """
        error_context = {
            'exception_type': type(exception).__name__,
            'exception_message': str(exception),
            'timestamp': datetime.now().isoformat(),
            'context': context or {}
        }

        if has_request_context():
            error_context['request'] = {
                'method': request.method,
                'endpoint': request.endpoint,
                'url': request.url,
                'ip': request.remote_addr,
                'user_agent': request.headers.get('User-Agent', 'Unknown')
            }

        self._logger.error(
            f"Exception: {error_context['exception_type']}: {error_context['exception_message']}",
            extra={'error_context': error_context},
            exc_info=exception
        )
        return error_context

    def log_user_action(self, user_id, action, details=None):
        """Log user actions for auditing"""
        message = f"User {user_id} - {action}"
        if details:
            message += f" - {details}"
        self._logger.info(message)

    def log_api_request(self, endpoint, method, user_id=None, ip_address=None):
        """Log API requests, skipping repeats of the same endpoint within a short window"""
        message = f"API {method} {endpoint}"
        if user_id:
            message += f" - User: {user_id}"
        if ip_address:
            message += f" - IP: {ip_address}"

        key = f"{method}:{endpoint}"
        now = time.time()
        window = self._api_log_window_seconds
        # Health probes are polled constantly
        if endpoint and 'health' in endpoint:
            window = max(window, 30)
        last = self._api_log_cache.get(key, 0)
        if now - last >= window:
            self._api_log_cache[key] = now
            self._logger.info(message)


# Global logger instance
logger = ChatLogger()


# Convenience functions
def log_info(message, **kwargs):
    logger.info(message, **kwargs)

def log_warning(message, **kwargs):
    logger.warning(message, **kwargs)

def log_error(message, **kwargs):
    logger.error(message, **kwargs)

def log_debug(message, **kwargs):
    logger.debug(message, **kwargs)

def log_user_action(user_id, action, details=None):
    logger.log_user_action(user_id, action, details)

def log_api_request(endpoint, method, user_id=None, ip_address=None):
    logger.log_api_request(endpoint, method, user_id, ip_address)


def log_execution_time(func):
    """Decorator to log function execution time"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
            execution_time = time.time() - start_time
            logger.debug(f"Function {func.__name__} executed in {execution_time:.3f}s")
            return result
        except Exception as e:
            execution_time = time.time() - start_time
            logger.error(f"Function {func.__name__} failed after {execution_time:.3f}s: {str(e)}")
            raise
    return wrapper


def handle_api_errors(f):
    """Decorator to handle unexpected API errors with structured logging.

    ApplicationError subclasses are re-raised so the app-level error handler
    can map them onto their own status codes.
    """
    from .utils.error_handling import ApplicationError

    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ApplicationError:
            raise
        except Exception as e:
            error_context = logger.log_exception(e, {
                'function': f.__name__,
                'args': str(args),
                'kwargs': str(kwargs)
            })

            return jsonify({
                'success': False,
                'data': None,
                'error': 'Internal server error',
                'error_type': 'internal_error',
                'error_id': error_context.get('timestamp', 'unknown')
            }), 500
    return wrapper
