"""
Centralized Configuration Management for StreamChat.

All runtime settings are read once from environment variables (with `.env`
support through python-dotenv) into the `Config` class, which the application
factory loads with `app.config.from_object(Config)`. Individual keys can then
be overridden per app instance, which is how the test suite isolates its
database and disables pacing delays.

Configuration areas:
- Application metadata (version, name, environment)
- Security (Flask secret key, JWT signing key and expiry, fixed credentials)
- Database location (SQLite file inside the user data directory)
- Network (bind host and port, allowed frontend origin)
- Generation backend (Gemini key, model, timeout, token streaming)
- Streaming (chunk size, pacing delay, history window, message limits)
- Client connection lifecycle (retry cap, delays, rejoin interval)
- Logging (level, rotating log file)

Example:
    >>> from streamchat_app.config import Config
    >>> Config.ensure_user_data_dirs()
    >>> print(Config.SQLALCHEMY_DATABASE_URI)
"""

import os
import secrets
import logging
from datetime import timedelta
from pathlib import Path
from dotenv import load_dotenv

# Application version
STREAMCHAT_VERSION = "1.0.0"

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str = 'False') -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 'yes', 'on')


def _user_data_dir() -> Path:
    if os.name == 'nt':  # Windows
        base = os.getenv('LOCALAPPDATA') or os.path.join(os.path.expanduser("~"), "AppData", "Local")
        return Path(base) / "StreamChat"
    return Path(os.path.expanduser("~")) / ".local" / "share" / "streamchat"


def _secure_key(env_name: str, default: str) -> str:
    """Return the configured key, or a random one outside debug/test when only the default is set"""
    raw = os.getenv(env_name, default)
    if raw != default:
        return raw

    debug_mode = _env_bool('FLASK_DEBUG')
    test_mode = _env_bool('STREAMCHAT_TEST_MODE')
    if debug_mode or test_mode:
        return raw

    logging.warning(
        f"SECURITY WARNING: Default {env_name} detected in production mode. "
        "A random key has been generated for this session; tokens will not "
        "survive a restart. Set a permanent value in the environment."
    )
    return secrets.token_hex(32)


class Config:
    """
    Application configuration for StreamChat.

    Values are class attributes so that they can be consumed both through
    `app.config` (inside request or socket handlers) and directly (for
    example by the logger, which is configured before any app exists).

    Attributes:
        SECRET_KEY (str): Flask secret key.
        JWT_SECRET_KEY (str): Key used to sign and verify access tokens.
        SQLALCHEMY_DATABASE_URI (str): Chat history database.
        STREAM_CHUNK_DELAY (float): Pause between two pushed chunks, in seconds.
        STREAM_MAX_CHUNK_CHARS (int): Soft upper bound of one chunk's length.
        CONTEXT_WINDOW (int): Number of previous messages handed to the backend.
        ALLOW_ANONYMOUS_SOCKETS (bool): Accept sockets that present no token.
    """

    # Application Info
    VERSION = STREAMCHAT_VERSION
    ENVIRONMENT = os.getenv('APP_ENV', 'development')
    DEBUG = _env_bool('FLASK_DEBUG')
    STREAMCHAT_TEST_MODE = _env_bool('STREAMCHAT_TEST_MODE')

    # Security Configuration
    SECRET_KEY = _secure_key('SECRET_KEY', 'dev-secret-key-change-in-production')
    JWT_SECRET_KEY = _secure_key('JWT_SECRET', 'dev-jwt-secret-change-in-production')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.getenv('JWT_EXPIRES_HOURS', '24')))
    JWT_TOKEN_LOCATION = ['headers']

    # Fixed credential pair (no user registry)
    AUTH_USERNAME = os.getenv('AUTH_USERNAME', 'admin')
    AUTH_PASSWORD = os.getenv('AUTH_PASSWORD', 'password')
    AUTH_USER_ID = os.getenv('AUTH_USER_ID', '1')
    AUTH_MAX_FAILED_ATTEMPTS = int(os.getenv('AUTH_MAX_FAILED_ATTEMPTS', '5'))
    AUTH_LOCKOUT_WINDOW = int(os.getenv('AUTH_LOCKOUT_WINDOW', '300'))  # 5 minutes

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URI', f"sqlite:///{_user_data_dir() / 'streamchat.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'connect_args': {
            'check_same_thread': False,  # For SQLite
            'timeout': 20                # SQLite busy timeout
        }
    }

    # Server Configuration
    HOST = os.getenv('STREAMCHAT_HOST', '127.0.0.1')
    PORT = int(os.getenv('STREAMCHAT_PORT', '3001'))
    FRONTEND_URL = os.getenv('FRONTEND_URL', 'http://localhost:3000')

    # Generation backend (Google Gemini)
    GEMINI_API_KEY = os.getenv('GEMINI_API_KEY', '')
    GEMINI_MODEL = os.getenv('GEMINI_MODEL', 'gemini-2.0-flash')
    GEMINI_TIMEOUT = int(os.getenv('GEMINI_TIMEOUT', '30'))
    GEMINI_STREAMING = _env_bool('GEMINI_STREAMING')

    # Streaming
    STREAM_CHUNK_DELAY = float(os.getenv('STREAM_CHUNK_DELAY', '0.1'))
    STREAM_MAX_CHUNK_CHARS = int(os.getenv('STREAM_MAX_CHUNK_CHARS', '20'))
    CONTEXT_WINDOW = int(os.getenv('CONTEXT_WINDOW', '20'))
    MAX_MESSAGE_LENGTH = int(os.getenv('MAX_MESSAGE_LENGTH', '1000'))
    ALLOW_ANONYMOUS_SOCKETS = _env_bool('ALLOW_ANONYMOUS_SOCKETS', 'True')
    # Handle socket messages inside the event handler instead of per-connection workers
    STREAM_INLINE_DISPATCH = _env_bool('STREAM_INLINE_DISPATCH')

    # Client connection lifecycle
    CLIENT_MAX_RECONNECT_ATTEMPTS = int(os.getenv('CLIENT_MAX_RECONNECT_ATTEMPTS', '5'))
    CLIENT_RECONNECT_DELAY = float(os.getenv('CLIENT_RECONNECT_DELAY', '2'))
    CLIENT_REJOIN_INTERVAL = float(os.getenv('CLIENT_REJOIN_INTERVAL', '30'))
    CLIENT_CONNECT_TIMEOUT = float(os.getenv('CLIENT_CONNECT_TIMEOUT', '10'))

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE_PATH = os.getenv('LOG_FILE_PATH', str(_user_data_dir() / 'logs' / 'streamchat.log'))
    LOG_MAX_BYTES = int(os.getenv('LOG_MAX_BYTES', str(10 * 1024 * 1024)))  # 10MB
    LOG_BACKUP_COUNT = int(os.getenv('LOG_BACKUP_COUNT', '5'))

    _dirs_initialized = False

    @staticmethod
    def get_user_data_dir():
        """
        Get the platform-appropriate user data directory.

        Returns:
            Path: ``%LOCALAPPDATA%/StreamChat`` on Windows,
            ``~/.local/share/streamchat`` elsewhere.
        """
        return _user_data_dir()

    @classmethod
    def ensure_user_data_dirs(cls):
        """Create the data and log directories, falling back to the working directory"""
        if cls._dirs_initialized:
            return

        targets = [cls.get_user_data_dir(), Path(cls.LOG_FILE_PATH).parent]
        for target in targets:
            try:
                target.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logging.warning(f"Could not create {target}: {e}; using working directory")
                Path('instance').mkdir(exist_ok=True)
        cls._dirs_initialized = True

    @classmethod
    def get_client_settings(cls):
        """Connection lifecycle settings consumed by the chat client"""
        return {
            'max_attempts': cls.CLIENT_MAX_RECONNECT_ATTEMPTS,
            'reconnect_delay': cls.CLIENT_RECONNECT_DELAY,
            'rejoin_interval': cls.CLIENT_REJOIN_INTERVAL,
            'connect_timeout': cls.CLIENT_CONNECT_TIMEOUT,
        }
