"""
StreamChat - real-time AI chat server.

This package provides the Flask application factory and the shared Socket.IO
server. One application instance owns one set of chat services:

- SessionDirectory: which live socket connection belongs to which user
- MessageStorage: persistent chat history
- GenerationAdapter: Gemini backend with a canned offline fallback
- StreamingCoordinator: store -> generate -> store -> stream pipeline
- StreamDispatcher: one ordered worker per socket connection

They are attached to the app (``app.session_directory`` and so on) and
reached from views and socket handlers through ``current_app``.

Example:
    >>> from streamchat_app import create_app, socketio
    >>> app = create_app()
    >>> socketio.run(app, host='127.0.0.1', port=3001)
"""

import threading
import time
from datetime import datetime, timezone

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_login import LoginManager
from flask_socketio import SocketIO

# Import configuration and logging
from .config import Config
from .logger import logger, log_api_request

login_manager = LoginManager()
jwt = JWTManager()

# Initialize SocketIO
socketio = SocketIO(async_mode='threading')

_handlers_lock = threading.Lock()
_handlers_registered = False


def _register_socket_handlers():
    """Handlers live on the shared SocketIO object; register them only once"""
    global _handlers_registered
    with _handlers_lock:
        if _handlers_registered:
            return
        from .api.chat import register_chat_socketio_handlers
        register_chat_socketio_handlers(socketio)
        _handlers_registered = True


def _cors_origins(app):
    if app.config.get('DEBUG') or app.config.get('STREAMCHAT_TEST_MODE') or app.config.get('TESTING'):
        return "*"
    return [app.config['FRONTEND_URL']]


def create_app(config_overrides=None):
    """
    Application factory.

    Args:
        config_overrides (dict, optional): Values applied on top of `Config`
            before any extension is initialized (tests use this to point the
            database at a temporary file and to disable chunk pacing).

    Returns:
        Flask: The configured application with its chat services attached.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Track startup time for health checks
    app.config['STARTUP_TIME'] = time.time()

    if app.config['SQLALCHEMY_DATABASE_URI'] == Config.SQLALCHEMY_DATABASE_URI:
        Config.ensure_user_data_dirs()

    origins = _cors_origins(app)
    CORS(app, origins=origins, supports_credentials=True)

    # Initialize extensions
    from .models import db
    db.init_app(app)
    jwt.init_app(app)
    login_manager.init_app(app)

    from .auth import init_auth
    init_auth(app, login_manager)

    with app.app_context():
        db.create_all()

    _attach_chat_services(app)

    # Register blueprints
    from .api import api_bp
    app.register_blueprint(api_bp)

    from .utils.error_handling import ApplicationError
    from .utils.api_response_utils import format_application_error

    @app.errorhandler(ApplicationError)
    def handle_application_error(error):
        return format_application_error(error)

    @app.route('/health')
    @app.route('/api/health')
    def health_check():
        """Liveness plus the state of the storage and generation services"""
        log_api_request(request.path, request.method)
        return jsonify({
            'status': 'ok',
            'time': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'uptime': round(time.time() - app.config['STARTUP_TIME'], 3),
            'environment': app.config['ENVIRONMENT'],
            'services': {
                'database': app.message_storage.is_available(),  # type: ignore[attr-defined]
                'ai': app.generation_adapter.get_service_status(),  # type: ignore[attr-defined]
                'connections': app.session_directory.count(),  # type: ignore[attr-defined]
            },
        })

    from .commands import register_commands
    register_commands(app)

    # Register WebSocket event handlers before binding the server
    _register_socket_handlers()
    socketio.init_app(app, async_mode='threading', cors_allowed_origins=origins,
                      logger=False, engineio_logger=False)

    logger.info(f"StreamChat {app.config['VERSION']} initialized ({app.config['ENVIRONMENT']})")
    return app


def _attach_chat_services(app):
    """Build the per-app chat services and attach them to ``app``"""
    from .api.chat import CHAT_NAMESPACE
    from .core.generation import GenerationAdapter
    from .core.message_storage import MessageStorage
    from .core.session_directory import SessionDirectory
    from .core.stream_worker import StreamDispatcher
    from .core.streaming import StreamingCoordinator

    config = app.config

    def deliver(connection, event, payload):
        socketio.emit(event, payload, to=connection.sid, namespace=CHAT_NAMESPACE)

    directory = SessionDirectory()
    storage = MessageStorage()
    generator = GenerationAdapter.from_config(config)
    coordinator = StreamingCoordinator(
        storage=storage,
        generator=generator,
        directory=directory,
        deliver=deliver,
        sleep=lambda seconds: socketio.sleep(seconds),
        chunk_delay=config['STREAM_CHUNK_DELAY'],
        max_chunk_chars=config['STREAM_MAX_CHUNK_CHARS'],
        context_window=config['CONTEXT_WINDOW'],
        use_token_stream=config['GEMINI_STREAMING'],
        max_message_length=config['MAX_MESSAGE_LENGTH'],
    )
    dispatcher = StreamDispatcher(
        handler=coordinator.handle_push,
        start_task=lambda target, *args: socketio.start_background_task(target, *args),
        app=app,
        inline=config['STREAM_INLINE_DISPATCH'],
    )

    # Attach services to app for access from views and socket handlers
    app.session_directory = directory  # type: ignore
    app.message_storage = storage  # type: ignore
    app.generation_adapter = generator  # type: ignore
    app.streaming_coordinator = coordinator  # type: ignore
    app.stream_dispatcher = dispatcher  # type: ignore


# Export socketio for use in run.py
__all__ = ['create_app', 'socketio']
