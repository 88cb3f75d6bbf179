"""
Main Entry Point for the StreamChat server.

Creates the Flask application, registers shutdown cleanup for the chat
services, and serves HTTP plus Socket.IO on ``Config.HOST``/``Config.PORT``.

Shutdown:
    Components register cleanup callbacks with `register_cleanup_function`.
    They run once, in LIFO order, on SIGINT/SIGTERM (SIGBREAK on Windows) or
    at interpreter exit.

Example:
    $ python run.py

    $ FLASK_DEBUG=true STREAMCHAT_HOST=0.0.0.0 STREAMCHAT_PORT=3002 python run.py
"""

import atexit
import os
import signal
import sys
import threading

# Fix Windows console encoding issues
if sys.platform == 'win32':
    os.environ['PYTHONIOENCODING'] = 'utf-8'

from streamchat_app import create_app, socketio
from streamchat_app.config import Config
from streamchat_app.logger import log_info, log_error, log_warning

# Global cleanup registry
_cleanup_functions = []
_cleanup_lock = threading.Lock()
_cleanup_executed = False


def register_cleanup_function(func, description="Cleanup function"):
    """
    Register a function to be called during application shutdown.

    Cleanup functions run in LIFO order so that components registered later
    (which may depend on earlier ones) are torn down first.

    Args:
        func (callable): Takes no arguments.
        description (str): Used in log output.
    """
    with _cleanup_lock:
        _cleanup_functions.append((func, description))
    log_info(f"[CLEANUP] Registered: {description}")


def execute_global_cleanup():
    """Run every registered cleanup function once, newest first"""
    global _cleanup_executed
    with _cleanup_lock:
        if _cleanup_executed:
            return
        _cleanup_executed = True

        for func, description in reversed(_cleanup_functions):  # LIFO order
            try:
                func()
            except Exception as e:
                log_error(f"[CLEANUP] Error in {description}: {e}")
        log_info("[CLEANUP] Global cleanup completed")


def signal_handler(signum, frame):
    """Handle termination signals for graceful shutdown"""
    log_info(f"[SIGNAL] Received signal {signum}, initiating cleanup...")
    execute_global_cleanup()
    sys.exit(0)


def install_signal_handlers():
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    if hasattr(signal, 'SIGBREAK'):  # Windows
        signal.signal(signal.SIGBREAK, signal_handler)
    atexit.register(execute_global_cleanup)


def main():
    """Create the app and serve it, falling back to nearby ports if the configured one is taken"""
    install_signal_handlers()

    app = create_app()
    register_cleanup_function(app.stream_dispatcher.shutdown, "Stream workers")
    register_cleanup_function(app.generation_adapter.close, "Generation backend session")

    host = Config.HOST
    port = Config.PORT
    debug = Config.DEBUG

    if not app.config['GEMINI_API_KEY']:
        log_warning("GEMINI_API_KEY is not set; replies will use the offline fallback")

    log_info(f"Starting StreamChat server on http://{host}:{port} (environment: {Config.ENVIRONMENT})")
    try:
        socketio.run(app, debug=debug, host=host, port=port,
                     allow_unsafe_werkzeug=True, use_reloader=False)
    except OSError as e:
        log_error(f"Failed to start server on port {port}: {e}")
        for fallback_port in (port + 1, port + 2, port + 3):
            try:
                log_info(f"[RETRY] Attempting to start on port {fallback_port}...")
                socketio.run(app, debug=debug, host=host, port=fallback_port,
                             allow_unsafe_werkzeug=True, use_reloader=False)
                break
            except OSError as ee:
                log_error(f"Port {fallback_port} failed: {ee}")
        else:
            raise RuntimeError("All fallback ports failed")
    finally:
        execute_global_cleanup()


if __name__ == '__main__':
    main()
