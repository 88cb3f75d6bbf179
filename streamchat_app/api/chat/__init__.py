"""
Chat API Package - HTTP and real-time chat surfaces.

- rest_api: request/response chat, push-mode submission and history over HTTP
- websocket_handlers: the ``/chat`` Socket.IO namespace (join, message, stream-chunk)

Both surfaces share the services the application factory attaches to the app:
the Session Directory, the Streaming Coordinator and the Stream Dispatcher.

Package Exports:
    - chat_bp: Flask blueprint with REST API endpoints
    - register_chat_socketio_handlers: WebSocket event handler registration
    - CHAT_NAMESPACE: Socket.IO namespace of the chat channel
"""

from .rest_api import chat_bp
from .websocket_handlers import register_chat_socketio_handlers, CHAT_NAMESPACE

__all__ = ['chat_bp', 'register_chat_socketio_handlers', 'CHAT_NAMESPACE']
