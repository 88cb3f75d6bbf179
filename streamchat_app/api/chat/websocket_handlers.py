"""
WebSocket Event Handlers for Real-time Chat Communication
==========================================================

Socket.IO handlers of the ``/chat`` namespace. They bind connections to user
identities through the Session Directory and hand accepted messages to the
connection's worker, which runs the Streaming Coordinator in push mode.

WebSocket Events:

    Client to Server:
        - 'join' (userId): bind this connection to a user id. Repeated joins
          are idempotent and also used as a keep-alive by clients.
        - 'message' ({message}): send a chat message. The ack is
          ``{'accepted': bool}``; the reply arrives as 'stream-chunk' events.

    Server to Client:
        - 'connected': handshake accepted ({message, timestamp, clientId})
        - 'joined': join accepted ({success, userId, timestamp})
        - 'typing': generation started or finished ({isTyping, timestamp})
        - 'stream-chunk': one piece of a reply (see `core.streaming.StreamChunk`)
        - 'error': per-event failure ({message, code?, timestamp})

Authentication:
    The handshake carries ``auth={'token': <access token>}``. A missing token
    or the literal ``'no-token'`` is accepted only while
    ``ALLOW_ANONYMOUS_SOCKETS`` is on (debug mode); an invalid token is always
    refused.
"""

from functools import wraps
from typing import Optional

from flask import current_app, request, session
from flask_socketio import emit, ConnectionRefusedError

from ...auth import verify_token, ANONYMOUS_TOKEN
from ...logger import logger, log_info, log_warning, log_debug
from ...models import utc_now
from ...core.session_directory import ConnectionHandle
from ...utils.error_handling import ApplicationError, AuthenticationError, ValidationError
from ...utils.validation import validate_message, extract_message_text

CHAT_NAMESPACE = '/chat'

NOT_JOINED_MESSAGE = 'User not in any room. Please reconnect.'
INVALID_USER_MESSAGE = 'Invalid user ID'

_SESSION_TOKEN_KEY = 'connection_token'
_SESSION_USER_KEY = 'auth_user_id'


def _timestamp() -> str:
    return utc_now().isoformat() + 'Z'


def handle_websocket_errors(f):
    """Decorator for WebSocket error handling"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ApplicationError as e:
            emit('error', e.to_event())
            return {'accepted': False, 'error': e.user_message}
        except Exception as e:
            logger.log_exception(e, {'event': f.__name__, 'sid': getattr(request, 'sid', None)})
            emit('error', {'message': 'Failed to process message', 'timestamp': _timestamp()})
            return {'accepted': False, 'error': 'Failed to process message'}
    return decorated_function


def current_connection() -> Optional[ConnectionHandle]:
    """The handle minted for the socket that sent the current event"""
    token = session.get(_SESSION_TOKEN_KEY)
    if not token:
        return None
    return ConnectionHandle(sid=request.sid, token=token)  # type: ignore[attr-defined]


def _handshake_token(auth) -> Optional[str]:
    if isinstance(auth, dict) and auth.get('token'):
        return auth['token']
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip()
    return None


def _join_payload_user(data) -> Optional[str]:
    if isinstance(data, dict):
        return data.get('userId')
    return data


def register_chat_socketio_handlers(socketio):
    """Register WebSocket event handlers for chat"""

    @socketio.on('connect', namespace=CHAT_NAMESPACE)
    def handle_connect(auth=None):
        """Accept or refuse the handshake, then open the connection's worker"""
        token = _handshake_token(auth)
        anonymous = not token or token == ANONYMOUS_TOKEN
        user_id = None

        if anonymous:
            if not current_app.config.get('ALLOW_ANONYMOUS_SOCKETS', False):
                log_info(f"WebSocket connection rejected: no token from {request.remote_addr}")
                raise ConnectionRefusedError('authentication required')
            log_warning(f"Client {request.sid} connected without token (debug mode)")  # type: ignore[attr-defined]
        else:
            try:
                user_id = verify_token(token).id
            except AuthenticationError as e:
                log_info(f"WebSocket connection rejected: {e.message}")
                raise ConnectionRefusedError('authentication failed')

        connection = ConnectionHandle.accept(request.sid)  # type: ignore[attr-defined]
        session[_SESSION_TOKEN_KEY] = connection.token
        session[_SESSION_USER_KEY] = user_id
        current_app.stream_dispatcher.open(connection)  # type: ignore[attr-defined]

        payload = {
            'message': 'Connected to chat server (debug mode)' if anonymous else 'Connected to chat server',
            'timestamp': _timestamp(),
            'clientId': connection.sid,
        }
        if anonymous:
            payload['warning'] = 'No authentication token provided'
        emit('connected', payload)
        log_info(f"Client connected: {connection.sid}" + (f" (user {user_id})" if user_id else ''))

    @socketio.on('disconnect', namespace=CHAT_NAMESPACE)
    def handle_disconnect(reason=None):
        """Release the directory binding if this connection still holds it"""
        connection = current_connection()
        if connection is None:
            return
        user_id = current_app.session_directory.leave(connection)  # type: ignore[attr-defined]
        current_app.stream_dispatcher.close(connection)  # type: ignore[attr-defined]
        session.pop(_SESSION_TOKEN_KEY, None)
        if user_id:
            log_info(f"User {user_id} disconnected ({connection.sid})")
        else:
            log_debug(f"Client disconnected: {connection.sid}")

    @socketio.on('join', namespace=CHAT_NAMESPACE)
    @handle_websocket_errors
    def handle_join(data):
        """Bind this connection to a user id"""
        connection = current_connection()
        if connection is None:
            emit('error', {'message': NOT_JOINED_MESSAGE, 'timestamp': _timestamp()})
            return {'success': False}

        try:
            user_id = current_app.session_directory.join(_join_payload_user(data), connection)  # type: ignore[attr-defined]
        except ValidationError:
            emit('error', {'message': INVALID_USER_MESSAGE, 'timestamp': _timestamp()})
            return {'success': False}

        token_user = session.get(_SESSION_USER_KEY)
        if token_user and token_user != user_id:
            log_warning(f"Connection {connection.sid} authenticated as {token_user} joined as {user_id}")

        emit('joined', {'success': True, 'userId': user_id, 'timestamp': _timestamp()})
        return {'success': True}

    @socketio.on('message', namespace=CHAT_NAMESPACE)
    @handle_websocket_errors
    def handle_message(data):
        """Queue a chat message for the connection's worker"""
        connection = current_connection()
        user_id = current_app.session_directory.user_for(connection) if connection else None  # type: ignore[attr-defined]
        if not user_id:
            emit('error', {'message': NOT_JOINED_MESSAGE, 'timestamp': _timestamp()})
            return {'accepted': False, 'error': NOT_JOINED_MESSAGE}

        text = validate_message(
            extract_message_text(data),
            current_app.config.get('MAX_MESSAGE_LENGTH', 1000)
        )
        log_debug(f"Message from user {user_id} on {connection.sid}: {text[:50]}")

        accepted = current_app.stream_dispatcher.submit(connection, user_id, text)  # type: ignore[attr-defined]
        if not accepted:
            emit('error', {'message': NOT_JOINED_MESSAGE, 'timestamp': _timestamp()})
        return {'accepted': accepted}
