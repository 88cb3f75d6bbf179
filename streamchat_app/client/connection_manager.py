"""
Connection Lifecycle Manager for chat clients.

Keeps one Socket.IO connection to the ``/chat`` namespace alive on behalf of
one user and turns pushed ``stream-chunk`` events back into whole replies.

Lifecycle:
    - connect(): handshake with ``auth={'token': token or 'no-token'}`` (and a
      bearer header when a token exists), bounded by ``connect_timeout``.
      Every attempt counts against ``max_attempts``; once exhausted the
      manager enters ERROR and stops retrying until `reconnect()`.
    - On connect: the attempt counter resets, ``join(userId)`` is sent, and
      ``join`` is re-sent every ``rejoin_interval`` seconds so the server-side
      binding survives server restarts and superseding tabs.
    - On disconnect: partial streams and completed-stream ids are dropped.
      Unless the disconnect was requested locally or authentication failed,
      a reconnect is scheduled after ``reconnect_delay``.
    - On connect_error: errors mentioning "unauthorized"/"authentication"
      clear the stored token and report an expired session; anything else
      takes the retry path.
    - A watchdog reconnects every ``watchdog_interval`` seconds while
      disconnected, and `on_foreground()` reconnects shortly after the host
      application regains focus.

The transport uses python-socketio's client with its own reconnection
disabled, so retry policy lives here only.
"""

import threading
from enum import Enum
from typing import Any, Callable, Optional

import socketio

from ..logger import log_info, log_warning, log_debug, log_error
from .stream_assembler import AssembledMessage, StreamAssembler

CHAT_NAMESPACE = '/chat'
ANONYMOUS_TOKEN = 'no-token'

SESSION_EXPIRED_MESSAGE = 'Session expired. Please log in again.'
ATTEMPTS_EXHAUSTED_MESSAGE = 'Failed to connect after multiple attempts'

_AUTH_FAILURE_MARKERS = ('unauthorized', 'authentication')


class ConnectionState(Enum):
    """WebSocket connection states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


def _default_client_factory():
    return socketio.Client(reconnection=False, logger=False, engineio_logger=False)


def _error_text(data: Any) -> str:
    if isinstance(data, dict):
        return str(data.get('message') or data)
    return str(data or '')


class ConnectionLifecycleManager:
    """
    Client-side connection owner for one user.

    Args:
        server_url: Base URL of the chat server.
        user_id: Identity announced with ``join``.
        token: Access token from the login endpoint, or None for debug mode.
        on_message: Called with each completed `AssembledMessage`.
        on_state_change: Called with the new `ConnectionState`.
        on_error: Called with a user-displayable error string.
        on_partial: Called with ``(stream_id, text_so_far)`` as chunks arrive.
        client_factory: Builds the Socket.IO client (tests pass a fake).
        timer_factory: ``threading.Timer``-compatible factory for delayed retries.
    """

    def __init__(self, server_url: str, user_id: str, token: Optional[str] = None,
                 namespace: str = CHAT_NAMESPACE,
                 max_attempts: int = 5,
                 reconnect_delay: float = 2.0,
                 rejoin_interval: float = 30.0,
                 connect_timeout: float = 10.0,
                 watchdog_interval: float = 3.0,
                 foreground_delay: float = 1.0,
                 on_message: Optional[Callable[[AssembledMessage], None]] = None,
                 on_state_change: Optional[Callable[[ConnectionState], None]] = None,
                 on_error: Optional[Callable[[str], None]] = None,
                 on_partial: Optional[Callable[[str, str], None]] = None,
                 client_factory: Optional[Callable[[], Any]] = None,
                 timer_factory: Optional[Callable[..., Any]] = None):
        self.server_url = server_url.rstrip('/')
        self.user_id = user_id
        self.token = token
        self.namespace = namespace
        self.max_attempts = max_attempts
        self.reconnect_delay = reconnect_delay
        self.rejoin_interval = rejoin_interval
        self.connect_timeout = connect_timeout
        self.watchdog_interval = watchdog_interval
        self.foreground_delay = foreground_delay

        self._on_message = on_message
        self._on_state_change = on_state_change
        self._on_error = on_error
        self._client_factory = client_factory or _default_client_factory
        self._timer_factory = timer_factory or threading.Timer

        self.state = ConnectionState.DISCONNECTED
        self.attempts = 0
        self.last_error: Optional[str] = None
        self.auth_failed = False
        self.assembler = StreamAssembler(user_id=user_id, on_partial=on_partial)

        self._client = None
        self._closing = False
        self._retry_timer = None
        self._lock = threading.RLock()
        self._rejoin_stop = threading.Event()
        self._rejoin_thread: Optional[threading.Thread] = None
        self._watchdog_stop = threading.Event()
        self._watchdog_thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config, server_url: str, user_id: str, token: Optional[str] = None,
                    **callbacks) -> 'ConnectionLifecycleManager':
        """Build a manager from the client settings in `Config`"""
        settings = config.get_client_settings()
        return cls(server_url, user_id, token=token, **settings, **callbacks)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def start(self) -> bool:
        """Connect and keep a watchdog running until `disconnect()`"""
        connected = self.connect()
        self._start_watchdog()
        return connected

    def connect(self) -> bool:
        """Make one connection attempt. Returns True when the handshake succeeded."""
        with self._lock:
            if not self.user_id:
                return False
            if self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
                return self.state == ConnectionState.CONNECTED
            if self.auth_failed:
                return False
            if self.attempts >= self.max_attempts:
                self._fail(ATTEMPTS_EXHAUSTED_MESSAGE)
                return False

            self.attempts += 1
            self._closing = False
            self._cancel_retry()
            self._set_state(ConnectionState.CONNECTING)
            self._discard_client()
            client = self._client = self._build_client()
            attempt = self.attempts

        log_debug(f"Connecting to {self.server_url}{self.namespace} (attempt {attempt}/{self.max_attempts})")
        headers = {'Authorization': f'Bearer {self.token}'} if self.token else {}
        try:
            client.connect(
                self.server_url,
                namespaces=[self.namespace],
                auth={'token': self.token or ANONYMOUS_TOKEN},
                headers=headers,
                wait_timeout=self.connect_timeout,
            )
        except socketio.exceptions.ConnectionError as e:
            self._handle_failed_attempt(str(e))
            return False
        return True

    def disconnect(self):
        """Close the connection on purpose; no reconnect follows"""
        with self._lock:
            self._closing = True
            self._cancel_retry()
            self._stop_rejoin_loop()
            self._watchdog_stop.set()
            client, self._client = self._client, None
            self.attempts = 0
            self.last_error = None
            self.assembler.reset()
            self._set_state(ConnectionState.DISCONNECTED)
        if client is not None and getattr(client, 'connected', False):
            client.disconnect()

    def reconnect(self) -> bool:
        """Start over with a fresh attempt budget"""
        self.disconnect()
        return self.connect()

    def set_token(self, token: Optional[str]):
        """Store a new access token (after logging in again)"""
        with self._lock:
            self.token = token
            self.auth_failed = False
            if self.state == ConnectionState.ERROR:
                self.attempts = 0
                self._set_state(ConnectionState.DISCONNECTED)

    def send_message(self, text: str) -> bool:
        """Re-announce the user, then send ``text``. False when not connected."""
        with self._lock:
            client = self._client
            if self.state != ConnectionState.CONNECTED or client is None:
                return False
        client.emit('join', self.user_id, namespace=self.namespace)
        client.emit('message', {'message': text}, namespace=self.namespace)
        return True

    def rejoin(self) -> bool:
        """Send ``join`` again if connected"""
        with self._lock:
            client = self._client
            if self.state != ConnectionState.CONNECTED or client is None:
                return False
        client.emit('join', self.user_id, namespace=self.namespace)
        return True

    def on_foreground(self):
        """The host application regained focus; reconnect soon if idle"""
        with self._lock:
            if self.state != ConnectionState.DISCONNECTED or not self.user_id:
                return
            timer = self._timer_factory(self.foreground_delay, self.connect)
        timer.daemon = True
        timer.start()

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------

    def _build_client(self):
        client = self._client_factory()
        ns = self.namespace
        client.on('connect', self._handle_connect, namespace=ns)
        client.on('disconnect', self._handle_disconnect, namespace=ns)
        client.on('connect_error', self._handle_connect_error, namespace=ns)
        client.on('stream-chunk', self._handle_stream_chunk, namespace=ns)
        client.on('error', self._handle_server_error, namespace=ns)
        client.on('connected', self._handle_server_info, namespace=ns)
        client.on('joined', self._handle_server_info, namespace=ns)
        return client

    def _handle_connect(self):
        with self._lock:
            client = self._client
            self.attempts = 0
            self.last_error = None
            self._set_state(ConnectionState.CONNECTED)
        log_info(f"Connected to chat server as user {self.user_id}")
        if client is not None:
            client.emit('join', self.user_id, namespace=self.namespace)
        self._start_rejoin_loop()

    def _handle_disconnect(self, reason=None):
        with self._lock:
            self.assembler.reset()
            self._stop_rejoin_loop()
            if self._closing:
                self._set_state(ConnectionState.DISCONNECTED)
                return
            self._report(f"Disconnected: {reason or 'transport closed'}")
            self._set_state(ConnectionState.DISCONNECTED)
            if self.auth_failed:
                return
            self._schedule_reconnect(self.reconnect_delay)

    def _handle_connect_error(self, data=None):
        message = _error_text(data)
        lowered = message.lower()
        with self._lock:
            if any(marker in lowered for marker in _AUTH_FAILURE_MARKERS):
                self.auth_failed = True
                self.token = None
                self._cancel_retry()
                self._fail(SESSION_EXPIRED_MESSAGE)
                log_warning(f"Chat server refused credentials: {message}")
            else:
                self._report(f"Connection failed: {message}")

    def _handle_stream_chunk(self, data):
        if not isinstance(data, dict):
            return
        message = self.assembler.feed(data)
        if message is not None and self._on_message:
            self._on_message(message)

    def _handle_server_error(self, data=None):
        self._report(_error_text(data) or 'Connection error')

    def _handle_server_info(self, data=None):
        log_debug(f"Chat server: {data}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _handle_failed_attempt(self, reason: str):
        with self._lock:
            if self.auth_failed:
                return
            if self.last_error is None:
                self._report(f"Connection failed: {reason}")
            self._set_state(ConnectionState.DISCONNECTED)
            if self.attempts >= self.max_attempts:
                self._fail(ATTEMPTS_EXHAUSTED_MESSAGE)
                return
            self._schedule_reconnect(self.reconnect_delay)

    def _schedule_reconnect(self, delay: float):
        self._cancel_retry()
        self._set_state(ConnectionState.RECONNECTING)
        timer = self._timer_factory(delay, self._retry)
        timer.daemon = True
        self._retry_timer = timer
        timer.start()

    def _retry(self):
        with self._lock:
            self._retry_timer = None
            if self._closing or self.state != ConnectionState.RECONNECTING:
                return
            self._set_state(ConnectionState.DISCONNECTED)
        self.connect()

    def _cancel_retry(self):
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def _discard_client(self):
        client, self._client = self._client, None
        if client is not None and getattr(client, 'connected', False):
            try:
                client.disconnect()
            except socketio.exceptions.SocketIOError as e:
                log_debug(f"Ignoring error while dropping old client: {e}")

    def _start_rejoin_loop(self):
        self._stop_rejoin_loop()
        stop = self._rejoin_stop = threading.Event()

        def _loop():
            while not stop.wait(self.rejoin_interval):
                self.rejoin()

        self._rejoin_thread = threading.Thread(target=_loop, daemon=True, name='chat-rejoin')
        self._rejoin_thread.start()

    def _stop_rejoin_loop(self):
        self._rejoin_stop.set()

    def _start_watchdog(self):
        if self._watchdog_thread is not None and self._watchdog_thread.is_alive():
            return
        self._watchdog_stop = threading.Event()
        stop = self._watchdog_stop

        def _loop():
            while not stop.wait(self.watchdog_interval):
                if self.state == ConnectionState.DISCONNECTED and not self._closing:
                    self.connect()

        self._watchdog_thread = threading.Thread(target=_loop, daemon=True, name='chat-watchdog')
        self._watchdog_thread.start()

    def _fail(self, message: str):
        self._report(message)
        self._set_state(ConnectionState.ERROR)

    def _report(self, message: str):
        self.last_error = message
        log_warning(message)
        if self._on_error:
            try:
                self._on_error(message)
            except Exception as e:
                log_error(f"Error callback failed: {e}")

    def _set_state(self, state: ConnectionState):
        if state == self.state:
            return
        self.state = state
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception as e:
                log_error(f"State change callback failed: {e}")
