"""
Per-connection workers for push-mode chat requests.

Every accepted socket gets one `ConnectionWorker`: an ordered inbound queue
drained by a single background task. Messages from one connection are
therefore handled strictly one after another, and the chunks of one reply are
never interleaved with those of the next. Different connections run
independently.

Background tasks are started through ``socketio.start_background_task`` so
the same code runs on threads or on green threads depending on the async
mode Flask-SocketIO was configured with.
"""

import queue
import threading
from typing import Any, Callable, Dict, Optional

from ..logger import logger, log_debug, log_info
from .session_directory import ConnectionHandle

# handler(user_id, text)
PushHandler = Callable[[str, str], Any]

_STOP = object()


class ConnectionWorker:
    """Ordered mailbox plus one draining task for one connection"""

    def __init__(self, connection: ConnectionHandle, handler: PushHandler,
                 start_task: Callable[..., Any], app=None):
        self.connection = connection
        self._handler = handler
        self._start_task = start_task
        self._app = app
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._closed = threading.Event()
        self._finished = threading.Event()
        self.processed = 0

    def start(self):
        self._start_task(self._run)

    def submit(self, user_id: str, text: str) -> bool:
        if self._closed.is_set():
            return False
        self._queue.put((user_id, text))
        return True

    def close(self):
        """Stop accepting work; already queued messages are still handled"""
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(_STOP)

    def join(self, timeout: Optional[float] = None) -> bool:
        return self._finished.wait(timeout)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _run(self):
        try:
            if self._app is not None:
                with self._app.app_context():
                    self._drain()
            else:
                self._drain()
        finally:
            self._finished.set()
            log_debug(f"Worker for connection {self.connection.sid} stopped after {self.processed} messages")

    def _drain(self):
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            user_id, text = item
            try:
                self._handler(user_id, text)
            except Exception as e:
                # Keep the worker alive for the next message
                logger.log_exception(e, {'connection': self.connection.sid, 'user_id': user_id})
            finally:
                self.processed += 1


class StreamDispatcher:
    """
    Routes accepted messages to per-connection workers.

    With ``inline=True`` messages are handled synchronously in the caller's
    context instead, which keeps socket tests deterministic.
    """

    def __init__(self, handler: PushHandler, start_task: Callable[..., Any],
                 app=None, inline: bool = False):
        self._handler = handler
        self._start_task = start_task
        self._app = app
        self.inline = inline
        self._workers: Dict[ConnectionHandle, ConnectionWorker] = {}
        self._lock = threading.Lock()

    def open(self, connection: ConnectionHandle) -> Optional[ConnectionWorker]:
        if self.inline:
            return None
        with self._lock:
            worker = self._workers.get(connection)
            if worker is not None:
                return worker
            worker = ConnectionWorker(connection, self._handler, self._start_task, self._app)
            self._workers[connection] = worker
        worker.start()
        return worker

    def close(self, connection: ConnectionHandle):
        with self._lock:
            worker = self._workers.pop(connection, None)
        if worker is not None:
            worker.close()

    def submit(self, connection: ConnectionHandle, user_id: str, text: str) -> bool:
        if self.inline:
            self._handler(user_id, text)
            return True
        worker = self.worker_for(connection) or self.open(connection)
        return worker.submit(user_id, text)

    def dispatch_detached(self, user_id: str, text: str):
        """Handle a push request that did not arrive on a socket (HTTP push mode)"""
        if self.inline:
            self._handler(user_id, text)
            return
        self._start_task(self._run_detached, user_id, text)

    def worker_for(self, connection: ConnectionHandle) -> Optional[ConnectionWorker]:
        with self._lock:
            return self._workers.get(connection)

    def active_count(self) -> int:
        with self._lock:
            return len(self._workers)

    def shutdown(self):
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()
        for worker in workers:
            worker.close()
        if workers:
            log_info(f"Stream dispatcher closed {len(workers)} connection workers")

    def _run_detached(self, user_id: str, text: str):
        try:
            if self._app is not None:
                with self._app.app_context():
                    self._handler(user_id, text)
            else:
                self._handler(user_id, text)
        except Exception as e:
            logger.log_exception(e, {'user_id': user_id, 'detached': True})
