"""
Session Directory for the real-time chat channel.

Maps a logical user id to the one live socket connection currently bound to
it. A user who reconnects (new tab, network flap, page reload) joins again
from a new connection and silently supersedes the previous mapping, so pushes
always target the most recent connection. The superseded connection may
still disconnect later; its `leave` must not evict the newer binding, which
is why removal is matched by connection identity rather than by user id.

The directory is owned by the application instance (see `create_app`) and is
not a module-level singleton. All operations are synchronous and serialized
by a single lock, so concurrent socket handlers observe a consistent view.
"""

import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional, Set

from ..logger import log_info, log_debug
from ..utils.error_handling import ValidationError, ErrorCode


@dataclass(frozen=True)
class ConnectionHandle:
    """Opaque, comparable identity of one accepted socket connection.

    ``sid`` addresses the transport; ``token`` is unique per accept, so a
    handle is never equal to one from an earlier connection even if the
    transport reuses a session id.
    """
    sid: str
    token: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def accept(cls, sid: str) -> 'ConnectionHandle':
        return cls(sid=sid)


class SessionDirectory:
    """Thread-safe user id <-> connection registry"""

    def __init__(self):
        self._lock = threading.RLock()
        self._by_user: Dict[str, ConnectionHandle] = {}
        self._by_connection: Dict[ConnectionHandle, str] = {}

    def join(self, user_id: str, connection: ConnectionHandle) -> str:
        """
        Bind ``user_id`` to ``connection``, replacing any previous binding.

        A connection carries one identity at a time: if it was bound to a
        different user, that older binding is released first.

        Returns:
            The normalized user id.

        Raises:
            ValidationError: ``user_id`` is blank or not a string. No state changes.
        """
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("Invalid user ID", code=ErrorCode.MISSING_FIELD)
        user_id = user_id.strip()

        with self._lock:
            previous_user = self._by_connection.get(connection)
            if previous_user is not None and previous_user != user_id:
                if self._by_user.get(previous_user) == connection:
                    del self._by_user[previous_user]
                log_debug(f"Connection {connection.sid} switched from user {previous_user} to {user_id}")

            superseded = self._by_user.get(user_id)
            if superseded is not None and superseded != connection:
                # The old connection stays open but no longer receives pushes
                self._by_connection.pop(superseded, None)
                log_info(f"User {user_id} rebound from {superseded.sid} to {connection.sid}")

            self._by_user[user_id] = connection
            self._by_connection[connection] = user_id

        return user_id

    def leave(self, connection: ConnectionHandle) -> Optional[str]:
        """
        Remove the binding held by ``connection``.

        Returns the user id that was unbound, or None when the connection
        held no binding (never joined, or already superseded).
        """
        with self._lock:
            user_id = self._by_connection.pop(connection, None)
            if user_id is None:
                return None
            if self._by_user.get(user_id) == connection:
                del self._by_user[user_id]
            return user_id

    def resolve(self, user_id: str) -> Optional[ConnectionHandle]:
        """Current live connection for ``user_id``, if any"""
        with self._lock:
            return self._by_user.get(user_id)

    def user_for(self, connection: ConnectionHandle) -> Optional[str]:
        """User currently bound to ``connection``, if any"""
        with self._lock:
            return self._by_connection.get(connection)

    def count(self) -> int:
        with self._lock:
            return len(self._by_user)

    def list_user_ids(self) -> Set[str]:
        with self._lock:
            return set(self._by_user)
