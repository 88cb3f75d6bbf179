"""
Chat history persistence.

Thin service over the `ChatMessage` model. Callers must hold an application
context; background workers push one before touching storage.
"""

from typing import List, Optional

from sqlalchemy import text as sql_text
from sqlalchemy.exc import SQLAlchemyError

from ..logger import log_error, log_debug
from ..models import db, ChatMessage, MessageSender, utc_now

DEFAULT_RECENT_LIMIT = 20


class MessageStorage:
    """Append-only store of chat messages keyed by user id"""

    def _save(self, user_id: str, text: str, sender: MessageSender,
              response: Optional[str] = None) -> ChatMessage:
        now = utc_now()
        message = ChatMessage(
            user_id=user_id,
            text=text,
            sender=sender.value,
            response=response,
            created_at=now,
            updated_at=now,
        )
        try:
            db.session.add(message)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            log_error(f"Failed to store {sender.value} message for user {user_id}: {e}")
            raise
        log_debug(f"Stored {sender.value} message {message.id} for user {user_id}")
        return message

    def save_user_message(self, user_id: str, text: str) -> ChatMessage:
        return self._save(user_id, text, MessageSender.USER)

    def save_bot_message(self, user_id: str, text: str) -> ChatMessage:
        return self._save(user_id, text, MessageSender.BOT, response=text)

    def get_chat_history(self, user_id: str) -> List[ChatMessage]:
        """All messages of ``user_id``, oldest first"""
        return (ChatMessage.query
                .filter_by(user_id=user_id)
                .order_by(ChatMessage.created_at.asc(), ChatMessage.seq.asc())
                .all())

    def get_recent_messages(self, user_id: str, limit: int = DEFAULT_RECENT_LIMIT,
                            exclude_id: Optional[str] = None) -> List[ChatMessage]:
        """
        The newest ``limit`` messages of ``user_id``, returned oldest first.

        ``exclude_id`` leaves out one message (the one just stored for the
        request being answered) so it is not sent twice to the backend.
        """
        if limit <= 0:
            return []
        query = ChatMessage.query.filter_by(user_id=user_id)
        if exclude_id is not None:
            query = query.filter(ChatMessage.id != exclude_id)
        newest = (query
                  .order_by(ChatMessage.created_at.desc(), ChatMessage.seq.desc())
                  .limit(limit)
                  .all())
        newest.reverse()
        return newest

    def count_messages(self, user_id: Optional[str] = None) -> int:
        query = ChatMessage.query
        if user_id is not None:
            query = query.filter_by(user_id=user_id)
        return query.count()

    def is_available(self) -> bool:
        """Cheap connectivity probe used by the health endpoint"""
        try:
            db.session.execute(sql_text('SELECT 1'))
            return True
        except SQLAlchemyError as e:
            log_error(f"Database health check failed: {e}")
            db.session.rollback()
            return False
