"""
Database Models for StreamChat.

Chat history is a single append-only table keyed by user id. A message is
written once and never updated: the user's text is stored before generation
starts, the bot reply is stored once the full text exists.

The authenticated principal is not a table. The service recognizes exactly
one fixed credential pair (see `auth.py`), so `User` is a plain Flask-Login
user object built from configuration.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Index

# This will be set by the create_app function
db = SQLAlchemy()


class MessageSender(str, Enum):
    """Author of a stored chat message"""
    USER = 'user'
    BOT = 'bot'


def utc_now() -> datetime:
    """Current UTC time without tzinfo, the form DateTime columns store"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_message_id() -> str:
    return str(uuid.uuid4())


class ChatMessage(db.Model):
    """
    One stored chat message.

    Attributes:
        seq (int): Autoincrement insertion order, the tie-breaker when two
            messages share a creation timestamp.
        id (str): Public message identifier (UUID4).
        user_id (str): Owner of the conversation.
        text (str): Message body.
        sender (str): ``'user'`` or ``'bot'``.
        response (str): For bot messages, the generated reply (same as ``text``).
        created_at (datetime): Creation time (UTC), indexed with ``user_id``.
        updated_at (datetime): Equal to ``created_at``; messages are immutable.
    """
    __tablename__ = 'chat_messages'

    seq = db.Column(db.Integer, primary_key=True, autoincrement=True)
    id = db.Column(db.String(36), unique=True, nullable=False, default=_new_message_id)
    user_id = db.Column(db.String(128), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    sender = db.Column(db.String(8), nullable=False)
    response = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index('idx_chat_messages_user_created', 'user_id', 'created_at'),
    )

    @property
    def is_bot(self) -> bool:
        return self.sender == MessageSender.BOT.value

    def to_dict(self):
        """Serialize for API responses using the wire field names"""
        data = {
            'id': self.id,
            'userId': self.user_id,
            'text': self.text,
            'sender': self.sender,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.response is not None:
            data['response'] = self.response
        return data

    def __repr__(self):
        return f'<ChatMessage {self.id} {self.sender} user={self.user_id}>'


class User(UserMixin):
    """The authenticated principal carried by a verified access token"""

    def __init__(self, user_id: str, username: str):
        self.id = str(user_id)
        self.username = username

    def to_dict(self):
        return {'id': self.id, 'username': self.username}

    def __repr__(self):
        return f'<User {self.username}>'
