"""
Commands package - chat CLI functionality
"""

from .chat_commands import register_chat_commands


def register_commands(app):
    """Attach every ``flask`` CLI command to ``app``"""
    register_chat_commands(app)


__all__ = ['register_commands', 'register_chat_commands']
