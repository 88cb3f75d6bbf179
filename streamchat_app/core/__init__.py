"""
Core module for StreamChat.
Session tracking, chunking, generation, storage and the streaming pipeline.
"""

from .chunking import chunk_response
from .session_directory import SessionDirectory, ConnectionHandle
from .generation import GenerationAdapter
from .message_storage import MessageStorage
from .streaming import StreamingCoordinator, StreamChunk, ChatRequest, RequestState
from .stream_worker import StreamDispatcher, ConnectionWorker

__all__ = [
    'chunk_response',
    'SessionDirectory',
    'ConnectionHandle',
    'GenerationAdapter',
    'MessageStorage',
    'StreamingCoordinator',
    'StreamChunk',
    'ChatRequest',
    'RequestState',
    'StreamDispatcher',
    'ConnectionWorker',
]
