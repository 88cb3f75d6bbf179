"""
Python client for the StreamChat ``/chat`` namespace.
"""

from .connection_manager import ConnectionLifecycleManager, ConnectionState
from .stream_assembler import AssembledMessage, StreamAssembler

__all__ = ['ConnectionLifecycleManager', 'ConnectionState', 'AssembledMessage', 'StreamAssembler']
