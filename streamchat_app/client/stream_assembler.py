"""
Client-side reassembly of pushed replies.

Chunks are concatenated per ``streamId`` as they arrive. The terminal chunk
finalizes the stream: its ``fullText`` is used when present, otherwise the
buffered text plus the terminal chunk's own text. A stream id is finalized
at most once; a replayed terminal event, or a late chunk for a finished
stream, is ignored.
"""

import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional


@dataclass
class AssembledMessage:
    """A completed bot reply as seen by the client"""
    stream_id: str
    text: str
    chunk_count: int
    user_id: Optional[str] = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.stream_id,
            'userId': self.user_id,
            'text': self.text,
            'sender': 'bot',
            'createdAt': self.completed_at.isoformat(),
        }


class StreamAssembler:
    """Thread-safe per-stream buffer with terminal deduplication"""

    def __init__(self, user_id: Optional[str] = None,
                 on_partial: Optional[Callable[[str, str], None]] = None):
        self.user_id = user_id
        self._on_partial = on_partial
        self._buffers: Dict[str, str] = defaultdict(str)
        self._counts: Dict[str, int] = defaultdict(int)
        self._completed = set()
        self._lock = threading.Lock()

    def feed(self, payload: Dict[str, Any]) -> Optional[AssembledMessage]:
        """
        Consume one ``stream-chunk`` payload.

        Returns:
            The assembled message when ``payload`` completes a stream for the
            first time, otherwise None.
        """
        stream_id = payload.get('streamId') or uuid.uuid4().hex
        text = payload.get('text') or ''

        with self._lock:
            if stream_id in self._completed:
                return None

            self._counts[stream_id] += 1
            if not payload.get('isComplete'):
                self._buffers[stream_id] += text
                partial = self._buffers[stream_id]
            else:
                buffered = self._buffers.pop(stream_id, '') + text
                chunk_count = self._counts.pop(stream_id, 1)
                self._completed.add(stream_id)
                full_text = payload.get('fullText')
                return AssembledMessage(
                    stream_id=stream_id,
                    text=full_text if full_text else buffered,
                    chunk_count=chunk_count,
                    user_id=self.user_id,
                )

        if self._on_partial:
            self._on_partial(stream_id, partial)
        return None

    def partial(self, stream_id: str) -> str:
        with self._lock:
            return self._buffers.get(stream_id, '')

    def is_completed(self, stream_id: str) -> bool:
        with self._lock:
            return stream_id in self._completed

    def reset(self):
        """Forget partial buffers and completed ids (called on disconnect)"""
        with self._lock:
            self._buffers.clear()
            self._counts.clear()
            self._completed.clear()
