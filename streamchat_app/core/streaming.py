"""
Streaming Coordinator
=====================

Turns one inbound user message into a stored exchange and, in push mode, into
an ordered run of ``stream-chunk`` events on the user's live connection.

Pipeline for one request::

    RECEIVED -> PERSISTING_INPUT -> GENERATING -> PERSISTING_OUTPUT -> STREAMING -> DONE
                                                                    (any step) -> FAILED

Failure placement decides what is left in storage:

- Validation fails: nothing is stored.
- Generation fails or returns blank text: only the user message is stored.
- Delivery fails (the user has no live connection any more): both messages
  stay stored and the remaining chunks are dropped. Nothing is retried.

Two delivery modes share that pipeline:

- Request/response (`handle_request`): the caller gets the stored bot
  message back and nothing is pushed.
- Push (`handle_push`): the caller only gets an acknowledgment. The reply is
  split by the chunking policy and pushed chunk by chunk with a short pause
  between chunks, or, when token streaming is enabled and the backend is
  configured, forwarded token by token as the backend produces it. Either
  way the stream ends with exactly one terminal chunk carrying ``fullText``.

The live connection is looked up in the Session Directory before every
chunk, so a user who reconnects mid-stream keeps receiving on the new
connection, and a user who disconnects stops being written to.

Chunks of one stream are produced by a single loop that waits out the pacing
delay before producing the next chunk, so they cannot interleave. Callers run
`handle_push` on the per-connection worker (see `stream_worker.py`), which also
serializes successive requests from one connection.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Any

from ..logger import logger, log_info, log_warning, log_debug
from ..models import ChatMessage, utc_now
from ..utils.error_handling import (
    ApplicationError, GenerationError, DeliveryError, ErrorCode
)
from ..utils.validation import validate_message, DEFAULT_MAX_MESSAGE_LENGTH
from .chunking import chunk_response, DEFAULT_MAX_CHUNK_CHARS
from .session_directory import ConnectionHandle, SessionDirectory

STREAM_CHUNK_EVENT = 'stream-chunk'
TYPING_EVENT = 'typing'
ERROR_EVENT = 'error'

GENERIC_FAILURE_MESSAGE = 'Failed to process message'

# deliver(connection, event, payload)
Deliver = Callable[[ConnectionHandle, str, Dict[str, Any]], None]


def _timestamp() -> str:
    return utc_now().isoformat() + 'Z'


class RequestState(Enum):
    """Lifecycle of one chat request"""
    RECEIVED = "received"
    PERSISTING_INPUT = "persisting_input"
    GENERATING = "generating"
    PERSISTING_OUTPUT = "persisting_output"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


class DeliveryMode(Enum):
    REQUEST_RESPONSE = "request_response"
    PUSH = "push"


@dataclass
class StreamChunk:
    """One piece of a pushed reply, as sent on the wire"""
    text: str
    is_complete: bool
    stream_id: str
    full_text: Optional[str] = None
    timestamp: str = field(default_factory=_timestamp)

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            'text': self.text,
            'isComplete': self.is_complete,
            'streamId': self.stream_id,
            'timestamp': self.timestamp,
        }
        if self.is_complete:
            payload['fullText'] = self.full_text
        return payload


@dataclass
class ChatRequest:
    """Bookkeeping for one inbound message as it moves through the pipeline"""
    user_id: str
    text: str
    mode: DeliveryMode
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: RequestState = RequestState.RECEIVED
    transitions: List[RequestState] = field(default_factory=lambda: [RequestState.RECEIVED])
    stream_id: Optional[str] = None
    user_message: Optional[ChatMessage] = None
    bot_message: Optional[ChatMessage] = None
    chunks_sent: int = 0
    delivered: Optional[bool] = None
    error: Optional[ApplicationError] = None

    def advance(self, state: RequestState):
        self.state = state
        self.transitions.append(state)

    def fail(self, error: ApplicationError):
        self.error = error
        self.advance(RequestState.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.state == RequestState.DONE


class StreamingCoordinator:
    """
    Orchestrates persistence, generation and chunked delivery of chat replies.

    Args:
        storage: MessageStorage-like object.
        generator: GenerationAdapter-like object.
        directory: SessionDirectory used to find the user's live connection.
        deliver: ``deliver(connection, event, payload)`` transport hook.
        sleep: Pacing function; ``socketio.sleep`` in the server.
        chunk_delay: Seconds between two chunks of the same stream.
        max_chunk_chars: Soft chunk size for re-chunked replies.
        context_window: Number of earlier messages handed to the backend.
        use_token_stream: Forward backend tokens instead of re-chunking,
            when the backend is configured.
        max_message_length: Upper bound on inbound message length.
    """

    def __init__(self, storage, generator, directory: SessionDirectory, deliver: Deliver,
                 sleep: Callable[[float], Any] = time.sleep,
                 chunk_delay: float = 0.1,
                 max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS,
                 context_window: int = 20,
                 use_token_stream: bool = False,
                 max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH):
        self.storage = storage
        self.generator = generator
        self.directory = directory
        self._deliver = deliver
        self._sleep = sleep
        self.chunk_delay = chunk_delay
        self.max_chunk_chars = max_chunk_chars
        self.context_window = context_window
        self.use_token_stream = use_token_stream
        self.max_message_length = max_message_length

    # ------------------------------------------------------------------
    # Request/response mode
    # ------------------------------------------------------------------

    def handle_request(self, user_id: str, text: str) -> ChatMessage:
        """
        Store the message, generate a reply, store it and return it.

        Raises:
            ValidationError: empty or oversized message; nothing stored.
            GenerationError: the reply could not be produced; only the user
                message is stored.
        """
        request = ChatRequest(user_id=user_id, text=text, mode=DeliveryMode.REQUEST_RESPONSE)
        try:
            self._persist_input(request)
            reply = self._generate(request)
            self._persist_output(request, reply)
        except ApplicationError as e:
            request.fail(e)
            raise
        request.advance(RequestState.DONE)
        return request.bot_message

    # ------------------------------------------------------------------
    # Push mode
    # ------------------------------------------------------------------

    def handle_push(self, user_id: str, text: str) -> ChatRequest:
        """
        Run the pipeline and push the reply to the user's live connection.

        Never raises: failures are recorded on the returned request and, if
        the user is still connected, reported with an ``error`` event.
        """
        request = ChatRequest(user_id=user_id, text=text, mode=DeliveryMode.PUSH,
                              stream_id=str(uuid.uuid4()))
        try:
            self._persist_input(request)
            if self.use_token_stream and self.generator.is_available():
                self._stream_tokens(request)
            else:
                reply = self._generate(request)
                self._persist_output(request, reply)
                self._stream_chunks(request)
            request.advance(RequestState.DONE)
        except ApplicationError as e:
            request.fail(e)
            log_warning(f"Chat request {request.request_id} for user {user_id} failed: {e.message}")
            self._report_failure(request, e.to_event())
        except Exception as e:
            request.fail(GenerationError(GENERIC_FAILURE_MESSAGE, cause=e,
                                         user_message=GENERIC_FAILURE_MESSAGE))
            logger.log_exception(e, {'user_id': user_id, 'request_id': request.request_id})
            self._report_failure(request, {'message': GENERIC_FAILURE_MESSAGE, 'timestamp': _timestamp()})
        return request

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def _persist_input(self, request: ChatRequest):
        request.text = validate_message(request.text, self.max_message_length)
        request.advance(RequestState.PERSISTING_INPUT)
        request.user_message = self.storage.save_user_message(request.user_id, request.text)

    def _context_for(self, request: ChatRequest) -> List[ChatMessage]:
        return self.storage.get_recent_messages(
            request.user_id,
            limit=self.context_window,
            exclude_id=request.user_message.id if request.user_message else None,
        )

    def _generate(self, request: ChatRequest) -> str:
        request.advance(RequestState.GENERATING)
        context = self._context_for(request)
        self._signal_typing(request, True)
        try:
            reply = self.generator.generate(request.text, context)
        except Exception as e:
            raise GenerationError(f"Generation backend raised {type(e).__name__}: {e}", cause=e)
        finally:
            self._signal_typing(request, False)

        if not isinstance(reply, str) or not reply.strip():
            raise GenerationError("Generation returned an empty response",
                                  code=ErrorCode.EMPTY_RESPONSE)
        return reply

    def _persist_output(self, request: ChatRequest, reply: str):
        request.advance(RequestState.PERSISTING_OUTPUT)
        request.bot_message = self.storage.save_bot_message(request.user_id, reply)

    def _stream_chunks(self, request: ChatRequest):
        """Re-chunk the stored reply and push it with pacing"""
        request.advance(RequestState.STREAMING)
        full_text = request.bot_message.text
        pieces = chunk_response(full_text, self.max_chunk_chars)
        last = len(pieces) - 1

        for index, piece in enumerate(pieces):
            is_last = index == last
            chunk = StreamChunk(
                # Trailing space keeps plain concatenation word-separated
                text=piece if is_last else piece + ' ',
                is_complete=is_last,
                stream_id=request.stream_id,
                full_text=full_text if is_last else None,
            )
            if not self._push(request, chunk):
                return
            if not is_last and self.chunk_delay > 0:
                self._sleep(self.chunk_delay)

        request.delivered = True
        log_info(f"Response streaming completed for user {request.user_id} "
                 f"({request.chunks_sent} chunks, stream {request.stream_id})")

    def _stream_tokens(self, request: ChatRequest):
        """Forward backend tokens as they arrive, then store and close the stream"""
        request.advance(RequestState.GENERATING)
        context = self._context_for(request)

        def on_token(token: str):
            if request.delivered is False:
                return
            if request.state != RequestState.STREAMING:
                request.advance(RequestState.STREAMING)
            self._push(request, StreamChunk(text=token, is_complete=False,
                                            stream_id=request.stream_id))

        try:
            reply = self.generator.generate_streaming(request.text, context, on_token=on_token)
        except Exception as e:
            raise GenerationError(f"Generation backend raised {type(e).__name__}: {e}", cause=e)

        if not isinstance(reply, str) or not reply.strip():
            raise GenerationError("Generation returned an empty response",
                                  code=ErrorCode.EMPTY_RESPONSE)

        self._persist_output(request, reply)
        if request.delivered is False:
            return

        if request.state != RequestState.STREAMING:
            request.advance(RequestState.STREAMING)
        terminal = StreamChunk(text='', is_complete=True, stream_id=request.stream_id,
                               full_text=request.bot_message.text)
        if self._push(request, terminal):
            request.delivered = True
            log_info(f"Token stream completed for user {request.user_id} "
                     f"({request.chunks_sent} chunks, stream {request.stream_id})")

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _push(self, request: ChatRequest, chunk: StreamChunk) -> bool:
        """Send one chunk to the user's current connection; False drops the stream"""
        try:
            connection = self.directory.resolve(request.user_id)
            if connection is None:
                raise DeliveryError(request.user_id, request.stream_id)
            self._deliver(connection, STREAM_CHUNK_EVENT, chunk.to_payload())
        except DeliveryError as e:
            request.delivered = False
            log_warning(f"{e.message}; dropping stream {request.stream_id} "
                        f"after {request.chunks_sent} chunks")
            return False
        request.chunks_sent += 1
        return True

    def _signal_typing(self, request: ChatRequest, is_typing: bool):
        if request.mode != DeliveryMode.PUSH:
            return
        connection = self.directory.resolve(request.user_id)
        if connection is not None:
            self._deliver(connection, TYPING_EVENT, {'isTyping': is_typing, 'timestamp': _timestamp()})

    def _report_failure(self, request: ChatRequest, payload: Dict[str, Any]):
        connection = self.directory.resolve(request.user_id)
        if connection is None:
            log_debug(f"User {request.user_id} gone; failure of {request.request_id} not reported")
            return
        self._deliver(connection, ERROR_EVENT, payload)
