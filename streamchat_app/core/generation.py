"""
Generation Adapter
==================

Wraps the external language-generation backend (Google Gemini over its REST
API) behind two calls:

    generate(text, context)                     -> full reply text
    generate_streaming(text, context, on_token) -> full reply text, with each
                                                   token handed to on_token as
                                                   it arrives

Neither call raises for backend trouble. When no API key is configured, the
backend errors out, times out or returns blank text, the adapter answers with
a canned reply that echoes the user's text. The chat pipeline therefore
always has something to persist and stream, and the service works offline.

Concurrent identical prompts are short-circuited: while a prompt text is in
flight, a second request with the exact same text gets the canned reply
instead of a second backend call. This only saves backend latency and quota;
it is keyed by text alone, so two different users sending the same words at
the same moment will see one real and one canned answer.

Backend wire format:
    POST {base}/models/{model}:generateContent
    POST {base}/models/{model}:streamGenerateContent?alt=sse
    Header X-goog-api-key: <key>
    Body {"systemInstruction": {...}, "contents": [{"role": "user"|"model", "parts": [{"text": ...}]}]}
"""

import json
import random
import threading
import time
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Any

import requests

from ..logger import log_info, log_warning, log_error, log_debug

GEMINI_API_BASE = 'https://generativelanguage.googleapis.com/v1beta'
DEFAULT_MODEL = 'gemini-2.0-flash'

SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Respond to the user's message in a "
    "conversational and helpful manner. Keep responses concise but informative "
    "and engaging."
)

FALLBACK_TEMPLATES = [
    'I understand you\'re asking about "{message}". Let me help you with some information about that topic.',
    'That\'s an interesting question about "{message}"! Here\'s what I can tell you about that.',
    'I\'d be happy to help you with "{message}". Let me provide some useful information.',
    'Thanks for your question about "{message}". Here\'s what I know about that subject.',
    'I can help you with "{message}"! Let me share some relevant information with you.',
    'Great question about "{message}"! Here\'s some helpful information for you.',
    'I understand your interest in "{message}". Let me provide some insights.',
    'That\'s a good question about "{message}". Here\'s what I can share with you.',
]

FALLBACK_SUFFIX = (
    "(This is a mock response since no AI API key is configured. To use real AI "
    "responses, please add your Gemini API key to the environment variables.)"
)

TokenCallback = Callable[[str], None]


class BackendResponseError(Exception):
    """The backend answered, but not with usable text"""


def _sanitize_error_response(error_message: str) -> str:
    """Map a raw backend error onto a generic description safe for logs shared with users"""
    error_lower = error_message.lower()
    if any(term in error_lower for term in ['connection', 'connect', 'unreachable', 'refused']):
        return "AI service is currently unavailable"
    if any(term in error_lower for term in ['timeout', 'timed out', 'deadline']):
        return "AI service response timeout"
    if any(term in error_lower for term in ['auth', 'unauthorized', '401', '403', 'api key']):
        return "AI service authentication failed"
    if any(term in error_lower for term in ['overload', 'busy', 'rate limit', '429', 'quota']):
        return "AI service is temporarily overloaded"
    if any(term in error_lower for term in ['500', 'internal', 'server error']):
        return "AI service encountered an error"
    return "AI service is currently unavailable"


def _message_role(message: Any) -> str:
    sender = message.get('sender') if isinstance(message, dict) else getattr(message, 'sender', 'user')
    return 'model' if sender == 'bot' else 'user'


def _message_text(message: Any) -> str:
    text = message.get('text') if isinstance(message, dict) else getattr(message, 'text', '')
    return text or ''


def build_contents(text: str, context: Optional[Iterable[Any]] = None) -> List[Dict[str, Any]]:
    """
    Build the Gemini ``contents`` array from history plus the new message.

    Consecutive messages from the same side are merged, since the backend
    expects user and model turns to alternate. History may be ChatMessage
    objects or dicts with ``sender`` and ``text`` keys.
    """
    turns: List[Dict[str, Any]] = []
    for message in list(context or []) + [{'sender': 'user', 'text': text}]:
        body = _message_text(message).strip()
        if not body:
            continue
        role = _message_role(message)
        if turns and turns[-1]['role'] == role:
            turns[-1]['parts'][0]['text'] += f"\n\n{body}"
        else:
            turns.append({'role': role, 'parts': [{'text': body}]})

    # A conversation must open with a user turn
    while turns and turns[0]['role'] != 'user':
        turns.pop(0)
    return turns


def _extract_text(payload: Any) -> str:
    """Text of the first candidate, or '' when the reply does not have the expected shape"""
    if not isinstance(payload, dict):
        return ''
    candidates = payload.get('candidates')
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return ''
    content = candidates[0].get('content')
    parts = content.get('parts') if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ''
    return ''.join(part.get('text') or '' for part in parts
                   if isinstance(part, dict) and isinstance(part.get('text') or '', str))


class GenerationAdapter:
    """Gemini-backed text generation with an always-available canned fallback"""

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL,
                 timeout: float = 30, session: Optional[requests.Session] = None,
                 rng: Optional[random.Random] = None, api_base: str = GEMINI_API_BASE,
                 system_prompt: str = SYSTEM_PROMPT):
        self.api_key = (api_key or '').strip()
        self.model = model or DEFAULT_MODEL
        self.timeout = timeout
        self.api_base = api_base.rstrip('/')
        self.system_prompt = system_prompt
        # Create persistent session for connection reuse
        self._session = session or requests.Session()
        self._rng = rng or random.Random()

        self._in_flight = set()
        self._in_flight_lock = threading.Lock()

        if self.api_key:
            log_info(f"Gemini generation backend configured (model: {self.model})")
        else:
            log_warning("No Gemini API key provided, using mock responses")

    @classmethod
    def from_config(cls, config) -> 'GenerationAdapter':
        return cls(
            api_key=config.get('GEMINI_API_KEY'),
            model=config.get('GEMINI_MODEL', DEFAULT_MODEL),
            timeout=config.get('GEMINI_TIMEOUT', 30),
        )

    def is_available(self) -> bool:
        """Whether a real backend is configured (the fallback is always available)"""
        return bool(self.api_key)

    def get_service_status(self) -> Dict[str, bool]:
        available = self.is_available()
        return {'available': available, 'gemini': available, 'fallback': True}

    def close(self):
        self._session.close()

    # ------------------------------------------------------------------
    # Fallback and in-flight guard
    # ------------------------------------------------------------------

    def generate_fallback(self, text: str) -> str:
        template = self._rng.choice(FALLBACK_TEMPLATES)
        return f"{template.format(message=text)} {FALLBACK_SUFFIX}"

    def _claim(self, text: str) -> bool:
        with self._in_flight_lock:
            if text in self._in_flight:
                return False
            self._in_flight.add(text)
            return True

    def _release(self, text: str):
        with self._in_flight_lock:
            self._in_flight.discard(text)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(self, text: str, context: Optional[Iterable[Any]] = None) -> str:
        """Return the full reply to ``text``. Never raises for backend failures."""
        if not self._claim(text):
            log_debug("Identical prompt already in flight, answering with fallback")
            return self.generate_fallback(text)

        try:
            if self.is_available():
                try:
                    reply = self._request_completion(text, context)
                    if reply.strip():
                        return reply.strip()
                    log_warning("Gemini returned an empty response, using fallback")
                except (requests.RequestException, BackendResponseError, ValueError) as e:
                    log_error(f"Gemini API error: {_sanitize_error_response(str(e))}")
            return self.generate_fallback(text)
        finally:
            self._release(text)

    def generate_streaming(self, text: str, context: Optional[Iterable[Any]] = None,
                           on_token: Optional[TokenCallback] = None) -> str:
        """
        Stream the reply to ``text`` token by token.

        Each token is handed to ``on_token`` in arrival order, and the
        concatenation of all tokens is returned. If the backend fails before
        producing anything, the fallback reply is delivered through
        ``on_token`` as a single token. If it fails midway, the tokens
        already received are kept and returned as the reply.

        Exceptions raised by ``on_token`` itself are not backend failures and
        propagate to the caller, which stops the stream.
        """
        if not self._claim(text):
            return self._emit_fallback(text, on_token)

        try:
            if not self.is_available():
                return self._emit_fallback(text, on_token)

            received: List[str] = []
            tokens = self._stream_completion(text, context)
            try:
                while True:
                    try:
                        token = next(tokens)
                    except StopIteration:
                        break
                    except (requests.RequestException, BackendResponseError, ValueError) as e:
                        log_error(f"Gemini streaming error after {len(received)} tokens: "
                                  f"{_sanitize_error_response(str(e))}")
                        break
                    if not token:
                        continue
                    received.append(token)
                    if on_token:
                        on_token(token)
            finally:
                tokens.close()

            reply = ''.join(received)
            if reply.strip():
                return reply
            return self._emit_fallback(text, on_token)
        finally:
            self._release(text)

    # ------------------------------------------------------------------
    # Backend calls
    # ------------------------------------------------------------------

    def _emit_fallback(self, text: str, on_token: Optional[TokenCallback]) -> str:
        reply = self.generate_fallback(text)
        if on_token:
            on_token(reply)
        return reply

    def _headers(self) -> Dict[str, str]:
        return {'Content-Type': 'application/json', 'X-goog-api-key': self.api_key}

    def _payload(self, text: str, context: Optional[Iterable[Any]]) -> Dict[str, Any]:
        return {
            'systemInstruction': {'parts': [{'text': self.system_prompt}]},
            'contents': build_contents(text, context),
        }

    def _request_completion(self, text: str, context: Optional[Iterable[Any]]) -> str:
        start_time = time.time()
        response = self._session.post(
            f"{self.api_base}/models/{self.model}:generateContent",
            json=self._payload(text, context),
            headers=self._headers(),
            timeout=self.timeout,
        )
        response.raise_for_status()
        reply = _extract_text(response.json())
        log_debug(f"Gemini responded in {time.time() - start_time:.2f}s")
        if not reply:
            raise BackendResponseError("Invalid response format from Gemini API")
        return reply

    def _stream_completion(self, text: str, context: Optional[Iterable[Any]]) -> Iterator[str]:
        response = self._session.post(
            f"{self.api_base}/models/{self.model}:streamGenerateContent",
            params={'alt': 'sse'},
            json=self._payload(text, context),
            headers=self._headers(),
            timeout=self.timeout,
            stream=True,
        )
        try:
            response.raise_for_status()
            for line in response.iter_lines(decode_unicode=True):
                if not line or not line.startswith('data:'):
                    continue
                data = line[len('data:'):].strip()
                if not data:
                    continue
                yield _extract_text(json.loads(data))
        finally:
            response.close()
