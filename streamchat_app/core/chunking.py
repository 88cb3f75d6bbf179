"""
Chunking policy for pushed responses.

Splits a complete reply into short, word-aligned pieces so the client can
render it progressively. Packing is greedy: words are appended to the current
piece until the next word would push it past ``max_chunk_chars``; at that
point the piece is flushed and the word starts a new one. A word that is
longer than the limit on its own is never split and becomes its own piece.
"""

from typing import List

DEFAULT_MAX_CHUNK_CHARS = 20
EMPTY_RESPONSE_PLACEHOLDER = 'No response available'


def chunk_response(text: str, max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> List[str]:
    """
    Split ``text`` into word-aligned chunks.

    Args:
        text: Full reply text. Runs of whitespace are collapsed.
        max_chunk_chars: Soft upper bound on a chunk's length.

    Returns:
        Non-empty list of chunks. ``" ".join(result)`` equals the input with
        whitespace normalized. Blank input yields the placeholder chunk.

    Example:
        >>> chunk_response("The quick brown fox jumps over the lazy dog")
        ['The quick brown fox', 'jumps over the lazy', 'dog']
    """
    if max_chunk_chars < 1:
        raise ValueError("max_chunk_chars must be positive")

    words = (text or '').split()
    if not words:
        return [EMPTY_RESPONSE_PLACEHOLDER]

    chunks = []
    current = ''
    for word in words:
        candidate = f"{current} {word}" if current else word
        if current and len(candidate) > max_chunk_chars:
            chunks.append(current.strip())
            current = word
        else:
            current = candidate

    if current:
        chunks.append(current.strip())

    return chunks
