from __future__ import annotations

from dataclasses import dataclass

DEFAULT_CHUNK_SIZE = 4000
CONTINUATION_MARKER = "\n\n[continued...]"

# How far back from the limit a newline or space may be to count as a break.
NEWLINE_LOOKBACK = 100
SPACE_LOOKBACK = 50


@dataclass(frozen=True, slots=True)
class ResponseChunk:
    text: str
    is_continuation: bool


def message_length(text: str) -> int:
    """Length as Telegram counts it, in UTF-16 code units."""
    return len(text.encode("utf-16-le")) // 2


def _cut_index(text: str, max_len: int) -> int:
    """Largest code point index whose prefix fits in max_len UTF-16 units."""
    units = 0
    for index, char in enumerate(text):
        units += 2 if ord(char) > 0xFFFF else 1
        if units > max_len:
            # A lone astral character wider than max_len still has to move.
            return max(index, 1)
    return len(text)


def _find_break(text: str, limit: int, char: str, lookback: int) -> int | None:
    floor = max(limit - lookback, 0)
    for i in range(limit, floor, -1):
        if text[i - 1] == char:
            return i
    return None


def split_message(text: str, max_len: int) -> list[str]:
    """Split text into parts of at most max_len UTF-16 code units.

    Breaks after the last newline in the trailing 100 characters of the
    window, else after the last space in the trailing 50, else at the last
    code point that fits. Spaces and newlines at the start of the next part
    are dropped.
    """
    if max_len <= 0:
        max_len = DEFAULT_CHUNK_SIZE
    if message_length(text) <= max_len:
        return [text]

    parts: list[str] = []
    current = text
    while message_length(current) > max_len:
        limit = _cut_index(current, max_len)
        split_at = _find_break(current, limit, "\n", NEWLINE_LOOKBACK)
        if split_at is None:
            split_at = _find_break(current, limit, " ", SPACE_LOOKBACK)
        if split_at is None:
            split_at = limit
        parts.append(current[:split_at])
        current = current[split_at:].lstrip(" \n")

    if current:
        parts.append(current)
    return parts


def format_reply(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    *,
    marker: str = CONTINUATION_MARKER,
) -> list[ResponseChunk]:
    """Split a reply for sending and mark the first part when more follow.

    Room for the marker is reserved up front so the marked part still fits in
    chunk_size.
    """
    if chunk_size <= 0:
        chunk_size = DEFAULT_CHUNK_SIZE
    if message_length(text) <= chunk_size:
        return [ResponseChunk(text=text, is_continuation=False)]

    budget = chunk_size - message_length(marker)
    if budget <= 0:
        budget = chunk_size
        marker = ""
    parts = split_message(text, budget)
    chunks = [
        ResponseChunk(text=part, is_continuation=index > 0)
        for index, part in enumerate(parts)
    ]
    if len(chunks) > 1 and marker:
        first = chunks[0]
        chunks[0] = ResponseChunk(text=first.text + marker, is_continuation=False)
    return chunks
