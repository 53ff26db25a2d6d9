"""Streaming restorer — buffers chunks and restores tokens as they complete.

For streamed chat responses where tokens arrive as fragments:
    [NA  →  [NAME  →  [NAME_  →  [NAME_1]

The restorer buffers potential token starts and flushes restored text as
soon as tokens are complete or clearly not tokens.

Usage:
    restorer = StreamingRestorer(redaction_map)
    for chunk in stream:
        ready_text = restorer.feed(chunk)
        if ready_text:
            yield ready_text
    # Flush any remaining buffer
    yield restorer.flush()
"""

from __future__ import annotations
import re

from .vault import TOKEN_PATTERN, RedactionMap

# A "[" followed by characters that can still grow into a token
_TOKEN_PREFIX = re.compile(r"\[[A-Z0-9_]*")


class StreamingRestorer:
    """Buffers streaming chunks and restores complete tokens."""

    __slots__ = ("_map", "_buffer", "_max_token_len")

    def __init__(self, redaction_map: RedactionMap, *, max_token_len: int = 40) -> None:
        self._map = redaction_map
        self._buffer = ""
        self._max_token_len = max_token_len  # safety limit

    def feed(self, chunk: str) -> str:
        """Feed a chunk, return any text ready to emit."""
        self._buffer += chunk
        return self._drain()

    def flush(self) -> str:
        """Flush remaining buffer (call at end of stream)."""
        out = self._buffer
        self._buffer = ""
        return self._map.rehydrate(out)

    def _drain(self) -> str:
        """Extract and restore complete portions of the buffer."""
        out_parts: list[str] = []

        while self._buffer:
            idx = self._buffer.find("[")

            if idx == -1:
                # No token start: emit everything
                out_parts.append(self._buffer)
                self._buffer = ""
                break

            if idx > 0:
                out_parts.append(self._buffer[:idx])
                self._buffer = self._buffer[idx:]

            # Buffer starts with "["
            m = TOKEN_PATTERN.match(self._buffer)
            if m:
                token = m.group()
                replacement = self._map.lookup_token(token)
                out_parts.append(replacement if replacement is not None else token)
                self._buffer = self._buffer[m.end():]
                continue

            prefix = _TOKEN_PREFIX.match(self._buffer)
            if prefix.end() < len(self._buffer) or len(self._buffer) > self._max_token_len:
                # The next character (or the length) rules out a token: emit the "["
                out_parts.append("[")
                self._buffer = self._buffer[1:]
                continue

            # Still accumulating a potential token: wait for more data
            break

        return "".join(out_parts)
