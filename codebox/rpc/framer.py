"""Split a raw byte stream into newline-delimited text lines."""

from __future__ import annotations

DELIMITER = b"\n"


class LineFramer:
    """Accumulate byte chunks and yield complete, non-empty lines.

    A line may straddle any number of chunks; the trailing partial line is
    held back until more data arrives or `flush()` is called at end of
    stream. Lines are decoded as UTF-8 (invalid bytes are replaced) and
    stripped of surrounding whitespace, including a `\\r` before the newline.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> list[str]:
        """Append a chunk and return every line it completed."""
        if not chunk:
            return []
        self._buffer.extend(chunk)
        end = self._buffer.rfind(DELIMITER)
        if end < 0:
            return []
        complete = bytes(self._buffer[:end])
        del self._buffer[: end + 1]
        return self._split(complete)

    def flush(self) -> list[str]:
        """Return the held-back partial line (if any) at end of stream."""
        rest = bytes(self._buffer)
        self._buffer.clear()
        return self._split(rest)

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    @staticmethod
    def _split(data: bytes) -> list[str]:
        lines: list[str] = []
        for raw in data.split(DELIMITER):
            text = raw.decode("utf-8", errors="replace").strip()
            if text:
                lines.append(text)
        return lines
