"""
Container log decoding.

The engine hands back raw bytes per stream. Client processes write colored,
timestamped output, so every line is decoded lossily, split from its
engine-added timestamp, and stripped of terminal color escapes before it
is matched against health markers or shown to an operator.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Final

_SGR_PATTERN: Final = re.compile(r"\x1b\[[0-9;]*m")
"""ANSI select-graphic-rendition sequences (reset, colors, dim, bold)."""

_TIMESTAMP_PATTERN: Final = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?Z)\s?")
"""RFC 3339 timestamp the engine prepends when timestamps are requested."""


class LogStream(str, Enum):
    """Origin of a log line."""

    STDOUT = "stdout"
    STDERR = "stderr"
    COMBINED = "combined"
    """Live streams interleave both outputs without tagging them."""


@dataclass(frozen=True, slots=True)
class LogLine:
    """One decoded log line."""

    stream: LogStream
    """Stream the line was read from."""

    message: str
    """Decoded text without timestamp or color escapes."""

    timestamp: str | None = None
    """Engine timestamp, when requested."""

    def __str__(self) -> str:
        if self.timestamp is None:
            return self.message
        return f"{self.timestamp} {self.message}"


def strip_ansi(text: str) -> str:
    """Remove terminal color escapes from text."""
    return _SGR_PATTERN.sub("", text)


def decode_line(raw: bytes | str, stream: LogStream, *, timestamps: bool = True) -> LogLine:
    """
    Decode a single raw line.

    Non-UTF-8 bytes are replaced rather than rejected.
    Decoding never fails.
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    text = text.rstrip("\r\n")

    timestamp: str | None = None
    if timestamps:
        match = _TIMESTAMP_PATTERN.match(text)
        if match is not None:
            timestamp = match.group(1)
            text = text[match.end() :]

    return LogLine(stream=stream, message=strip_ansi(text).strip(), timestamp=timestamp)


def decode_chunk(raw: bytes, stream: LogStream, *, timestamps: bool = True) -> list[LogLine]:
    """Decode a block of complete lines, dropping empty ones."""
    lines = []
    for part in raw.splitlines():
        if not part.strip():
            continue
        lines.append(decode_line(part, stream, timestamps=timestamps))
    return lines


def merge_streams(*streams: list[LogLine]) -> list[LogLine]:
    """
    Interleave per-stream lines into one list ordered by timestamp.

    The sort is stable, so lines without timestamps keep their relative order.
    """
    merged = [line for lines in streams for line in lines]
    merged.sort(key=lambda line: line.timestamp or "")
    return merged


class LineBuffer:
    """
    Reassemble lines from a live byte stream.

    Chunks from a follow stream do not respect line boundaries.
    Partial trailing data is held until the next chunk completes it.
    """

    def __init__(self, stream: LogStream, *, timestamps: bool = True) -> None:
        self._stream = stream
        self._timestamps = timestamps
        self._pending = b""

    def feed(self, chunk: bytes) -> list[LogLine]:
        """Add a chunk and return every line it completed."""
        data = self._pending + chunk
        head, sep, tail = data.rpartition(b"\n")
        if not sep:
            self._pending = data
            return []
        self._pending = tail
        return decode_chunk(head, self._stream, timestamps=self._timestamps)

    def flush(self) -> list[LogLine]:
        """Return any trailing partial line once the stream has ended."""
        data, self._pending = self._pending, b""
        return decode_chunk(data, self._stream, timestamps=self._timestamps)
