from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator

DEFAULT_MARKER = b"\x55\x50"


def parse_marker(text: str) -> bytes:
    """Parse a hex marker such as ``"5550"`` or ``"55 50"``."""
    try:
        marker = bytes.fromhex(text.replace(" ", ""))
    except ValueError as exc:
        raise ValueError(f"Invalid marker '{text}'") from exc
    if len(marker) != 2:
        raise ValueError(f"Marker must be exactly 2 bytes, got {len(marker)}")
    return marker


class FrameSplitter:
    """
    Streaming delimiter splitter for the WIT dataset stream.

    Each emitted buffer holds the bytes between two consecutive markers, with
    the marker stripped. Bytes received before the first marker after a reset
    are discarded because they belong to a dataset whose start was never seen.
    Content is not validated here.
    """

    def __init__(self, marker: bytes = DEFAULT_MARKER):
        if len(marker) != 2:
            raise ValueError("Frame marker must be 2 bytes")
        self.marker = bytes(marker)
        self._buffer = bytearray()
        self._synced = False
        self._stats: Dict[str, int] = {"chunks": 0, "bytes": 0, "discarded": 0}
        self._log = logging.getLogger(__name__)

    def feed(self, data: bytes) -> Iterator[bytes]:
        if not data:
            return
        self._stats["bytes"] += len(data)
        self._buffer.extend(data)
        yield from self._extract()

    def split(self, chunks: Iterable[bytes]) -> Iterator[bytes]:
        for chunk in chunks:
            yield from self.feed(chunk)

    def _extract(self) -> Iterator[bytes]:
        marker_len = len(self.marker)
        while True:
            position = self._buffer.find(self.marker)
            if position < 0:
                if not self._synced:
                    # Keep a possible partial marker at the tail
                    drop = max(len(self._buffer) - (marker_len - 1), 0)
                    if drop:
                        self._stats["discarded"] += drop
                        del self._buffer[:drop]
                break
            if not self._synced:
                if position:
                    self._stats["discarded"] += position
                    self._log.debug("Discarding %d bytes before first marker", position)
                self._synced = True
            elif position:
                chunk = bytes(self._buffer[:position])
                self._stats["chunks"] += 1
                del self._buffer[: position + marker_len]
                yield chunk
                continue
            del self._buffer[: position + marker_len]

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset(self) -> None:
        self._buffer.clear()
        self._synced = False


def iterate_binary_stream(handle: Any, chunk_size: int = 256) -> Iterator[bytes]:
    while True:
        chunk = handle.read(chunk_size)
        if not chunk:
            break
        yield chunk
