"""
Turns the raw byte stream of an open serial port into text lines
"""

import logging
from typing import Iterator

logger = logging.getLogger(__name__)

CRLF = b'\r\n'

class LineFramer:
    """
    Lazy, unbounded iterator of delimiter-terminated lines read from a port.

    The port only needs ``read_until(expected)`` and ``is_open`` (pyserial
    ``Serial`` provides both). Reads that time out return partial data, which
    is buffered until the delimiter arrives. Iteration ends when the port is
    closed; I/O errors from the port propagate to the caller.
    """

    def __init__(self, port, delimiter: bytes = CRLF, encoding: str = 'ascii',
                 max_line_bytes: int = 4096):
        self.port = port
        self.delimiter = delimiter
        self.encoding = encoding
        self.max_line_bytes = max_line_bytes
        self._buffer = bytearray()

    def __iter__(self) -> Iterator[str]:
        while self.port.is_open:
            chunk = self.port.read_until(self.delimiter)
            if not chunk:
                continue
            self._buffer.extend(chunk)
            yield from self._drain()

    def _drain(self) -> Iterator[str]:
        while True:
            idx = self._buffer.find(self.delimiter)
            if idx == -1:
                break
            raw = bytes(self._buffer[:idx])
            del self._buffer[:idx + len(self.delimiter)]
            yield raw.decode(self.encoding, errors='replace')

        if len(self._buffer) > self.max_line_bytes:
            # Garbage without a delimiter; drop it so the buffer stays bounded
            logger.warning(f"Discarding {len(self._buffer)} bytes without line delimiter")
            self._buffer.clear()
