"""Non-blocking access to standard input and output."""

from __future__ import annotations

import io
import os
import sys


def _fileno(stream) -> int | None:
    try:
        return stream.fileno()
    except (AttributeError, OSError, io.UnsupportedOperation):
        return None


class StdIO:
    """Reads whatever input is ready without waiting, and writes output at once."""

    def __init__(self, stdin=None, stdout=None):
        self._stdin = stdin if stdin is not None else sys.stdin.buffer
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._fd = _fileno(self._stdin)
        if self._fd is not None:
            try:
                os.set_blocking(self._fd, False)
            except OSError:
                pass

    def read(self, max_length: int) -> bytes:
        """Return up to max_length bytes that are ready, or b"" when none are."""
        if max_length <= 0:
            return b""
        try:
            if self._fd is not None:
                data = os.read(self._fd, max_length)
            else:
                data = self._stdin.read(max_length)
        except OSError:
            return b""
        return bytes(data) if data else b""

    def write(self, data: bytes) -> None:
        """Write data to the output stream and flush it."""
        self._stdout.write(bytes(data))
        self._stdout.flush()