"""Line-buffered, prefix-tagging writer for child process output."""

from __future__ import annotations

import io
from typing import TextIO


class PrefixedLineStream:
    """Writer that emits complete lines to ``sink`` with ``prefix`` prepended.

    Bytes are buffered until a newline arrives. When ``record`` is set, the
    unprefixed text of every emitted line is also kept in a StringIO that
    ``get()`` returns. The same StringIO is returned for the whole life of
    the stream, so readers may look at it while output is still arriving.
    """

    def __init__(self, sink: TextIO, prefix: str = "", record: bool = True):
        self.sink = sink
        self.prefix = prefix
        self.record = record
        self._pending = bytearray()
        self._data = io.StringIO()

    def write(self, data: bytes) -> int:
        self._pending.extend(data)
        self._output_lines()
        return len(data)

    def close(self) -> None:
        """Flush a trailing fragment that has no newline, then reset."""
        self._flush()
        self._pending = bytearray()

    def get(self) -> io.StringIO:
        return self._data

    def clear(self) -> None:
        """Drop everything recorded so far."""
        self._data.seek(0)
        self._data.truncate()

    def _output_lines(self) -> None:
        end = self._pending.rfind(b"\n")
        if end < 0:
            return
        complete = bytes(self._pending[: end + 1])
        del self._pending[: end + 1]
        for line in complete.split(b"\n")[:-1]:
            self._output(line + b"\n")

    def _flush(self) -> None:
        if self._pending:
            self._output(bytes(self._pending))
            self._pending.clear()

    def _output(self, raw: bytes) -> None:
        if not raw:
            return
        text = raw.decode("utf-8", errors="replace")

        if self.record:
            self._data.write(text)

        if not text.endswith("\n"):
            text += "\n"
        self.sink.write(self.prefix + text)
        self.sink.flush()
