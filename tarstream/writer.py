from __future__ import annotations

import gzip
from contextlib import ExitStack
from typing import BinaryIO, Optional

from .constants import (
    BLOCKSIZE,
    RECORDSIZE,
    NUL,
    TAR_FORMAT,
    TAR_ENCODING,
    TAR_ERRORS,
    DEFAULT_COMPRESS_LEVEL,
    COPY_BUFSIZE,
    HEADER_PENDING,
    PAYLOAD_IN_PROGRESS,
    CLOSED,
)
from .errors import SizeMismatchError, StreamStateError
from .reader import EntryHeader
from .sources import Sink, open_sink


class EntryWriter:
    """Streaming writer that emits a gzip-compressed tar archive entry by entry.

    Usage::

        with EntryWriter("out.tar.gz") as w:
            w.write_header(EntryHeader("a.txt", size=5))
            w.write(b"hello")

    Every ``write_header`` must be followed by exactly ``size`` payload bytes
    before the next header or ``close``. ``close`` appends the end-of-archive
    marker and flushes the compressor; an archive that was never closed is
    truncated.
    """

    def __init__(
        self,
        sink: Sink,
        compresslevel: int = DEFAULT_COMPRESS_LEVEL,
        mtime: Optional[float] = None,
    ):
        self.sink = sink
        self.compresslevel = compresslevel
        self.mtime = mtime
        self.state = HEADER_PENDING
        self.offset = 0  # uncompressed tar bytes written so far
        self.entries_written = 0
        self._stack: Optional[ExitStack] = None
        self._gz: Optional[BinaryIO] = None
        self._current: Optional[EntryHeader] = None
        self._remaining = 0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            # Output is invalid either way; release handles without masking exc.
            self.abort()

    def open(self):
        if self._gz is not None:
            return
        if self.state == CLOSED:
            raise StreamStateError("Writer cannot be reopened")
        stack = ExitStack()
        try:
            fh = stack.enter_context(open_sink(self.sink))
            self._gz = stack.enter_context(
                gzip.GzipFile(filename="", fileobj=fh, mode="wb", compresslevel=self.compresslevel, mtime=self.mtime)
            )
        except Exception:
            stack.close()
            raise
        self._stack = stack

    def close(self):
        """Finish the last entry, write the end-of-archive marker and flush."""
        if self._gz is None:
            self.state = CLOSED
            return
        try:
            self._finish_entry()
            self._write(NUL * (BLOCKSIZE * 2))
            _, remainder = divmod(self.offset, RECORDSIZE)
            if remainder > 0:
                self._write(NUL * (RECORDSIZE - remainder))
        finally:
            self.abort()

    def abort(self):
        """Release the compressor and any owned file handle; no end marker is written."""
        self._gz = None
        self._current = None
        self.state = CLOSED
        if self._stack is not None:
            stack, self._stack = self._stack, None
            stack.close()

    def write_header(self, header: EntryHeader) -> None:
        self._require_open()
        self._finish_entry()
        info = header.to_tarinfo()
        self._write(info.tobuf(TAR_FORMAT, TAR_ENCODING, TAR_ERRORS))
        self._current = header
        self._remaining = info.size
        self.entries_written += 1
        self.state = PAYLOAD_IN_PROGRESS if self._remaining else HEADER_PENDING

    def write(self, data: bytes) -> int:
        """Append payload bytes to the current entry."""
        self._require_open()
        n = len(data)
        if n == 0:
            return 0
        if self._current is None:
            raise StreamStateError("write() before write_header()")
        if n > self._remaining:
            raise SizeMismatchError(
                f"{self._current.name}: {n} bytes written with only {self._remaining} of "
                f"declared size {self._current.size} remaining"
            )
        self._write(data)
        self._remaining -= n
        if self._remaining == 0:
            _, remainder = divmod(self._current.size, BLOCKSIZE)
            if remainder > 0:
                self._write(NUL * (BLOCKSIZE - remainder))
            self.state = HEADER_PENDING
        return n

    def add_entry(self, header: EntryHeader, fileobj: Optional[BinaryIO] = None) -> None:
        """Write ``header`` and stream its payload from ``fileobj`` until EOF."""
        self.write_header(header)
        if fileobj is None:
            return
        while True:
            buf = fileobj.read(COPY_BUFSIZE)
            if not buf:
                break
            self.write(buf)
        self._finish_entry()

    # internals
    def _require_open(self):
        if self._gz is None:
            raise StreamStateError("Writer not open")

    def _finish_entry(self):
        if self.state == PAYLOAD_IN_PROGRESS:
            raise SizeMismatchError(
                f"{self._current.name}: {self._current.size - self._remaining} bytes written, "
                f"declared size {self._current.size}"
            )

    def _write(self, data: bytes):
        self._gz.write(data)
        self.offset += len(data)
