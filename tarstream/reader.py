from __future__ import annotations

import dataclasses
import gzip
import tarfile
import zlib
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, Iterator, Optional

from .constants import COPY_BUFSIZE, HEADER_PENDING, PAYLOAD_IN_PROGRESS, CLOSED
from .errors import DecodeError, SizeMismatchError, StreamStateError
from .sources import Source, open_source


# PAX keys that shadow ustar fields; tarfile regenerates them on write and
# would otherwise let a stale value override a renamed header.
_PAX_SHADOW_KEYS = ("path", "linkpath", "size", "mtime", "uid", "gid", "uname", "gname")


@contextmanager
def decode_errors():
    """Translate gzip/zlib/tarfile framing failures into DecodeError.

    ``gzip.BadGzipFile`` is an OSError subclass, so it has to be caught here
    before callers see it as an I/O failure.
    """
    try:
        yield
    except (tarfile.TarError, gzip.BadGzipFile, zlib.error, EOFError) as exc:
        raise DecodeError(str(exc) or exc.__class__.__name__) from exc


@dataclass
class EntryHeader:
    name: str
    size: int = 0
    mode: int = 0o644
    mtime: float = 0.0
    type: bytes = tarfile.REGTYPE
    linkname: str = ""
    uid: int = 0
    gid: int = 0
    uname: str = ""
    gname: str = ""
    devmajor: int = 0
    devminor: int = 0
    pax_headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_tarinfo(cls, info: tarfile.TarInfo) -> "EntryHeader":
        pax = {k: v for k, v in info.pax_headers.items() if k not in _PAX_SHADOW_KEYS}
        name = info.name
        # tarfile strips the trailing slash it stores on directory names
        if info.isdir() and not name.endswith("/"):
            name += "/"
        return cls(
            name=name,
            size=info.size,
            mode=info.mode,
            mtime=info.mtime,
            type=info.type,
            linkname=info.linkname,
            uid=info.uid,
            gid=info.gid,
            uname=info.uname,
            gname=info.gname,
            devmajor=info.devmajor,
            devminor=info.devminor,
            pax_headers=pax,
        )

    def to_tarinfo(self) -> tarfile.TarInfo:
        info = tarfile.TarInfo(self.name)
        info.size = self.size if self.has_payload() else 0
        info.mode = self.mode
        info.mtime = self.mtime
        info.type = self.type
        info.linkname = self.linkname
        info.uid = self.uid
        info.gid = self.gid
        info.uname = self.uname
        info.gname = self.gname
        info.devmajor = self.devmajor
        info.devminor = self.devminor
        info.pax_headers = dict(self.pax_headers)
        return info

    def has_payload(self) -> bool:
        """True for entry types whose payload bytes follow the header in the stream."""
        return self.type in tarfile.REGULAR_TYPES or self.type not in tarfile.SUPPORTED_TYPES

    def replace(self, **changes) -> "EntryHeader":
        return dataclasses.replace(self, pax_headers=dict(self.pax_headers), **changes)


class Entry:
    """One archive record: a header plus its one-shot, forward-only payload."""

    def __init__(self, header: EntryHeader, reader: "EntryReader", fileobj: Optional[BinaryIO]):
        self.header = header
        self._reader = reader
        self._fileobj = fileobj
        self.remaining = header.size if fileobj is not None else 0

    @property
    def name(self) -> str:
        return self.header.name

    def read(self, size: int = -1) -> bytes:
        if self.remaining == 0:
            return b""
        self._reader._check_current(self)
        n = self.remaining if size is None or size < 0 else min(size, self.remaining)
        with decode_errors():
            data = self._fileobj.read(n)
        if not data:
            raise SizeMismatchError(
                f"{self.name}: payload ended {self.remaining} bytes short of declared size {self.header.size}"
            )
        self.remaining -= len(data)
        if self.remaining == 0:
            self._reader.state = HEADER_PENDING
        return data

    def iter_chunks(self, bufsize: int = COPY_BUFSIZE) -> Iterator[bytes]:
        while True:
            chunk = self.read(bufsize)
            if not chunk:
                return
            yield chunk

    def skip(self) -> None:
        """Discard whatever is left of the payload."""
        for _ in self.iter_chunks():
            pass


class EntryReader:
    """Sequential reader over a gzip-compressed tar stream.

    The reader owns the decode cursor. An entry's payload must be drained (or
    explicitly skipped) before the next header is requested, since neither the
    gzip envelope nor the source is assumed to be seekable.
    """

    def __init__(self, source: Source):
        self.source = source
        self.state = HEADER_PENDING
        self._stack: Optional[ExitStack] = None
        self._tar: Optional[tarfile.TarFile] = None
        self._current: Optional[Entry] = None
        self._pending: Optional[tarfile.TarInfo] = None
        self._eof = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __iter__(self) -> Iterator[Entry]:
        while True:
            entry = self.next_entry()
            if entry is None:
                return
            yield entry

    def open(self):
        if self._tar is not None:
            return
        if self.state == CLOSED:
            raise StreamStateError("Reader cannot be reopened")
        stack = ExitStack()
        try:
            fh = stack.enter_context(open_source(self.source))
            gz = stack.enter_context(gzip.GzipFile(fileobj=fh, mode="rb"))
            with decode_errors():
                # Stream mode: headers are read strictly in order, never by seeking.
                self._tar = stack.enter_context(tarfile.open(fileobj=gz, mode="r|"))
        except Exception:
            # Ensure handles are released on failure to avoid leaks
            stack.close()
            raise
        self._stack = stack
        # tarfile reads the first header while opening; take it over so the
        # TarFile never keeps a member list of its own.
        self._pending = self._tar.firstmember
        self._tar.firstmember = None
        self._tar.members = []
        self._eof = self._pending is None

    def close(self):
        self._current = None
        self._tar = None
        self.state = CLOSED
        if self._stack is not None:
            stack, self._stack = self._stack, None
            stack.close()

    def next_entry(self) -> Optional[Entry]:
        """Advance to the next header; returns None at end of archive."""
        if self._tar is None:
            raise StreamStateError("Reader not open")
        if self.state == PAYLOAD_IN_PROGRESS:
            cur = self._current
            raise StreamStateError(
                f"payload of {cur.name} not drained ({cur.remaining} bytes left); read or skip() it first"
            )
        if self._eof:
            return None
        if self._pending is not None:
            info, self._pending = self._pending, None
        else:
            with decode_errors():
                info = self._read_header()
        self._current = None
        if info is None:
            self._eof = True
            return None
        header = EntryHeader.from_tarinfo(info)
        fileobj = None
        if header.has_payload():
            with decode_errors():
                fileobj = self._tar.extractfile(info)
        entry = Entry(header, self, fileobj)
        self._current = entry
        self.state = PAYLOAD_IN_PROGRESS if entry.remaining else HEADER_PENDING
        return entry

    def _read_header(self) -> Optional[tarfile.TarInfo]:
        """Read the header block at the tar cursor.

        ``TarFile.next()`` reports a damaged header after the first entry as
        end of archive, so headers are parsed here instead. Only a zero block,
        or a stream that stops cleanly on a block boundary, ends the archive;
        bad checksums and partial blocks propagate as ``tarfile`` errors.
        """
        tar = self._tar
        # Skip the block padding after the previous payload
        if tar.offset != tar.fileobj.tell():
            tar.fileobj.seek(tar.offset - 1)
            if not tar.fileobj.read(1):
                raise DecodeError("unexpected end of data in payload padding")
        try:
            return tarfile.TarInfo.fromtarfile(tar)
        except (tarfile.EOFHeaderError, tarfile.EmptyHeaderError):
            return None

    def skip(self) -> None:
        """Discard the rest of the current entry's payload."""
        if self._current is not None:
            self._current.skip()

    def _check_current(self, entry: Entry) -> None:
        if self._tar is None:
            raise StreamStateError("Reader not open")
        if entry is not self._current:
            raise StreamStateError(f"{entry.name}: reader has moved past this entry")
