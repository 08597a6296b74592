from __future__ import annotations

import io
import os
from contextlib import contextmanager
from typing import BinaryIO, Iterator, List, Optional, Union

from .constants import ARCHIVE_DIR_MODE


PathType = Union[str, "os.PathLike[str]"]
Source = Union[bytes, bytearray, memoryview, PathType, BinaryIO]
Sink = Union[PathType, BinaryIO]


def _is_path(obj) -> bool:
    return isinstance(obj, (str, os.PathLike))


@contextmanager
def open_source(source: Source) -> Iterator[BinaryIO]:
    """Yield a readable binary stream for ``source``.

    Args:
        source: In-memory bytes, a filesystem path, or an already-open binary
            file object.

    Handles opened here are closed on exit; caller-supplied file objects are
    left open.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        with io.BytesIO(bytes(source)) as buf:
            yield buf
    elif _is_path(source):
        with open(source, "rb") as fh:
            yield fh
    else:
        yield source


@contextmanager
def open_sink(sink: Sink) -> Iterator[BinaryIO]:
    """Yield a writable binary stream for ``sink``, creating parent directories for paths."""
    if _is_path(sink):
        parent = os.path.dirname(os.fspath(sink))
        if parent:
            os.makedirs(parent, mode=ARCHIVE_DIR_MODE, exist_ok=True)
        with open(sink, "wb") as fh:
            yield fh
    else:
        yield sink


def list_children(path: str) -> List[str]:
    """Return the direct children of a directory, sorted by name."""
    return [os.path.join(path, name) for name in sorted(os.listdir(path))]


def same_path(a: str, b: str) -> bool:
    return os.path.normcase(os.path.abspath(a)) == os.path.normcase(os.path.abspath(b))


def safe_remove(path: str) -> Optional[OSError]:
    """Best-effort unlink that never raises; returns the failure, if any."""
    try:
        os.remove(path)
    except OSError as exc:
        return exc
    return None
