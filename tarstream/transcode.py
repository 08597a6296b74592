from __future__ import annotations

from typing import Optional

from .reader import Entry, EntryHeader, EntryReader
from .sources import Source
from .writer import EntryWriter


def copy_entry(entry: Entry, writer: EntryWriter, header: Optional[EntryHeader] = None) -> None:
    """Write ``entry`` (or ``header`` in its place) to ``writer``, streaming the payload through."""
    writer.write_header(header if header is not None else entry.header)
    for chunk in entry.iter_chunks():
        writer.write(chunk)


def write_tarball_to_writer(source: Source, writer: EntryWriter, prefix: str = "") -> int:
    """Re-stream every entry of ``source`` into an already-open ``writer``.

    When ``prefix`` is non-empty it is trimmed from the start of each entry name
    that begins with it; other names pass through unchanged. The writer is not
    closed, so several archives can be streamed into it in sequence.

    Returns:
        The number of entries written.
    """
    count = 0
    with EntryReader(source) as reader:
        for entry in reader:
            header = entry.header
            if prefix and header.name.startswith(prefix):
                header = header.replace(name=header.name[len(prefix):])
            copy_entry(entry, writer, header)
            count += 1
    return count
