from __future__ import annotations

import re
from typing import List

from .errors import EntryNotFoundError, PatternError, TarballError
from .reader import EntryReader
from .sources import Source


def get_file_paths_with_regex(source: Source, regex: str) -> List[str]:
    """Return, in stream order, the entry names containing a match for ``regex``.

    The pattern is compiled before the archive is touched. Payloads are skipped
    without being buffered. If the scan fails part-way, the exception raised
    carries the names found so far in its ``partial`` attribute.
    """
    try:
        pattern = re.compile(regex)
    except re.error as exc:
        raise PatternError(f"invalid pattern {regex!r}: {exc}") from exc

    names: List[str] = []
    try:
        with EntryReader(source) as reader:
            for entry in reader:
                if pattern.search(entry.name):
                    names.append(entry.name)
                entry.skip()
    except (TarballError, OSError) as exc:
        exc.partial = names
        raise
    return names


def read_file_from_gzipped_tarball(source: Source, path: str) -> bytes:
    """Return the payload of the first entry named exactly ``path``."""
    with EntryReader(source) as reader:
        for entry in reader:
            if entry.name == path:
                return entry.read()
            entry.skip()
    raise EntryNotFoundError(path)
