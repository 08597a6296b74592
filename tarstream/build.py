from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from typing import List, Tuple

from .constants import DEFAULT_COMPRESS_LEVEL, MODE_MASK
from .reader import EntryHeader
from .sources import PathType, list_children, safe_remove, same_path
from .writer import EntryWriter


@dataclass
class BuildResult:
    archive: str
    added: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    remove_failures: List[Tuple[str, OSError]] = field(default_factory=list)


def create_gzipped_tarball(
    tar_path: PathType,
    path: PathType,
    remove_files: bool = False,
    compresslevel: int = DEFAULT_COMPRESS_LEVEL,
) -> BuildResult:
    """Create a gzipped tarball at ``tar_path`` from a regular file or directory.

    A regular file becomes the only entry. For a directory, each direct child
    that is a regular file becomes an entry named relative to the directory's
    parent (``dir/child``); nested directories and other special files are
    not descended into and are reported in ``BuildResult.skipped``. The
    archive itself is never added, even when it is created inside ``path``.

    With ``remove_files`` each source file is deleted right after it has been
    added. Deletion is best effort: failures are recorded in
    ``BuildResult.remove_failures`` and never raised.

    Any failure to stat, open or read a source, or to write the archive,
    propagates and leaves a partial archive at ``tar_path`` that must be
    discarded.
    """
    tar_path = os.fspath(tar_path)
    path = os.path.normpath(os.fspath(path))
    info = os.stat(path)
    result = BuildResult(archive=tar_path)

    with EntryWriter(tar_path, compresslevel=compresslevel) as writer:
        if stat.S_ISDIR(info.st_mode):
            file_paths = list_children(path)
        else:
            file_paths = [path]

        dir_of_path = os.path.dirname(path)
        for file_path in file_paths:
            if same_path(file_path, tar_path):
                continue
            if file_path != path and not stat.S_ISREG(os.stat(file_path).st_mode):
                result.skipped.append(file_path)
                continue
            result.added.append(_add_file(writer, file_path, dir_of_path))
            if remove_files:
                err = safe_remove(file_path)
                if err is None:
                    result.removed.append(file_path)
                else:
                    result.remove_failures.append((file_path, err))
    return result


def _add_file(writer: EntryWriter, file_path: str, dir_path: str) -> str:
    name = os.path.relpath(file_path, dir_path or os.curdir).replace(os.sep, "/")
    with open(file_path, "rb") as fh:
        st = os.fstat(fh.fileno())
        header = EntryHeader(
            name=name,
            size=st.st_size,
            mode=st.st_mode & MODE_MASK,
            mtime=st.st_mtime,
        )
        writer.add_entry(header, fh)
    return name
