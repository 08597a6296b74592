from __future__ import annotations

import os
import sys
import tarfile
import time
import argparse

from typing import List, Optional

from tarstream.build import create_gzipped_tarball
from tarstream.combine import combine_tarballs
from tarstream.constants import DEFAULT_COMPRESS_LEVEL
from tarstream.errors import TarballError
from tarstream.find import get_file_paths_with_regex, read_file_from_gzipped_tarball
from tarstream.reader import EntryReader
from tarstream.sources import open_sink
from tarstream.transcode import write_tarball_to_writer
from tarstream.writer import EntryWriter


_KINDS = {
    tarfile.REGTYPE: "file",
    tarfile.AREGTYPE: "file",
    tarfile.DIRTYPE: "dir",
    tarfile.SYMTYPE: "symlink",
    tarfile.LNKTYPE: "link",
}


def _discard(path: str) -> None:
    """Best-effort removal of a destination left invalid by a failed command."""
    try:
        os.remove(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        print(f"Warning: failed to remove partial output {path}: {exc}", file=sys.stderr)


def cmd_create(output: str, path: str, *, remove_files: bool = False, level: int = DEFAULT_COMPRESS_LEVEL, quiet: bool = False) -> bool:
    """Create a gzipped tarball from a file or the direct children of a directory.

    Args:
        output: Path of the .tar.gz to write. Parent directories are created.
        path: Regular file or directory to archive.
        remove_files: Delete each source file once it is in the archive.
        level: gzip compression level (0-9).
        quiet: Only print the summary line.
    """
    # Fail before the destination is created when the input is missing.
    os.stat(path)
    t0 = time.time()
    try:
        res = create_gzipped_tarball(output, path, remove_files=remove_files, compresslevel=level)
    except (TarballError, OSError):
        _discard(output)
        raise
    if not quiet:
        for name in res.added:
            print(f" adding: {name}")
        for skipped in res.skipped:
            print(f" skipping (not a regular file): {skipped}")
    for failed, exc in res.remove_failures:
        print(f"Warning: failed to remove {failed}: {exc}", file=sys.stderr)
    dt = max(0.000001, time.time() - t0)
    print(
        f"Done: {len(res.added)} files, {len(res.skipped)} skipped, "
        f"{len(res.removed)} removed in {dt:.1f}s"
    )
    return True


def cmd_combine(output: str, inputs: List[str], *, quiet: bool = False) -> bool:
    """Merge several gzipped tarballs into ``output``, entries in input order."""
    data = combine_tarballs(inputs)
    with open_sink(output) as fh:
        fh.write(data)
    if not quiet:
        for p in inputs:
            print(f" merged: {p}")
    print(f"Done: {len(inputs)} archives, {len(data)} bytes written to {output}")
    return True


def cmd_transcode(output: str, inputs: List[str], *, strip_prefix: str = "", level: int = DEFAULT_COMPRESS_LEVEL, quiet: bool = False) -> bool:
    """Re-stream the entries of each input into one new archive.

    Args:
        output: Path of the .tar.gz to write.
        inputs: Source archives, streamed in order into a single writer.
        strip_prefix: Literal prefix trimmed from entry names that start with it.
        level: gzip compression level (0-9).
    """
    total = 0
    try:
        with EntryWriter(output, compresslevel=level) as w:
            for p in inputs:
                n = write_tarball_to_writer(p, w, prefix=strip_prefix)
                total += n
                if not quiet:
                    print(f" {n:6d} entries: {p}")
    except (TarballError, OSError):
        _discard(output)
        raise
    print(f"Done: {total} entries from {len(inputs)} archives")
    return True


def cmd_find(archive: str, pattern: str) -> bool:
    """Print entry names matching ``pattern``; returns False when nothing matched."""
    try:
        names = get_file_paths_with_regex(archive, pattern)
    except (TarballError, OSError) as exc:
        # Best-effort listing of what was found before the failure
        for name in getattr(exc, "partial", []):
            print(name)
        raise
    for name in names:
        print(name)
    return bool(names)


def cmd_cat(archive: str, name: str, *, output: Optional[str] = None) -> bool:
    """Write one entry's bytes to ``output`` or stdout."""
    data = read_file_from_gzipped_tarball(archive, name)
    if output:
        with open_sink(output) as fh:
            fh.write(data)
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
    return True


def cmd_list(archive: str) -> bool:
    """List archive entries with type, mode, size and modification time."""
    with EntryReader(archive) as r:
        for e in r:
            h = e.header
            kind = _KINDS.get(h.type, h.type.decode("ascii", "replace"))
            when = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(h.mtime))
            print(f"{kind}\t{h.mode:04o}\t{h.size}\t{when}\t{h.name}")
            e.skip()
    return True


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="tarstream", description="Stream, merge and inspect gzipped tarballs")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_create = sub.add_parser("create", help="Create a tarball from a file or the direct children of a directory")
    ap_create.add_argument("output", help="Output .tar.gz path (parent directories are created)")
    ap_create.add_argument("path", help="File or directory to archive")
    ap_create.add_argument("--remove-files", action="store_true", help="Delete each source file after it is added")
    ap_create.add_argument("--level", type=int, default=DEFAULT_COMPRESS_LEVEL, help=f"gzip level 0-9 (default {DEFAULT_COMPRESS_LEVEL})")
    ap_create.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_combine = sub.add_parser("combine", help="Merge tarballs into one, preserving entry order")
    ap_combine.add_argument("output", help="Output .tar.gz path")
    ap_combine.add_argument("inputs", nargs="*", help="Input tarballs (none gives an empty archive)")
    ap_combine.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_transcode = sub.add_parser("transcode", help="Re-stream tarballs into a new one, optionally trimming a name prefix")
    ap_transcode.add_argument("output", help="Output .tar.gz path")
    ap_transcode.add_argument("inputs", nargs="+", help="Input tarballs")
    ap_transcode.add_argument("--strip-prefix", default="", help="Literal prefix removed from entry names that start with it")
    ap_transcode.add_argument("--level", type=int, default=DEFAULT_COMPRESS_LEVEL, help=f"gzip level 0-9 (default {DEFAULT_COMPRESS_LEVEL})")
    ap_transcode.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_find = sub.add_parser("find", help="List entry names matching a regular expression")
    ap_find.add_argument("archive", help="Archive path")
    ap_find.add_argument("pattern", help="Regular expression, matched anywhere in the name")

    ap_cat = sub.add_parser("cat", help="Print the contents of one entry")
    ap_cat.add_argument("archive", help="Archive path")
    ap_cat.add_argument("name", help="Exact entry name")
    ap_cat.add_argument("--output", "-o", help="Write to this file instead of stdout")

    ap_list = sub.add_parser("list", help="List archive entries")
    ap_list.add_argument("archive", help="Archive path")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "create":
            cmd_create(args.output, args.path, remove_files=args.remove_files, level=args.level, quiet=args.quiet)
        elif args.cmd == "combine":
            cmd_combine(args.output, args.inputs, quiet=args.quiet)
        elif args.cmd == "transcode":
            cmd_transcode(args.output, args.inputs, strip_prefix=args.strip_prefix, level=args.level, quiet=args.quiet)
        elif args.cmd == "find":
            found = cmd_find(args.archive, args.pattern)
            sys.exit(0 if found else 1)
        elif args.cmd == "cat":
            cmd_cat(args.archive, args.name, output=args.output)
        elif args.cmd == "list":
            cmd_list(args.archive)
        else:
            raise RuntimeError("Unknown command")
    except (TarballError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
