"""
tarstream — streaming tools for gzip-compressed tar archives.

Archives are handled as an ordered stream of (header, payload) entries, one
entry at a time, without loading whole archives into memory:

- Combine several tarballs into one, preserving entry order (combine)
- Build a tarball from a file or the direct children of a directory (build)
- Find entry names by regular expression, or read one entry's bytes (find)
- Re-stream entries into an open writer, trimming a name prefix (transcode)

The entry-level reader and writer (reader.EntryReader, writer.EntryWriter)
enforce that each payload is fully consumed or written before the next header.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "errors",
    "reader",
    "writer",
    "combine",
    "build",
    "find",
    "transcode",
]

# Importable programmatic API is available via the modules above and the CLI
# functions in tarstream.cli (cmd_create, cmd_combine, ...) which take normal parameters.
