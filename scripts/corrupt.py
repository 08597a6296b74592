from __future__ import annotations

import argparse
import gzip
import os
import random
import sys
from typing import Optional

from tarstream.reader import EntryReader
from tarstream.errors import TarballError


def _xor_at(fh, pos: int, mask: int) -> bool:
    fh.seek(pos)
    b = fh.read(1)
    if not b:
        return False
    fh.seek(pos)
    fh.write(bytes([b[0] ^ (mask & 0xFF)]))
    return True


def flip_byte(path: str, offset: int, xor_val: int = 0xFF) -> None:
    if offset < 0:
        raise ValueError("Offset must be non-negative")
    with open(path, "r+b") as f:
        if not _xor_at(f, offset, xor_val):
            raise ValueError("Offset beyond end of file")
        f.flush()
        os.fsync(f.fileno())


def truncate(path: str, keep: int) -> None:
    """Cut the archive down to its first ``keep`` bytes (negative: drop that many from the end)."""
    size = os.path.getsize(path)
    new_size = keep if keep >= 0 else max(0, size + keep)
    if new_size > size:
        raise ValueError("Cannot truncate past end of file")
    with open(path, "r+b") as f:
        f.truncate(new_size)


def damage_tar(path: str, offset: Optional[int] = None, keep: Optional[int] = None, xor_val: int = 0xFF) -> None:
    """Damage the tar stream inside the gzip envelope and recompress it.

    The result is still a well-formed gzip file, so any failure comes from the
    tar framing: ``offset`` flips one byte of the uncompressed tar data, ``keep``
    cuts the tar data down to that many bytes.
    """
    with open(path, "rb") as f:
        raw = bytearray(gzip.decompress(f.read()))
    if offset is not None:
        if not 0 <= offset < len(raw):
            raise ValueError(f"Tar offset {offset} outside 0..{len(raw) - 1}")
        raw[offset] ^= xor_val & 0xFF
    if keep is not None:
        del raw[keep:]
    with open(path, "wb") as f:
        f.write(gzip.compress(bytes(raw)))


def cmd_by_offset(args: argparse.Namespace) -> None:
    flip_byte(args.archive, args.offset, xor_val=args.xor)
    print(f"Flipped 1 byte at offset {args.offset}")


def cmd_truncate(args: argparse.Namespace) -> None:
    truncate(args.archive, args.keep)
    print(f"Truncated to {os.path.getsize(args.archive)} bytes")


def cmd_tar(args: argparse.Namespace) -> None:
    if args.offset is None and args.keep is None:
        raise ValueError("Give --offset and/or --keep")
    damage_tar(args.archive, offset=args.offset, keep=args.keep, xor_val=args.xor)
    print("Rewrote tar stream inside a valid gzip envelope")


def cmd_random(args: argparse.Namespace) -> None:
    rng = random.Random(args.seed)
    flips = 0
    size = os.path.getsize(args.archive)
    if size == 0:
        raise ValueError("Archive is empty")
    # Leave the 10-byte gzip header intact so failures come from the deflate body
    lo = min(10, size - 1)
    with open(args.archive, "r+b") as f:
        for _ in range(args.count):
            if _xor_at(f, rng.randrange(lo, size), args.xor):
                flips += 1
        f.flush()
        os.fsync(f.fileno())
    print(f"Flipped {flips} byte(s) at random offsets")


def cmd_check(args: argparse.Namespace) -> None:
    n = 0
    with EntryReader(args.archive) as r:
        for e in r:
            e.skip()
            n += 1
    print(f"OK: {n} entries readable")


def main(argv: Optional[list[str]] = None) -> None:
    ap = argparse.ArgumentParser(prog="tarstream.corrupt", description="Damage gzipped tarballs for testing")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_off = sub.add_parser("by-offset", help="Flip one byte at an absolute archive offset")
    p_off.add_argument("archive", help="Path to .tar.gz archive")
    p_off.add_argument("--offset", type=int, required=True, help="Absolute byte offset in archive")
    p_off.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_off.set_defaults(func=cmd_by_offset)

    p_trunc = sub.add_parser("truncate", help="Truncate the archive")
    p_trunc.add_argument("archive", help="Path to .tar.gz archive")
    p_trunc.add_argument("--keep", type=int, required=True, help="Bytes to keep; negative drops that many from the end")
    p_trunc.set_defaults(func=cmd_truncate)

    p_tar = sub.add_parser("tar", help="Damage the uncompressed tar stream, keeping the gzip envelope valid")
    p_tar.add_argument("archive", help="Path to .tar.gz archive")
    p_tar.add_argument("--offset", type=int, default=None, help="Tar stream offset of the byte to flip")
    p_tar.add_argument("--keep", type=int, default=None, help="Tar stream bytes to keep")
    p_tar.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_tar.set_defaults(func=cmd_tar)

    p_rand = sub.add_parser("random", help="Flip N random bytes after the gzip header")
    p_rand.add_argument("archive", help="Path to .tar.gz archive")
    p_rand.add_argument("--count", type=int, default=1, help="Number of random byte flips (default 1)")
    p_rand.add_argument("--seed", type=int, default=None, help="PRNG seed for reproducibility")
    p_rand.add_argument("--xor", type=lambda x: int(x, 0), default=0xFF, help="XOR mask to apply (default 0xFF)")
    p_rand.set_defaults(func=cmd_random)

    p_check = sub.add_parser("check", help="Read every entry and report whether the archive decodes")
    p_check.add_argument("archive", help="Path to .tar.gz archive")
    p_check.set_defaults(func=cmd_check)

    args = ap.parse_args(argv)
    try:
        args.func(args)
    except (TarballError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
