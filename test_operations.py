from __future__ import annotations

import gzip
import io
import os
import tarfile
import tempfile
import unittest
from pathlib import Path
from typing import Dict, List, Tuple
from unittest import mock

from tarstream.build import create_gzipped_tarball
from tarstream.combine import combine_tarballs
from tarstream.errors import DecodeError, EntryNotFoundError, PatternError
from tarstream.find import get_file_paths_with_regex, read_file_from_gzipped_tarball
from tarstream.reader import EntryHeader, EntryReader
from tarstream.transcode import write_tarball_to_writer
from tarstream.writer import EntryWriter


def _write_tgz(entries: List[Tuple[str, bytes]]) -> bytes:
    buf = io.BytesIO()
    with EntryWriter(buf) as w:
        for name, data in entries:
            w.write_header(EntryHeader(name, size=len(data), mode=0o600, mtime=1_650_000_000))
            w.write(data)
    return buf.getvalue()


def _entries(data) -> List[Tuple[str, bytes]]:
    out = []
    with EntryReader(data) as r:
        for e in r:
            out.append((e.name, e.read()))
    return out


def _damaged_tar_tgz(kind: str) -> bytes:
    """Entries a, b, c under a valid gzip envelope with b's header block broken."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.USTAR_FORMAT) as tf:
        for name in ("a", "b", "c"):
            info = tarfile.TarInfo(name)
            info.size = 3
            tf.addfile(info, io.BytesIO(name.encode() * 3))
    raw = bytearray(buf.getvalue())
    # a: header block 0, data block 1; b's header starts at 1024
    if kind == "checksum":
        raw[1024 + 10] ^= 0xFF
    else:
        del raw[1024 + 200:]
    return gzip.compress(bytes(raw))


def _dir_tgz() -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name in ("pkg/sub/", "pkg/doc/"):
            d = tarfile.TarInfo(name)
            d.type = tarfile.DIRTYPE
            d.mode = 0o755
            tf.addfile(d)
        f = tarfile.TarInfo("pkg/sub/f.txt")
        f.size = 2
        tf.addfile(f, io.BytesIO(b"hi"))
    return buf.getvalue()


def _create_sample_files(base: Path) -> Dict[str, bytes]:
    files = {
        "a.txt": b"hello world\n" * 50,
        "b.bin": os.urandom(4096),
        "notes.md": b"# Title\nSome content\n",
        "empty": b"",
    }
    for name, data in files.items():
        (base / name).write_bytes(data)
    return files


class CombineTests(unittest.TestCase):
    def test_order_and_counts(self):
        a = _write_tgz([("one", b"1"), ("two", b"22")])
        b = _write_tgz([("three", b"333")])
        merged = combine_tarballs([a, b])
        self.assertEqual([("one", b"1"), ("two", b"22"), ("three", b"333")], _entries(merged))

    def test_extract_matches_sources(self):
        a_entries = [("docs/a.txt", os.urandom(1000)), ("docs/b.txt", b"bee")]
        b_entries = [("img/c.png", os.urandom(50_000))]
        a, b = _write_tgz(a_entries), _write_tgz(b_entries)
        merged = combine_tarballs([io.BytesIO(a), b])
        for name, _ in a_entries:
            self.assertEqual(read_file_from_gzipped_tarball(a, name), read_file_from_gzipped_tarball(merged, name))
        for name, _ in b_entries:
            self.assertEqual(read_file_from_gzipped_tarball(b, name), read_file_from_gzipped_tarball(merged, name))
        self.assertEqual(3, len(get_file_paths_with_regex(merged, "")))

    def test_zero_sources(self):
        merged = combine_tarballs([])
        with EntryReader(merged) as r:
            self.assertIsNone(r.next_entry())

    def test_duplicates_retained(self):
        a = _write_tgz([("same", b"first")])
        b = _write_tgz([("same", b"second")])
        merged = combine_tarballs([a, b])
        self.assertEqual([("same", b"first"), ("same", b"second")], _entries(merged))
        # First match wins when reading back
        self.assertEqual(b"first", read_file_from_gzipped_tarball(merged, "same"))

    def test_headers_copied_verbatim(self):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tf:
            info = tarfile.TarInfo("bin/tool")
            payload = b"#!/bin/sh\necho hi\n"
            info.size = len(payload)
            info.mode = 0o755
            info.mtime = 1_234_567_890
            info.uid, info.gid = 501, 20
            info.uname, info.gname = "dev", "staff"
            tf.addfile(info, io.BytesIO(payload))
            d = tarfile.TarInfo("bin")
            d.type = tarfile.DIRTYPE
            d.mode = 0o750
            tf.addfile(d)
        merged = combine_tarballs([buf.getvalue()])
        with tarfile.open(fileobj=io.BytesIO(merged), mode="r:gz") as tf:
            m = tf.getmember("bin/tool")
            self.assertEqual(
                (0o755, 1_234_567_890, 501, 20, "dev", "staff"),
                (m.mode, int(m.mtime), m.uid, m.gid, m.uname, m.gname),
            )
            self.assertEqual(payload, tf.extractfile(m).read())
            self.assertTrue(tf.getmember("bin").isdir())
            self.assertEqual(0o750, tf.getmember("bin").mode)

    def test_corrupt_source_aborts(self):
        good = _write_tgz([("ok", b"ok")])
        with self.assertRaises(DecodeError):
            combine_tarballs([good, b"\x1f\x8bnot really gzip"])

    def test_damaged_tar_header_aborts(self):
        good = _write_tgz([("ok", b"ok")])
        for kind in ("checksum", "truncated"):
            with self.subTest(kind=kind):
                with self.assertRaises(DecodeError):
                    combine_tarballs([good, _damaged_tar_tgz(kind)])
                with self.assertRaises(DecodeError):
                    combine_tarballs([_damaged_tar_tgz(kind)])


class BuildTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_directory_roundtrip(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            files = _create_sample_files(src)
            archive = tmp / "out" / "src.tar.gz"
            res = create_gzipped_tarball(str(archive), str(src))
            self.assertEqual(sorted(f"src/{n}" for n in files), res.added)
            self.assertEqual([], res.skipped)
            for name, data in files.items():
                self.assertEqual(data, read_file_from_gzipped_tarball(str(archive), f"src/{name}"))

        self.run_with_tmpdir(scenario)

    def test_metadata_recorded(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            f = src / "script.sh"
            f.write_bytes(b"echo hi\n")
            os.chmod(f, 0o750)
            os.utime(f, (1_500_000_000, 1_500_000_000))
            archive = tmp / "src.tar.gz"
            create_gzipped_tarball(archive, src)
            with EntryReader(str(archive)) as r:
                e = r.next_entry()
                self.assertEqual("src/script.sh", e.name)
                self.assertEqual(8, e.header.size)
                self.assertEqual(0o750, e.header.mode)
                self.assertAlmostEqual(1_500_000_000, e.header.mtime, delta=1)
                self.assertEqual(tarfile.REGTYPE, e.header.type)
                e.skip()

        self.run_with_tmpdir(scenario)

    def test_single_file(self):
        def scenario(tmp: Path):
            f = tmp / "report.csv"
            f.write_bytes(b"a,b\n1,2\n")
            archive = tmp / "report.tar.gz"
            res = create_gzipped_tarball(str(archive), str(f))
            self.assertEqual(["report.csv"], res.added)
            self.assertEqual([("report.csv", b"a,b\n1,2\n")], _entries(str(archive)))

        self.run_with_tmpdir(scenario)

    def test_archive_inside_source_dir_is_skipped(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            (src / "a.txt").write_bytes(b"a")
            archive = src / "self.tar.gz"
            res = create_gzipped_tarball(str(archive), str(src))
            self.assertEqual(["src/a.txt"], res.added)
            self.assertEqual(["src/a.txt"], get_file_paths_with_regex(str(archive), "."))

        self.run_with_tmpdir(scenario)

    def test_nested_directories_skipped(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            (src / "sub").mkdir(parents=True)
            (src / "sub" / "deep.txt").write_bytes(b"deep")
            (src / "top.txt").write_bytes(b"top")
            archive = tmp / "src.tar.gz"
            res = create_gzipped_tarball(str(archive), str(src))
            self.assertEqual(["src/top.txt"], res.added)
            self.assertEqual([str(src / "sub")], res.skipped)
            self.assertEqual(["src/top.txt"], get_file_paths_with_regex(str(archive), ""))

        self.run_with_tmpdir(scenario)

    def test_remove_files(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            files = _create_sample_files(src)
            archive = tmp / "src.tar.gz"
            res = create_gzipped_tarball(str(archive), str(src), remove_files=True)
            self.assertEqual([], os.listdir(src))
            self.assertEqual(len(files), len(res.removed))
            self.assertEqual([], res.remove_failures)
            for name, data in files.items():
                self.assertEqual(data, read_file_from_gzipped_tarball(str(archive), f"src/{name}"))

        self.run_with_tmpdir(scenario)

    def test_remove_failures_do_not_fail_build(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            files = _create_sample_files(src)
            archive = tmp / "src.tar.gz"
            with mock.patch("tarstream.sources.os.remove", side_effect=PermissionError("denied")):
                res = create_gzipped_tarball(str(archive), str(src), remove_files=True)
            self.assertEqual(len(files), len(res.remove_failures))
            self.assertTrue(all(isinstance(exc, PermissionError) for _, exc in res.remove_failures))
            self.assertEqual([], res.removed)
            self.assertEqual(sorted(files), sorted(os.listdir(src)))
            self.assertEqual(len(files), len(_entries(str(archive))))

        self.run_with_tmpdir(scenario)

    def test_missing_source(self):
        def scenario(tmp: Path):
            archive = tmp / "out" / "x.tar.gz"
            with self.assertRaises(FileNotFoundError):
                create_gzipped_tarball(str(archive), str(tmp / "missing"))
            self.assertFalse(archive.exists())

        self.run_with_tmpdir(scenario)

    def test_empty_directory(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            archive = tmp / "src.tar.gz"
            res = create_gzipped_tarball(str(archive), str(src))
            self.assertEqual([], res.added)
            self.assertEqual([], _entries(str(archive)))

        self.run_with_tmpdir(scenario)


class FindTests(unittest.TestCase):
    def setUp(self):
        self.data = _write_tgz([
            ("build/out.bin", b"\x00\x01"),
            ("src/main.py", b"print(1)\n"),
            ("src/util.py", b"pass\n"),
            ("README.md", b"# readme\n"),
        ])

    def test_substring_match(self):
        self.assertEqual(["src/main.py", "src/util.py"], get_file_paths_with_regex(self.data, r"\.py"))
        self.assertEqual(["build/out.bin"], get_file_paths_with_regex(self.data, "out"))
        self.assertEqual([], get_file_paths_with_regex(self.data, "^main"))

    def test_idempotent(self):
        first = get_file_paths_with_regex(self.data, "[a-z]+/")
        second = get_file_paths_with_regex(self.data, "[a-z]+/")
        self.assertEqual(first, second)
        self.assertEqual(["build/out.bin", "src/main.py", "src/util.py"], first)

    def test_invalid_pattern_checked_before_reading(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(PatternError):
                get_file_paths_with_regex(os.path.join(tmp, "missing.tar.gz"), "(unclosed")

    def test_partial_result_on_decode_failure(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "a.tar.gz"
            path.write_bytes(_write_tgz([("a.txt", b"small"), ("big.bin", os.urandom(200_000))]))
            os.truncate(path, os.path.getsize(path) // 2)
            with self.assertRaises(DecodeError) as ctx:
                get_file_paths_with_regex(str(path), ".")
            self.assertIn("a.txt", ctx.exception.partial)

    def test_read_file(self):
        self.assertEqual(b"print(1)\n", read_file_from_gzipped_tarball(self.data, "src/main.py"))
        self.assertEqual(b"# readme\n", read_file_from_gzipped_tarball(self.data, "README.md"))

    def test_read_file_exact_name_only(self):
        with self.assertRaises(EntryNotFoundError) as ctx:
            read_file_from_gzipped_tarball(self.data, "main.py")
        self.assertEqual("main.py", ctx.exception.path)
        self.assertIn("main.py", str(ctx.exception))

    def test_read_file_empty_archive(self):
        with self.assertRaises(EntryNotFoundError) as ctx:
            read_file_from_gzipped_tarball(_write_tgz([]), "anything")
        self.assertIn("anything", str(ctx.exception))

    def test_read_file_decode_error(self):
        with self.assertRaises(DecodeError):
            read_file_from_gzipped_tarball(b"garbage", "x")

    def test_damaged_tar_header(self):
        for kind in ("checksum", "truncated"):
            with self.subTest(kind=kind):
                data = _damaged_tar_tgz(kind)
                with self.assertRaises(DecodeError) as ctx:
                    get_file_paths_with_regex(data, "")
                self.assertEqual(["a"], ctx.exception.partial)
                self.assertEqual(b"aaa", read_file_from_gzipped_tarball(data, "a"))
                with self.assertRaises(DecodeError):
                    read_file_from_gzipped_tarball(data, "c")

    def test_directory_names_keep_trailing_slash(self):
        data = _dir_tgz()
        self.assertEqual(["pkg/sub/", "pkg/doc/", "pkg/sub/f.txt"], get_file_paths_with_regex(data, ""))
        self.assertEqual(["pkg/sub/", "pkg/doc/"], get_file_paths_with_regex(data, "/$"))
        self.assertEqual(b"", read_file_from_gzipped_tarball(data, "pkg/sub/"))
        self.assertEqual(b"hi", read_file_from_gzipped_tarball(data, "pkg/sub/f.txt"))


class TranscodeTests(unittest.TestCase):
    def test_empty_prefix_is_pure_copy(self):
        entries = [("a", b"1"), ("dir/b", os.urandom(5000)), ("c", b"")]
        buf = io.BytesIO()
        with EntryWriter(buf) as w:
            n = write_tarball_to_writer(_write_tgz(entries), w)
        self.assertEqual(3, n)
        self.assertEqual(entries, _entries(buf.getvalue()))

    def test_prefix_stripped_only_when_present(self):
        src = _write_tgz([("build/out.bin", b"bin"), ("other.bin", b"other"), ("xbuild/y", b"y")])
        buf = io.BytesIO()
        with EntryWriter(buf) as w:
            write_tarball_to_writer(src, w, prefix="build/")
        self.assertEqual([("out.bin", b"bin"), ("other.bin", b"other"), ("xbuild/y", b"y")], _entries(buf.getvalue()))

    def test_writer_left_open_for_more_sources(self):
        buf = io.BytesIO()
        with EntryWriter(buf) as w:
            write_tarball_to_writer(_write_tgz([("dist/a", b"a")]), w, prefix="dist/")
            write_tarball_to_writer(_write_tgz([("dist/b", b"b")]), w, prefix="dist/")
            w.write_header(EntryHeader("extra", size=5))
            w.write(b"extra")
        self.assertEqual([("a", b"a"), ("b", b"b"), ("extra", b"extra")], _entries(buf.getvalue()))

    def test_long_name_prefix(self):
        long_tail = "z" * 150
        buf = io.BytesIO()
        with EntryWriter(buf) as w:
            write_tarball_to_writer(_write_tgz([("build/" + long_tail, b"z")]), w, prefix="build/")
        self.assertEqual([(long_tail, b"z")], _entries(buf.getvalue()))

    def test_metadata_preserved(self):
        buf = io.BytesIO()
        with EntryWriter(buf) as w:
            write_tarball_to_writer(_write_tgz([("build/a", b"a")]), w, prefix="build/")
        with EntryReader(buf.getvalue()) as r:
            e = r.next_entry()
            self.assertEqual((0o600, 1_650_000_000), (e.header.mode, int(e.header.mtime)))
            e.skip()

    def test_decode_error_propagates(self):
        with self.assertRaises(DecodeError):
            with EntryWriter(io.BytesIO()) as w:
                write_tarball_to_writer(b"nope", w)

    def test_damaged_tar_header_after_copied_entry(self):
        for kind in ("checksum", "truncated"):
            with self.subTest(kind=kind):
                w = EntryWriter(io.BytesIO())
                w.open()
                with self.assertRaises(DecodeError):
                    write_tarball_to_writer(_damaged_tar_tgz(kind), w)
                self.assertEqual(1, w.entries_written)
                w.abort()

    def test_directory_prefix_stripped(self):
        buf = io.BytesIO()
        with EntryWriter(buf) as w:
            write_tarball_to_writer(_dir_tgz(), w, prefix="pkg/")
        with EntryReader(buf.getvalue()) as r:
            names = []
            for e in r:
                names.append((e.name, e.header.type))
                e.skip()
        self.assertEqual(
            [("sub/", tarfile.DIRTYPE), ("doc/", tarfile.DIRTYPE), ("sub/f.txt", tarfile.REGTYPE)],
            names,
        )


if __name__ == "__main__":
    unittest.main()
