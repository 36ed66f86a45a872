"""
Tests for the file helpers.
"""

import os
import stat
import tempfile
import shutil
import unittest
from pathlib import Path

from ..utils.fs import FILE_MODE, atomic_write, directory_size, format_size, format_size_change


class TestAtomicWrite(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_writes_with_umask_mode(self):
        path = self.temp_dir / "out" / "hero.png"

        atomic_write(path, b"data")

        self.assertEqual(path.read_bytes(), b"data")
        self.assertEqual(stat.S_IMODE(path.stat().st_mode), FILE_MODE)

    def test_mode_matches_a_plain_write(self):
        plain = self.temp_dir / "plain.bin"
        plain.write_bytes(b"x")
        atomic = self.temp_dir / "atomic.bin"

        atomic_write(atomic, b"x")

        self.assertEqual(stat.S_IMODE(atomic.stat().st_mode), stat.S_IMODE(plain.stat().st_mode))

    def test_replaces_and_leaves_no_temp_files(self):
        path = self.temp_dir / "hero.png"
        atomic_write(path, b"old")

        atomic_write(path, b"new")

        self.assertEqual(path.read_bytes(), b"new")
        self.assertEqual(os.listdir(self.temp_dir), ["hero.png"])

    def test_directory_size(self):
        atomic_write(self.temp_dir / "a" / "one.bin", b"12345")
        atomic_write(self.temp_dir / "two.bin", b"123")

        self.assertEqual(directory_size(self.temp_dir), 8)
        self.assertEqual(directory_size(self.temp_dir / "missing"), 0)


class TestFormatSize(unittest.TestCase):

    def test_units(self):
        self.assertEqual(format_size(512), "512 B")
        self.assertEqual(format_size(2048), "2.0 KB")
        self.assertEqual(format_size(3 * 1024 * 1024), "3.0 MB")

    def test_size_change(self):
        self.assertEqual(format_size_change(2048, 1024), "2.0 KB → 1.0 KB (-50.0%)")
        self.assertEqual(format_size_change(1000, 1100), "1000 B → 1.1 KB (+10.0%)")
        self.assertEqual(format_size_change(0, 10), "0 B → 10 B")


if __name__ == "__main__":
    unittest.main()
