from __future__ import annotations

import os
import stat
import tempfile
import unittest
import zipfile
import zlib
from pathlib import Path
from typing import Dict, List
from unittest import mock

from nativelib import bridge as bridge_mod
from nativelib import helper
from nativelib import materializer
from nativelib.archive import ApkArchive, zip_time_to_epoch
from nativelib.bridge import BoundScannerBridge, UnboundScannerBridge
from nativelib.constants import InstallStatus
from nativelib.errors import ContainerError, InvalidArchiveError
from nativelib.materializer import copy_native_binaries, file_crc32, sum_native_binaries


DATE_TIME = (2022, 3, 4, 5, 6, 8)


def _build_apk(path: Path, entries: Dict[str, bytes], date_time=DATE_TIME) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            info = zipfile.ZipInfo(name, date_time=date_time)
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, data)
    return path


def _staging_leftovers(dest: Path) -> List[str]:
    return sorted(p.name for p in dest.iterdir() if p.name.startswith("tmp."))


class ListingScanner:
    def __init__(self, names: List[str]):
        self.names = names

    def register_filter_object(self, archive):
        return "filter"

    def unregister_filter_object(self, archive):
        return None

    def get_filter_object(self, archive):
        return "filter"

    def filter_library(self, filter_obj, name_filter):
        for name in self.names:
            if name_filter(name):
                break
        return 0

    def has_renderscript(self, filter_obj):
        return -1


class _MaterializerCase(unittest.TestCase):
    ENTRIES = {
        "AndroidManifest.xml": b"<manifest/>",
        "lib/arm64-v8a/liba.so": b"A" * 100,
        "lib/arm64-v8a/libb.so": os.urandom(250),
        "lib/x86/liba.so": b"X" * 4000,
        "lib/arm64-v8a/gdbserver": b"G" * 10,
        "lib/arm64-v8a/readme.txt": b"not copied",
    }

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)
        self.dest = self.root / "libs"
        self.dest.mkdir()
        self.apk = _build_apk(self.root / "app.apk", self.ENTRIES)
        self.archive = ApkArchive(str(self.apk))
        self.archive.open()
        self.addCleanup(self.archive.close)
        self.bridge = UnboundScannerBridge()

    def copy(self, abi: str = "arm64-v8a"):
        return copy_native_binaries(self.archive, str(self.dest), abi, bridge=self.bridge)


class SumTests(_MaterializerCase):
    ENTRIES = {
        "lib/arm64-v8a/libA.so": b"a" * 100,
        "lib/arm64-v8a/libB.so": b"b" * 250,
        "lib/x86/libA.so": b"c" * 999,
        "assets/libA.so": b"d" * 77,
    }

    def test_sums_matching_abi_only(self):
        self.assertEqual(sum_native_binaries(self.archive, "arm64-v8a", bridge=self.bridge), 350)
        self.assertEqual(sum_native_binaries(self.archive, "x86", bridge=self.bridge), 999)

    def test_no_match_sums_to_zero(self):
        self.assertEqual(sum_native_binaries(self.archive, "mips", bridge=self.bridge), 0)

    def test_closed_archive(self):
        self.archive.close()
        with self.assertRaises(InvalidArchiveError):
            sum_native_binaries(self.archive, "x86", bridge=self.bridge)

    def test_uses_accelerator_listing(self):
        bridge = BoundScannerBridge(ListingScanner(["lib/arm64-v8a/libB.so", "lib/x86/libA.so"]))
        self.assertEqual(sum_native_binaries(self.archive, "arm64-v8a", bridge=bridge), 250)


class CopyTests(_MaterializerCase):
    def test_copies_target_abi_with_metadata(self):
        copied = self.copy()
        self.assertEqual(copied, ["liba.so", "libb.so", "gdbserver"])
        self.assertEqual(sorted(p.name for p in self.dest.iterdir()), ["gdbserver", "liba.so", "libb.so"])
        expected_mtime = zip_time_to_epoch(DATE_TIME)
        for name in copied:
            path = self.dest / name
            st = path.stat()
            self.assertEqual(path.read_bytes(), self.ENTRIES[f"lib/arm64-v8a/{name}"])
            self.assertEqual(int(st.st_mtime), expected_mtime)
            self.assertEqual(stat.S_IMODE(st.st_mode), 0o755)

    def test_second_run_does_no_io(self):
        self.copy()
        before = {p.name: (p.read_bytes(), p.stat().st_mtime, p.stat().st_mode) for p in self.dest.iterdir()}
        with mock.patch.object(self.archive, "uncompress_entry") as uncompress, mock.patch(
            "nativelib.materializer.tempfile.mkstemp"
        ) as mkstemp:
            self.assertEqual(self.copy(), [])
        uncompress.assert_not_called()
        mkstemp.assert_not_called()
        after = {p.name: (p.read_bytes(), p.stat().st_mtime, p.stat().st_mode) for p in self.dest.iterdir()}
        self.assertEqual(before, after)

    def test_changed_content_is_recopied(self):
        self.copy()
        target = self.dest / "liba.so"
        st = target.stat()
        target.write_bytes(b"Z" * 100)
        # same size and mtime, only the CRC differs
        os.utime(target, (st.st_atime, st.st_mtime))
        self.assertEqual(self.copy(), ["liba.so"])
        self.assertEqual(target.read_bytes(), b"A" * 100)

    def test_changed_mtime_is_recopied(self):
        self.copy()
        target = self.dest / "libb.so"
        os.utime(target, (0, 86400))
        self.assertEqual(self.copy(), ["libb.so"])
        self.assertEqual(int(target.stat().st_mtime), zip_time_to_epoch(DATE_TIME))

    def test_symlink_destination_is_replaced(self):
        decoy = self.root / "decoy.so"
        decoy.write_bytes(b"A" * 100)
        os.symlink(decoy, self.dest / "liba.so")
        self.copy()
        self.assertFalse((self.dest / "liba.so").is_symlink())
        self.assertEqual(decoy.read_bytes(), b"A" * 100)

    def test_missing_destination_directory(self):
        self.dest.rmdir()
        with self.assertRaises(ContainerError):
            self.copy()

    def test_uses_accelerator_listing(self):
        bridge = BoundScannerBridge(ListingScanner(["lib/arm64-v8a/libb.so", "lib/x86/liba.so"]))
        copied = copy_native_binaries(self.archive, str(self.dest), "arm64-v8a", bridge=bridge)
        self.assertEqual(copied, ["libb.so"])

    def test_accelerator_listing_unknown_entry(self):
        bridge = BoundScannerBridge(ListingScanner(["lib/arm64-v8a/libghost.so"]))
        with self.assertRaises(InvalidArchiveError):
            copy_native_binaries(self.archive, str(self.dest), "arm64-v8a", bridge=bridge)

    def test_accelerator_listing_unsafe_names_are_skipped(self):
        listing = ["lib/arm64-v8a/..", "lib/arm64-v8a/libx;rm.so", "lib/arm64-v8a/liba.so"]
        bridge = BoundScannerBridge(ListingScanner(listing))
        with mock.patch.object(self.archive, "find_entry", wraps=self.archive.find_entry) as find:
            copied = copy_native_binaries(self.archive, str(self.dest), "arm64-v8a", bridge=bridge)
        self.assertEqual(copied, ["liba.so"])
        find.assert_called_once_with("lib/arm64-v8a/liba.so")
        self.assertEqual(sorted(os.listdir(self.root)), ["app.apk", "libs"])
        self.assertEqual(os.listdir(self.dest), ["liba.so"])


class AtomicityTests(_MaterializerCase):
    def _seed_previous(self) -> Path:
        previous = self.dest / "liba.so"
        previous.write_bytes(b"previous good build")
        os.utime(previous, (1000, 2000))
        return previous

    def test_decompression_failure_keeps_previous_file(self):
        previous = self._seed_previous()

        def failing_uncompress(entry, out):
            out.write(b"partial")
            raise ContainerError(f"Failed uncompressing {entry.filename}")

        with mock.patch.object(self.archive, "uncompress_entry", side_effect=failing_uncompress):
            with self.assertRaises(ContainerError):
                self.copy()
        self.assertEqual(previous.read_bytes(), b"previous good build")
        self.assertEqual(int(previous.stat().st_mtime), 2000)
        self.assertEqual(_staging_leftovers(self.dest), [])

    def test_rename_failure_cleans_up(self):
        previous = self._seed_previous()
        with mock.patch("nativelib.materializer.os.rename", side_effect=OSError(28, "No space left on device")):
            with self.assertRaises(ContainerError) as ctx:
                self.copy()
        self.assertIsInstance(ctx.exception.__cause__, OSError)
        self.assertEqual(previous.read_bytes(), b"previous good build")
        self.assertEqual(_staging_leftovers(self.dest), [])

    def test_chmod_failure_cleans_up(self):
        with mock.patch("nativelib.materializer.os.chmod", side_effect=PermissionError(1, "Operation not permitted")):
            with self.assertRaises(ContainerError):
                self.copy()
        self.assertEqual(_staging_leftovers(self.dest), [])
        self.assertFalse((self.dest / "liba.so").exists())

    def test_first_failure_stops_extraction(self):
        calls = []
        real = self.archive.uncompress_entry

        def fail_first(entry, out):
            calls.append(entry.filename)
            if entry.filename.endswith("liba.so"):
                raise ContainerError("boom")
            real(entry, out)

        with mock.patch.object(self.archive, "uncompress_entry", side_effect=fail_first):
            with self.assertRaises(ContainerError):
                self.copy()
        self.assertEqual(calls, ["lib/arm64-v8a/liba.so"])
        self.assertEqual(list(self.dest.iterdir()), [])


class CrcTests(unittest.TestCase):
    def test_streaming_crc_matches_zlib(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "blob"
            data = os.urandom(50_000)
            path.write_bytes(data)
            self.assertEqual(file_crc32(str(path)), zlib.crc32(data) & 0xFFFFFFFF)

    def test_is_file_different_without_stat(self):
        info = materializer.EntryInfo(uncompressed_size=1, crc32=0, mtime=0)
        self.assertTrue(materializer.is_file_different("/nonexistent", None, info))


class HelperCopyTests(_MaterializerCase):
    def setUp(self):
        super().setUp()
        bridge_mod.reset_bindings()
        self.addCleanup(bridge_mod.reset_bindings)
        bridge_mod.install_scanner(None)

    def test_status_codes(self):
        self.assertEqual(helper.copy_native_binaries(self.archive, str(self.dest), "arm64-v8a"), InstallStatus.SUCCEEDED)
        self.assertEqual(helper.copy_native_binaries(self.archive, str(self.root / "missing"), "x86"), InstallStatus.CONTAINER_ERROR)
        self.assertEqual(helper.copy_native_binaries(None, str(self.dest), "x86"), InstallStatus.INVALID_APK)
        self.assertEqual(helper.sum_native_binaries(self.archive, "x86"), 4000)

    def test_sum_never_raises(self):
        self.assertEqual(helper.sum_native_binaries(None, "x86"), 0)
        closed = ApkArchive(str(self.apk))
        self.assertEqual(helper.sum_native_binaries(closed, "x86"), 0)

    def test_sum_returns_partial_total_on_failure(self):
        real = self.archive.entry_info
        calls = []

        def fail_second(entry):
            calls.append(entry.filename)
            if len(calls) == 2:
                raise InvalidArchiveError(f"Couldn't read zip entry info for {entry.filename}")
            return real(entry)

        with mock.patch.object(self.archive, "entry_info", side_effect=fail_second):
            total = helper.sum_native_binaries(self.archive, "arm64-v8a")
        self.assertEqual(total, 100)
        self.assertEqual(calls, ["lib/arm64-v8a/liba.so", "lib/arm64-v8a/libb.so"])


if __name__ == "__main__":
    unittest.main()
