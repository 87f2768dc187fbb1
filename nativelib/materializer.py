from __future__ import annotations

import logging
import os
import stat
import tempfile
import time
import zipfile
import zlib
from typing import Callable, List, Optional

from .archive import ApkArchive, EntryInfo
from .bridge import ScannerBridge, get_scanner, run_filter
from .constants import CRC_BUFFER_SIZE, NATIVE_LIBRARY_MODE, TMP_FILE_PREFIX
from .errors import ContainerError, InvalidArchiveError, NativeLibError
from .iterator import NativeLibrariesIterator, abi_boundary, abi_of, classify_entry_name


logger = logging.getLogger(__name__)

# (archive, entry, file name without the lib/<abi>/ directory)
EntryHandler = Callable[[ApkArchive, zipfile.ZipInfo, str], None]


def iterate_over_native_files(
    archive: Optional[ApkArchive],
    cpu_abi: str,
    handler: EntryHandler,
    *,
    bridge: Optional[ScannerBridge] = None,
) -> None:
    """Call ``handler`` for every native library built for ``cpu_abi``.

    The accelerator's listing is used when it accepts the archive; otherwise
    the archive is walked directly. The first handler error stops the walk
    and propagates.
    """
    if archive is None:
        raise InvalidArchiveError("No archive handle")
    if bridge is None:
        bridge = get_scanner()

    filter_obj = bridge.get_filter(archive)
    if filter_obj is not None:

        def on_name(name: str) -> bool:
            last_slash = abi_boundary(name)
            if abi_of(name, last_slash) != cpu_abi:
                return False
            # Names from a plugin get the same checks as a direct scan
            if classify_entry_name(name) is None:
                logger.debug("Skipping unsafe accelerator entry %s", name)
                return False
            entry = archive.find_entry(name)
            if entry is None:
                raise InvalidArchiveError(f"Couldn't find zip entry {name}")
            _call(handler, archive, entry, name[last_slash + 1 :])
            return False

        if run_filter(bridge, filter_obj, on_name):
            return

    with NativeLibrariesIterator.create(archive) as it:
        for lib in it:
            if lib.abi != cpu_abi:
                continue
            _call(handler, archive, lib.entry, lib.file_name)


def _call(handler: EntryHandler, archive: ApkArchive, entry: zipfile.ZipInfo, file_name: str) -> None:
    try:
        handler(archive, entry, file_name)
    except NativeLibError:
        logger.debug("Failure for entry %s", file_name)
        raise


def sum_native_binaries(
    archive: Optional[ApkArchive], cpu_abi: str, *, bridge: Optional[ScannerBridge] = None
) -> int:
    """Total uncompressed size of the native libraries built for ``cpu_abi``."""
    total = 0

    def add(archive: ApkArchive, entry: zipfile.ZipInfo, file_name: str) -> None:
        nonlocal total
        total += archive.entry_info(entry).uncompressed_size

    iterate_over_native_files(archive, cpu_abi, add, bridge=bridge)
    return total


def copy_native_binaries(
    archive: Optional[ApkArchive],
    dest_dir: str,
    cpu_abi: str,
    *,
    bridge: Optional[ScannerBridge] = None,
) -> List[str]:
    """Copy the ``cpu_abi`` libraries into ``dest_dir``, skipping unchanged files.

    Returns:
        The file names that were actually written.

    Raises:
        InvalidArchiveError: The archive cannot be iterated or an entry's
            metadata cannot be read.
        ContainerError: A library could not be staged or put in place. Files
            copied before the failure stay in place.
    """
    copied: List[str] = []

    def copy(archive: ApkArchive, entry: zipfile.ZipInfo, file_name: str) -> None:
        if copy_file_if_changed(archive, entry, file_name, dest_dir):
            copied.append(file_name)

    iterate_over_native_files(archive, cpu_abi, copy, bridge=bridge)
    return copied


def file_crc32(path: str) -> int:
    crc = 0
    with open(path, "rb") as f:
        while True:
            buf = f.read(CRC_BUFFER_SIZE)
            if not buf:
                break
            crc = zlib.crc32(buf, crc)
    return crc & 0xFFFFFFFF


def is_file_different(path: str, st: Optional[os.stat_result], info: EntryInfo) -> bool:
    """Compare an existing file with an archive entry.

    ``st`` is the ``lstat`` of ``path`` or None when it could not be read.
    Size and modification time are checked before the CRC so the file is only
    read when everything else already matches.
    """
    if st is None:
        return True
    if not stat.S_ISREG(st.st_mode):
        return True
    if st.st_size != info.uncompressed_size:
        return True
    if int(st.st_mtime) != info.mtime:
        logger.debug("mod time doesn't match: %d vs. %d", int(st.st_mtime), info.mtime)
        return True
    try:
        crc = file_crc32(path)
    except OSError as exc:
        logger.debug("Couldn't open file %s: %s", path, exc)
        return True
    logger.debug("%s: crc = %08x, zipCrc = %08x", path, crc, info.crc32)
    return crc != info.crc32


def _lstat(path: str) -> Optional[os.stat_result]:
    try:
        return os.lstat(path)
    except OSError as exc:
        logger.debug("Couldn't stat %s, copying: %s", path, exc)
        return None


def _install_staged(tmp_path: str, local_path: str, atime: float, mtime: int) -> None:
    try:
        os.utime(tmp_path, (atime, mtime))
    except OSError as exc:
        raise ContainerError(f"Couldn't change modification time on {tmp_path}: {exc}") from exc
    try:
        os.chmod(tmp_path, NATIVE_LIBRARY_MODE)
    except OSError as exc:
        raise ContainerError(f"Couldn't change permissions on {tmp_path}: {exc}") from exc
    try:
        os.rename(tmp_path, local_path)
    except OSError as exc:
        raise ContainerError(f"Couldn't rename {tmp_path} to {local_path}: {exc}") from exc


def _discard(tmp_path: str) -> None:
    try:
        os.unlink(tmp_path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Couldn't remove temporary file %s: %s", tmp_path, exc)


def copy_file_if_changed(archive: ApkArchive, entry: zipfile.ZipInfo, file_name: str, dest_dir: str) -> bool:
    """Extract one library into ``dest_dir`` unless an identical copy is there.

    The entry is decompressed into a temporary file next to the destination
    and renamed over it, so the destination is either the old file or the
    complete new one. ``file_name`` is expected to be safe already.

    Returns:
        True when the file was written, False when it was already current.
    """
    info = archive.entry_info(entry)
    local_path = os.path.join(dest_dir, file_name)

    st = _lstat(local_path)
    if not is_file_different(local_path, st, info):
        return False

    try:
        fd, tmp_path = tempfile.mkstemp(prefix=TMP_FILE_PREFIX, dir=dest_dir)
    except OSError as exc:
        logger.info("Couldn't open temporary file in %s: %s", dest_dir, exc)
        raise ContainerError(f"Couldn't open temporary file in {dest_dir}: {exc}") from exc

    try:
        try:
            with os.fdopen(fd, "wb") as out:
                archive.uncompress_entry(entry, out)
        except OSError as exc:
            raise ContainerError(f"Failed uncompressing {file_name} to {tmp_path}: {exc}") from exc
        atime = st.st_atime if st is not None else time.time()
        _install_staged(tmp_path, local_path, atime, info.mtime)
    except ContainerError as exc:
        logger.info("%s", exc)
        _discard(tmp_path)
        raise
    except BaseException:
        # The staging file never outlives a failed copy
        _discard(tmp_path)
        raise

    logger.debug("Successfully moved %s to %s", tmp_path, local_path)
    return True
