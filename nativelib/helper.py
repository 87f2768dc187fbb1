"""Installer-facing operations.

Each operation takes a handle from ``open_apk`` and answers with a value
from the shared install status taxonomy instead of raising, so an installer
can dispatch resolution and copy results on one set of codes.
"""

from __future__ import annotations

import logging
import zipfile
from typing import Optional, Sequence

from . import bitcode, materializer, resolver
from .archive import ApkArchive
from .bridge import get_scanner
from .constants import InstallStatus
from .errors import NativeLibError


__all__ = [
    "open_apk",
    "close_apk",
    "copy_native_binaries",
    "sum_native_binaries",
    "find_supported_abi",
    "has_renderscript_bitcode",
]


logger = logging.getLogger(__name__)


def open_apk(path: str) -> ApkArchive:
    """Open an archive and register it with the accelerator, if one is bound.

    Raises:
        InvalidArchiveError: The path is missing or not a zip archive.
    """
    archive = ApkArchive(path)
    archive.open()
    get_scanner().register(archive)
    return archive


def close_apk(archive: Optional[ApkArchive]) -> None:
    if archive is None:
        return
    try:
        get_scanner().unregister(archive)
    finally:
        archive.close()


def copy_native_binaries(archive: Optional[ApkArchive], dest_dir: str, cpu_abi: str) -> int:
    try:
        copied = materializer.copy_native_binaries(archive, dest_dir, cpu_abi)
    except NativeLibError as exc:
        logger.debug("copy of %s libraries failed: %s", cpu_abi, exc)
        return int(exc.status)
    logger.debug("copied %d %s librar(ies) to %s", len(copied), cpu_abi, dest_dir)
    return int(InstallStatus.SUCCEEDED)


def sum_native_binaries(archive: Optional[ApkArchive], cpu_abi: str) -> int:
    """Bytes the ``cpu_abi`` libraries take once extracted.

    Never raises: an unusable handle counts as 0, and a failure part way
    through returns the total of the entries read before it.
    """
    total = 0

    def add(archive: ApkArchive, entry: zipfile.ZipInfo, file_name: str) -> None:
        nonlocal total
        total += archive.entry_info(entry).uncompressed_size

    try:
        materializer.iterate_over_native_files(archive, cpu_abi, add)
    except NativeLibError as exc:
        logger.debug("sum of %s libraries stopped at %d bytes: %s", cpu_abi, total, exc)
    return total


def find_supported_abi(archive: Optional[ApkArchive], abis: Sequence[str]) -> int:
    """Index of the preferred ABI in ``abis``, or a negative status code."""
    try:
        return resolver.find_supported_abi(archive, abis).code()
    except NativeLibError as exc:
        logger.debug("ABI resolution failed: %s", exc)
        return int(exc.status)


def has_renderscript_bitcode(archive: Optional[ApkArchive]) -> int:
    return int(bitcode.has_renderscript_bitcode(archive))
