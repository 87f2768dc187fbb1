from __future__ import annotations

import logging
from typing import Optional

from .archive import ApkArchive
from .bridge import ScannerBridge, get_scanner
from .constants import RS_BITCODE_SUFFIX, BitcodeScanResult
from .errors import InvalidArchiveError
from .pathutil import is_filename_safe


logger = logging.getLogger(__name__)


def has_renderscript_bitcode(
    archive: Optional[ApkArchive], *, bridge: Optional[ScannerBridge] = None
) -> BitcodeScanResult:
    """Report whether the archive carries RenderScript bitcode (``*.bc``) anywhere."""
    if archive is None:
        return BitcodeScanResult.APK_SCAN_ERROR
    if bridge is None:
        bridge = get_scanner()

    filter_obj = bridge.get_filter(archive)
    if filter_obj is not None:
        present = bridge.has_renderscript(filter_obj)
        if present is not None:
            return BitcodeScanResult.BITCODE_PRESENT if present else BitcodeScanResult.NO_BITCODE_PRESENT

    try:
        cursor = archive.start_iteration()
    except InvalidArchiveError as exc:
        logger.debug("%s", exc)
        return BitcodeScanResult.APK_SCAN_ERROR
    try:
        while True:
            entry = archive.next_entry(cursor)
            if entry is None:
                break
            name = archive.entry_name(entry)
            base_name = name[name.rfind("/") + 1 :]
            if name.endswith(RS_BITCODE_SUFFIX) and is_filename_safe(base_name):
                logger.debug("bitcode entry: %s", name)
                return BitcodeScanResult.BITCODE_PRESENT
    finally:
        archive.end_iteration(cursor)
    return BitcodeScanResult.NO_BITCODE_PRESENT
