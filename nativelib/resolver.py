from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .archive import ApkArchive
from .bridge import ScannerBridge, get_assets_verifier, get_scanner, run_filter
from .constants import InstallStatus
from .errors import InvalidArchiveError, error_for_status
from .iterator import NativeLibrariesIterator, abi_boundary, abi_of


logger = logging.getLogger(__name__)


class Outcome(enum.Enum):
    MATCHED = "matched"
    NO_MATCHING_ABI = "no-matching-abi"
    NO_NATIVE_LIBRARIES = "no-native-libraries"


@dataclass(frozen=True)
class AbiResolution:
    """Result of matching an archive's native code against preferred ABIs.

    ``index`` is the position in the preference list and is only set when
    ``outcome`` is MATCHED.
    """

    outcome: Outcome
    index: Optional[int] = None

    @classmethod
    def matched(cls, index: int) -> "AbiResolution":
        if index < 0:
            raise ValueError("ABI index must be non-negative")
        return cls(Outcome.MATCHED, index)

    @property
    def is_match(self) -> bool:
        return self.outcome is Outcome.MATCHED

    def code(self) -> int:
        """Integer form shared with the install status codes."""
        if self.outcome is Outcome.MATCHED:
            assert self.index is not None
            return self.index
        if self.outcome is Outcome.NO_MATCHING_ABI:
            return int(InstallStatus.NO_MATCHING_ABIS)
        return int(InstallStatus.NO_NATIVE_LIBRARIES)

    @classmethod
    def from_code(cls, code: int) -> "AbiResolution":
        if code >= 0:
            return cls.matched(code)
        if code == InstallStatus.NO_MATCHING_ABIS:
            return NO_MATCHING_ABI
        if code == InstallStatus.NO_NATIVE_LIBRARIES:
            return NO_NATIVE_LIBRARIES
        raise error_for_status(code, "ABI resolution failed")


NO_MATCHING_ABI = AbiResolution(Outcome.NO_MATCHING_ABI)
NO_NATIVE_LIBRARIES = AbiResolution(Outcome.NO_NATIVE_LIBRARIES)


class _AbiScan:
    """Accumulates the best ABI seen over a sequence of library entries."""

    def __init__(self, abis: Sequence[str]):
        self.abis: List[str] = list(abis)
        self.result = NO_NATIVE_LIBRARIES

    def accept(self, abi: str) -> bool:
        """Record one library's ABI; True once nothing can improve the result."""
        # Any library at all means the archive has native code
        if self.result.outcome is Outcome.NO_NATIVE_LIBRARIES:
            self.result = NO_MATCHING_ABI
        for i, candidate in enumerate(self.abis):
            # Earlier entries in the list have the higher priority
            if self.result.index is not None and i >= self.result.index:
                break
            if candidate == abi:
                self.result = AbiResolution.matched(i)
                break
        return self.result.index == 0

    def accept_name(self, name: str) -> bool:
        return self.accept(abi_of(name, abi_boundary(name)))


def _resolve_with_accelerator(
    archive: ApkArchive, abis: Sequence[str], bridge: ScannerBridge
) -> Optional[AbiResolution]:
    filter_obj = bridge.get_filter(archive)
    if filter_obj is None:
        return None
    scan = _AbiScan(abis)
    if not run_filter(bridge, filter_obj, scan.accept_name):
        logger.debug("Accelerator declined %s", archive.path)
        return None
    if scan.result.outcome is not Outcome.NO_NATIVE_LIBRARIES:
        return scan.result
    verifier = get_assets_verifier()
    if verifier is None:
        logger.warning("Failed to load assets verifier")
        return scan.result
    return AbiResolution.from_code(verifier.get_assets_status(archive, list(abis)))


def find_supported_abi(
    archive: Optional[ApkArchive], abis: Sequence[str], *, bridge: Optional[ScannerBridge] = None
) -> AbiResolution:
    """Pick the most preferred ABI for which the archive ships native code.

    Args:
        archive: Open archive handle.
        abis: Acceptable ABI labels, most preferred first.
        bridge: Accelerator to consult; defaults to the process-wide binding.

    Returns:
        MATCHED with the preference index of the best ABI, NO_MATCHING_ABI when
        the archive has native libraries for other ABIs only, or
        NO_NATIVE_LIBRARIES when it has none.

    Raises:
        InvalidArchiveError: The archive cannot be iterated.
    """
    if archive is None:
        raise InvalidArchiveError("No archive handle")
    if bridge is None:
        bridge = get_scanner()

    resolution = _resolve_with_accelerator(archive, abis, bridge)
    if resolution is not None:
        return resolution

    scan = _AbiScan(abis)
    with NativeLibrariesIterator.create(archive) as it:
        for lib in it:
            if scan.accept(lib.abi):
                break
    logger.debug("ABI resolution for %s: %s", archive.path, scan.result)
    return scan.result
