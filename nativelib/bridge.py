"""Optional accelerator plugins for native library scanning.

A host can ship a faster (or policy-extended) scanner and an assets verifier
as Python entry points in the ``nativelib.accelerators`` group, named
``apkscanner`` and ``assetsverifier``. Each is bound lazily, at most once per
process. When a plugin is missing, fails to load, or lacks part of its
interface, callers get the unbound variant and the built-in scan runs.
"""

from __future__ import annotations

import enum
import logging
import threading
from importlib import metadata
from typing import Any, Callable, Generic, List, Optional, Protocol, Sequence, Tuple, TypeVar

from .constants import ACCELERATOR_ENTRY_POINT_GROUP, APK_SCANNER_NAME, ASSETS_VERIFIER_NAME


__all__ = [
    "NameFilter",
    "ApkScanner",
    "AssetsVerifier",
    "ScannerBridge",
    "BoundScannerBridge",
    "UnboundScannerBridge",
    "run_filter",
    "BindState",
    "get_scanner",
    "get_assets_verifier",
    "install_scanner",
    "install_assets_verifier",
    "scanner_state",
    "reset_bindings",
]


logger = logging.getLogger(__name__)

# Receives a full entry name; returning True stops the scan.
NameFilter = Callable[[str], bool]


class ApkScanner(Protocol):
    """Interface an ``apkscanner`` plugin has to provide."""

    def register_filter_object(self, archive: Any) -> Any: ...

    def unregister_filter_object(self, archive: Any) -> None: ...

    def get_filter_object(self, archive: Any) -> Optional[Any]: ...

    def filter_library(self, filter_obj: Any, name_filter: NameFilter) -> int: ...

    def has_renderscript(self, filter_obj: Any) -> int: ...


class AssetsVerifier(Protocol):
    """Interface an ``assetsverifier`` plugin has to provide."""

    def get_assets_status(self, archive: Any, abis: Sequence[str]) -> int: ...


_SCANNER_METHODS = (
    "register_filter_object",
    "unregister_filter_object",
    "get_filter_object",
    "filter_library",
    "has_renderscript",
)
_ASSETS_VERIFIER_METHODS = ("get_assets_status",)


class ScannerBridge:
    """Capability the scanning code talks to, whether or not a plugin exists."""

    available = False

    def register(self, archive: Any) -> None:
        raise NotImplementedError

    def unregister(self, archive: Any) -> None:
        raise NotImplementedError

    def get_filter(self, archive: Any) -> Optional[Any]:
        raise NotImplementedError

    def filter_library(self, filter_obj: Any, name_filter: NameFilter) -> bool:
        """Feed the plugin's native library names to ``name_filter``.

        Returns True when the plugin handled the archive, False when it
        declined and the built-in scan has to run instead.
        """
        raise NotImplementedError

    def has_renderscript(self, filter_obj: Any) -> Optional[bool]:
        raise NotImplementedError


class UnboundScannerBridge(ScannerBridge):
    available = False

    def register(self, archive: Any) -> None:
        return None

    def unregister(self, archive: Any) -> None:
        return None

    def get_filter(self, archive: Any) -> Optional[Any]:
        return None

    def filter_library(self, filter_obj: Any, name_filter: NameFilter) -> bool:
        return False

    def has_renderscript(self, filter_obj: Any) -> Optional[bool]:
        return None


class BoundScannerBridge(ScannerBridge):
    available = True

    def __init__(self, scanner: ApkScanner):
        self.scanner = scanner

    def register(self, archive: Any) -> None:
        self.scanner.register_filter_object(archive)

    def unregister(self, archive: Any) -> None:
        self.scanner.unregister_filter_object(archive)

    def get_filter(self, archive: Any) -> Optional[Any]:
        return self.scanner.get_filter_object(archive)

    def filter_library(self, filter_obj: Any, name_filter: NameFilter) -> bool:
        return self.scanner.filter_library(filter_obj, name_filter) == 0

    def has_renderscript(self, filter_obj: Any) -> Optional[bool]:
        ret = self.scanner.has_renderscript(filter_obj)
        if ret == 1:
            return True
        if ret == 0:
            return False
        return None


def run_filter(bridge: ScannerBridge, filter_obj: Any, on_name: NameFilter) -> bool:
    """Run the plugin scan with ``on_name`` as callback.

    Errors raised by ``on_name`` stop the scan and are re-raised once the
    plugin returns, so they never travel through plugin code.
    """
    errors: List[Exception] = []

    def guarded(name: str) -> bool:
        try:
            return on_name(name)
        except Exception as exc:
            errors.append(exc)
            return True

    handled = bridge.filter_library(filter_obj, guarded)
    if errors:
        raise errors[0]
    return handled


class BindState(enum.Enum):
    UNINITIALIZED = 0
    AVAILABLE = 1
    UNAVAILABLE = -1


T = TypeVar("T")


def _load_plugin(name: str, required: Tuple[str, ...]) -> Optional[Any]:
    try:
        entry_points = metadata.entry_points()
    except Exception as exc:  # pragma: no cover
        logger.warning("Accelerator discovery failed for %s: %s", name, exc)
        return None

    for entry in entry_points.select(group=ACCELERATOR_ENTRY_POINT_GROUP, name=name):
        try:
            candidate = entry.load()
            plugin = candidate() if isinstance(candidate, type) else candidate
        except Exception as exc:
            logger.warning("Failed to load %s from %s: %s", name, entry.value, exc)
            return None
        missing = [attr for attr in required if not callable(getattr(plugin, attr, None))]
        if missing:
            logger.warning("Ignoring %s from %s: missing %s", name, entry.value, ", ".join(missing))
            return None
        logger.info("Bound %s from %s", name, entry.value)
        return plugin

    logger.debug("No %s plugin installed", name)
    return None


class _LazyBinding(Generic[T]):
    """Tri-state, lock-protected binding of one plugin."""

    def __init__(self, name: str, required: Tuple[str, ...], wrap: Callable[[Any], T], fallback: T):
        self.name = name
        self._required = required
        self._wrap = wrap
        self._fallback = fallback
        # Reentrant: a plugin may look the binding up while it is being imported
        self._lock = threading.RLock()
        self._loading = False
        self._state = BindState.UNINITIALIZED
        self._value: T = fallback

    @property
    def state(self) -> BindState:
        return self._state

    def get(self) -> T:
        with self._lock:
            if self._state is BindState.UNINITIALIZED and not self._loading:
                self._loading = True
                try:
                    plugin = _load_plugin(self.name, self._required)
                finally:
                    self._loading = False
                self._bind(plugin)
            return self._value

    def install(self, plugin: Optional[Any]) -> None:
        with self._lock:
            self._bind(plugin)

    def reset(self) -> None:
        with self._lock:
            self._state = BindState.UNINITIALIZED
            self._value = self._fallback

    def _bind(self, plugin: Optional[Any]) -> None:
        if plugin is None:
            self._state = BindState.UNAVAILABLE
            self._value = self._fallback
        else:
            self._state = BindState.AVAILABLE
            self._value = self._wrap(plugin)


_UNBOUND = UnboundScannerBridge()

_SCANNER: _LazyBinding[ScannerBridge] = _LazyBinding(
    APK_SCANNER_NAME, _SCANNER_METHODS, BoundScannerBridge, _UNBOUND
)
_ASSETS_VERIFIER: _LazyBinding[Optional[AssetsVerifier]] = _LazyBinding(
    ASSETS_VERIFIER_NAME, _ASSETS_VERIFIER_METHODS, lambda plugin: plugin, None
)


def get_scanner() -> ScannerBridge:
    """Return the process-wide scanner bridge, binding it on first use."""
    return _SCANNER.get()


def get_assets_verifier() -> Optional[AssetsVerifier]:
    return _ASSETS_VERIFIER.get()


def install_scanner(scanner: Optional[ApkScanner]) -> None:
    """Bind ``scanner`` directly, skipping entry point discovery.

    Passing None marks the scanner unavailable.
    """
    if scanner is not None:
        missing = [attr for attr in _SCANNER_METHODS if not callable(getattr(scanner, attr, None))]
        if missing:
            raise TypeError(f"scanner is missing {', '.join(missing)}")
    _SCANNER.install(scanner)


def install_assets_verifier(verifier: Optional[AssetsVerifier]) -> None:
    if verifier is not None and not callable(getattr(verifier, "get_assets_status", None)):
        raise TypeError("assets verifier is missing get_assets_status")
    _ASSETS_VERIFIER.install(verifier)


def scanner_state() -> BindState:
    return _SCANNER.state


def reset_bindings() -> None:
    """Forget both bindings; the next call rediscovers the plugins."""
    _SCANNER.reset()
    _ASSETS_VERIFIER.reset()
