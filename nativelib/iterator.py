from __future__ import annotations

import logging
import zipfile
from dataclasses import dataclass
from typing import Iterator, Optional

from .archive import ApkArchive, IterationCursor
from .constants import APK_LIB, GDBSERVER, LIB_SUFFIX, MIN_LIBRARY_ENTRY_LENGTH
from .errors import InternalError
from .pathutil import is_filename_safe


logger = logging.getLogger(__name__)

_LIB_STEM_PREFIX = "lib"


def classify_entry_name(name: str) -> Optional[int]:
    """Decide whether an archive entry is a native library.

    An entry qualifies when it lives under ``lib/<abi>/``, its file name
    starts with ``lib`` and ends with ``.so`` (or is exactly ``gdbserver``),
    and the file name is safe.

    Returns:
        The offset of the slash separating the ABI label from the file name,
        or None when the entry is not a native library.
    """
    if not name.startswith(APK_LIB):
        return None
    if len(name) < MIN_LIBRARY_ENTRY_LENGTH:
        return None
    last_slash = name.rfind("/")
    # The ABI label sits between the root and the last slash and may not be empty
    if last_slash <= len(APK_LIB):
        return None
    file_name = name[last_slash + 1 :]
    if file_name != GDBSERVER:
        if not (file_name.startswith(_LIB_STEM_PREFIX) and file_name.endswith(LIB_SUFFIX)):
            return None
    if not is_filename_safe(file_name):
        return None
    return last_slash


def abi_of(name: str, last_slash: int) -> str:
    return name[len(APK_LIB) : last_slash]


def abi_boundary(name: str) -> int:
    """Offset of the ABI boundary slash in an already accepted library name."""
    last_slash = name.rfind("/")
    if last_slash <= len(APK_LIB):
        raise InternalError(f"last slash was missing somehow for {name}")
    return last_slash


@dataclass(frozen=True)
class NativeLibEntry:
    entry: zipfile.ZipInfo
    name: str
    last_slash: int

    @property
    def abi(self) -> str:
        return abi_of(self.name, self.last_slash)

    @property
    def file_name(self) -> str:
        return self.name[self.last_slash + 1 :]


class NativeLibrariesIterator:
    """Walks the shared libraries stored in an archive.

    The iteration cursor is released by ``close()``; use the iterator as a
    context manager so that happens on every exit path.
    """

    def __init__(self, archive: ApkArchive, cursor: IterationCursor):
        self._archive = archive
        self._cursor: Optional[IterationCursor] = cursor
        self._current: Optional[str] = None
        self._last_slash: Optional[int] = None
        self._entry: Optional[zipfile.ZipInfo] = None

    @classmethod
    def create(cls, archive: ApkArchive) -> "NativeLibrariesIterator":
        return cls(archive, archive.start_iteration())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __iter__(self) -> Iterator[NativeLibEntry]:
        while self.next() is not None:
            yield self.current()

    def next(self) -> Optional[zipfile.ZipInfo]:
        self._current = None
        self._last_slash = None
        self._entry = None
        if self._cursor is None:
            return None
        while True:
            entry = self._archive.next_entry(self._cursor)
            if entry is None:
                return None
            name = self._archive.entry_name(entry)
            last_slash = classify_entry_name(name)
            if last_slash is None:
                continue
            logger.debug("native library entry: %s", name)
            self._current = name
            self._last_slash = last_slash
            self._entry = entry
            return entry

    @property
    def current_entry(self) -> Optional[str]:
        return self._current

    @property
    def last_slash(self) -> Optional[int]:
        return self._last_slash

    def current(self) -> NativeLibEntry:
        if self._entry is None or self._current is None or self._last_slash is None:
            raise RuntimeError("Iterator has no current entry")
        return NativeLibEntry(entry=self._entry, name=self._current, last_slash=self._last_slash)

    def close(self) -> None:
        if self._cursor is not None:
            self._archive.end_iteration(self._cursor)
            self._cursor = None
