from __future__ import annotations

import time
import zipfile
import zlib
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Tuple

from .constants import COPY_BUFFER_SIZE
from .errors import ContainerError, InvalidArchiveError


@dataclass(frozen=True)
class EntryInfo:
    uncompressed_size: int
    crc32: int
    mtime: int


def zip_time_to_epoch(date_time: Tuple[int, int, int, int, int, int]) -> int:
    """Convert a zip (DOS) timestamp to epoch seconds.

    DOS timestamps carry no zone; they are read as local time and the C
    library decides whether DST applies.
    """
    year, month, day, hour, minute, second = date_time
    return int(time.mktime((year, month, day, hour, minute, second, 0, 0, -1)))


class IterationCursor:
    """Position within the central directory of one archive."""

    def __init__(self, entries: List[zipfile.ZipInfo]):
        self._entries = iter(entries)
        self.ended = False

    def advance(self) -> Optional[zipfile.ZipInfo]:
        if self.ended:
            return None
        return next(self._entries, None)


class ApkArchive:
    """Read-only handle on an APK-like zip container.

    Only the operations the native library scanner needs are exposed; the
    handle never writes to the archive.
    """

    def __init__(self, path: str):
        self.path = path
        self.zf: Optional[zipfile.ZipFile] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<ApkArchive {self.path!r} {state}>"

    @property
    def closed(self) -> bool:
        return self.zf is None

    def open(self):
        if self.zf is not None:
            return
        try:
            self.zf = zipfile.ZipFile(self.path, "r")
        except (zipfile.BadZipFile, OSError, ValueError) as exc:
            self.zf = None
            raise InvalidArchiveError(f"Couldn't open archive {self.path}: {exc}") from exc

    def close(self):
        if self.zf is not None:
            self.zf.close()
            self.zf = None

    # iteration
    def start_iteration(self) -> IterationCursor:
        if self.zf is None:
            raise InvalidArchiveError(f"Couldn't start iteration over {self.path}: archive not open")
        return IterationCursor(self.zf.infolist())

    def next_entry(self, cursor: IterationCursor) -> Optional[zipfile.ZipInfo]:
        return cursor.advance()

    def end_iteration(self, cursor: IterationCursor) -> None:
        cursor.ended = True

    # entries
    def entry_name(self, entry: zipfile.ZipInfo) -> str:
        return entry.filename

    def entry_info(self, entry: zipfile.ZipInfo) -> EntryInfo:
        try:
            mtime = zip_time_to_epoch(entry.date_time)
        except (OverflowError, ValueError) as exc:
            raise InvalidArchiveError(f"Couldn't read zip entry info for {entry.filename}: {exc}") from exc
        return EntryInfo(uncompressed_size=entry.file_size, crc32=entry.CRC, mtime=mtime)

    def find_entry(self, name: str) -> Optional[zipfile.ZipInfo]:
        if self.zf is None:
            raise InvalidArchiveError("Archive not open")
        try:
            return self.zf.getinfo(name)
        except KeyError:
            return None

    def uncompress_entry(self, entry: zipfile.ZipInfo, out: BinaryIO) -> None:
        """Stream the decompressed entry into ``out``.

        zipfile checks the CRC-32 once the last byte is read, so a corrupted
        entry fails here rather than after it has been put in place.
        """
        if self.zf is None:
            raise InvalidArchiveError("Archive not open")
        try:
            with self.zf.open(entry, "r") as src:
                while True:
                    buf = src.read(COPY_BUFFER_SIZE)
                    if not buf:
                        break
                    out.write(buf)
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError, OSError) as exc:
            raise ContainerError(f"Failed uncompressing {entry.filename}: {exc}") from exc
