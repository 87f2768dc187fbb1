from __future__ import annotations

import argparse
import contextlib
import logging
import os
import sys
from typing import Iterator, List

from nativelib.archive import ApkArchive
from nativelib.bitcode import has_renderscript_bitcode
from nativelib.errors import NativeLibError
from nativelib.helper import close_apk, open_apk
from nativelib.iterator import NativeLibrariesIterator
from nativelib.materializer import copy_native_binaries, sum_native_binaries
from nativelib.resolver import Outcome, find_supported_abi


@contextlib.contextmanager
def _opened(apk: str) -> Iterator[ApkArchive]:
    archive = open_apk(apk)
    try:
        yield archive
    finally:
        close_apk(archive)


def cmd_list(apk: str) -> bool:
    """List the native libraries in an archive, one ``abi<TAB>size<TAB>name`` per line."""
    count = 0
    with _opened(apk) as archive:
        with NativeLibrariesIterator.create(archive) as it:
            for lib in it:
                size = archive.entry_info(lib.entry).uncompressed_size
                print(f"{lib.abi}\t{size}\t{lib.name}")
                count += 1
    if count == 0:
        print("no native libraries", file=sys.stderr)
    return True


def cmd_abi(apk: str, abis: List[str]) -> bool:
    """Print the preferred ABI the archive supports. False when none matches."""
    with _opened(apk) as archive:
        resolution = find_supported_abi(archive, abis)
    if resolution.is_match:
        assert resolution.index is not None
        print(f"{abis[resolution.index]}\t(index {resolution.index})")
        return True
    if resolution.outcome is Outcome.NO_NATIVE_LIBRARIES:
        print("no native libraries")
    else:
        print("no matching ABI")
    return False


def cmd_size(apk: str, abi: str) -> bool:
    with _opened(apk) as archive:
        total = sum_native_binaries(archive, abi)
    print(total)
    return True


def cmd_copy(apk: str, abi: str, *, outdir: str, quiet: bool = False) -> bool:
    """Copy one ABI's libraries into ``outdir``, leaving unchanged files alone."""
    os.makedirs(outdir, exist_ok=True)
    with _opened(apk) as archive:
        copied = copy_native_binaries(archive, outdir, abi)
    if not quiet:
        for name in copied:
            print(f"    copying: {name}")
    print(f"Summary: {len(copied)} file(s) updated in {outdir}")
    return True


def cmd_bitcode(apk: str) -> bool:
    with _opened(apk) as archive:
        result = has_renderscript_bitcode(archive)
    print(result.name.lower().replace("_", " "))
    return result >= 0


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="nativelib",
        description="Inspect and extract the native libraries of APK archives",
    )
    ap.add_argument("-v", "--verbose", action="store_true", help="Log per-entry decisions")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_list = sub.add_parser("list", help="List native libraries")
    ap_list.add_argument("apk", help="Archive path")

    ap_abi = sub.add_parser("abi", help="Pick the preferred supported ABI")
    ap_abi.add_argument("apk", help="Archive path")
    ap_abi.add_argument("abis", nargs="+", help="Acceptable ABIs, most preferred first")

    ap_size = sub.add_parser("size", help="Bytes one ABI's libraries take once extracted")
    ap_size.add_argument("apk", help="Archive path")
    ap_size.add_argument("abi", help="Target ABI")

    ap_copy = sub.add_parser("copy", help="Copy one ABI's libraries, skipping unchanged files")
    ap_copy.add_argument("apk", help="Archive path")
    ap_copy.add_argument("abi", help="Target ABI")
    ap_copy.add_argument("--outdir", required=True, help="Destination directory")
    ap_copy.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_bitcode = sub.add_parser("bitcode", help="Check for RenderScript bitcode")
    ap_bitcode.add_argument("apk", help="Archive path")

    args = ap.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.cmd == "list":
            success = cmd_list(args.apk)
        elif args.cmd == "abi":
            success = cmd_abi(args.apk, args.abis)
        elif args.cmd == "size":
            success = cmd_size(args.apk, args.abi)
        elif args.cmd == "copy":
            success = cmd_copy(args.apk, args.abi, outdir=args.outdir, quiet=args.quiet)
        elif args.cmd == "bitcode":
            success = cmd_bitcode(args.apk)
        else:
            raise RuntimeError("Unknown command")
    except NativeLibError as e:
        print(f"Error: {e} ({e.status.name})", file=sys.stderr)
        sys.exit(2)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
