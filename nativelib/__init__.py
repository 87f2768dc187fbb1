"""
nativelib — native library scanning and extraction for APK-like archives.

Features:

- Recognizes the shared libraries stored under ``lib/<abi>/`` (plus the
  ``gdbserver`` debug helper), rejecting unsafe file names.
- Picks the most preferred ABI an archive ships native code for, telling
  "no native code" apart from "native code for other ABIs only".
- Copies one ABI's libraries into an install directory, skipping files whose
  size, mtime and CRC-32 already match and replacing the rest atomically.
- Sums the extracted size of one ABI's libraries.
- Optional accelerator plugins, discovered through entry points, with a
  silent fallback to the built-in scan.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "archive",
    "iterator",
    "resolver",
    "materializer",
    "bitcode",
    "bridge",
    "helper",
]

# The installer-facing API lives in nativelib.helper; the building blocks
# (resolver.find_supported_abi, materializer.copy_native_binaries, ...) raise
# nativelib.errors exceptions instead of returning status codes.
