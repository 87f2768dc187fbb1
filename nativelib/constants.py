from enum import IntEnum


# Archive layout
APK_LIB = "lib/"
LIB_PREFIX = "/lib"
LIB_SUFFIX = ".so"
RS_BITCODE_SUFFIX = ".bc"
GDBSERVER = "gdbserver"

# lib/ + two-char ABI + /lib + one-char stem + .so
MIN_LIBRARY_ENTRY_LENGTH = len(APK_LIB) + 2 + len(LIB_PREFIX) + 1 + len(LIB_SUFFIX)


# Materialization
TMP_FILE_PREFIX = "tmp."
NATIVE_LIBRARY_MODE = 0o755  # rwxr-xr-x
CRC_BUFFER_SIZE = 16384
COPY_BUFFER_SIZE = 65536


# Accelerator plugins (importlib.metadata entry points)
ACCELERATOR_ENTRY_POINT_GROUP = "nativelib.accelerators"
APK_SCANNER_NAME = "apkscanner"
ASSETS_VERIFIER_NAME = "assetsverifier"


class InstallStatus(IntEnum):
    """Status codes shared by ABI resolution and materialization.

    Values match the package manager install codes so they can be handed
    back to an installer unchanged.
    """

    SUCCEEDED = 1
    INVALID_APK = -2
    INSUFFICIENT_STORAGE = -4
    CONTAINER_ERROR = -18
    INTERNAL_ERROR = -110
    NO_MATCHING_ABIS = -113
    NO_NATIVE_LIBRARIES = -114


class BitcodeScanResult(IntEnum):
    APK_SCAN_ERROR = -1
    NO_BITCODE_PRESENT = 0
    BITCODE_PRESENT = 1
