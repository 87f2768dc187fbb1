from .constants import InstallStatus


class NativeLibError(Exception):
    """Base class for nativelib errors.

    Every subclass carries the ``InstallStatus`` an installer should see.
    """

    status = InstallStatus.INTERNAL_ERROR


# Archive could not be opened or iterated, or entry metadata is unreadable
class InvalidArchiveError(NativeLibError):
    status = InstallStatus.INVALID_APK


# Staging, decompression, timestamp, permission or rename failure
class ContainerError(NativeLibError):
    status = InstallStatus.CONTAINER_ERROR


class InternalError(NativeLibError):
    status = InstallStatus.INTERNAL_ERROR


_ERRORS_BY_STATUS = {
    InstallStatus.INVALID_APK: InvalidArchiveError,
    InstallStatus.CONTAINER_ERROR: ContainerError,
}


def error_for_status(status: int, message: str) -> NativeLibError:
    """Build the exception matching a failure status reported by a plugin."""
    return _ERRORS_BY_STATUS.get(status, InternalError)(f"{message} (status {status})")
