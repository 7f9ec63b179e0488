"""Error taxonomy for sheetsync.

Every failure a sync attempt can run into is a subclass of SyncError.
The engine only branches on the class (and the is_transient /
is_rate_limit flags), never on the wrapped low-level cause, which is
attached with ``raise ... from exc`` for diagnostics.

Families:
- Authentication: NotAuthenticatedError, TokenExpiredError
- Network: NetworkError, NetworkTimeoutError
- Remote API: RateLimitedError, SheetNotFoundError, SheetDeletedError,
  PermissionDeniedError, PermissionRevokedError, ApiError
- Local filesystem: FileNotFoundSyncError, FileLockedError, DiskFullError,
  FileReadError, FileWriteError, ParseError
- Data integrity: BackupFailedError, ChecksumMismatchError
"""

from __future__ import annotations

from pathlib import Path


class SyncError(Exception):
    """Base exception for sync errors."""

    is_transient: bool = False
    is_rate_limit: bool = False

    @property
    def user_message(self) -> str:
        """Short description suitable for a status line."""
        return str(self)


# === Authentication ===


class NotAuthenticatedError(SyncError):
    """No credential is available."""

    def __init__(self, message: str = "Not signed in to Google") -> None:
        super().__init__(message)


class TokenExpiredError(SyncError):
    """The credential expired and could not be refreshed."""

    def __init__(self, message: str = "Session expired - please sign in again") -> None:
        super().__init__(message)


# === Network ===


class NetworkError(SyncError):
    """Connectivity failure talking to the remote service."""

    is_transient = True

    def __init__(self, message: str = "Network error") -> None:
        super().__init__(message)


class NetworkTimeoutError(NetworkError):
    """Request exceeded its overall timeout."""

    def __init__(self, message: str = "Network timeout - check your connection") -> None:
        super().__init__(message)


# === Remote API ===


class ApiError(SyncError):
    """Generic non-success response from the remote service."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"API error ({status_code}): {message}")
        self.status_code = status_code
        self.message = message


class RateLimitedError(SyncError):
    """The remote service asked us to slow down."""

    is_transient = True
    is_rate_limit = True

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"Rate limited. Retry in {int(retry_after)}s")
        self.retry_after = retry_after


class SheetNotFoundError(SyncError):
    """The requested spreadsheet or range does not exist."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Sheet not found: {name}")
        self.name = name


class SheetDeletedError(SyncError):
    """A previously synced spreadsheet has been deleted."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Sheet was deleted: {name}")
        self.name = name


class PermissionDeniedError(SyncError):
    """The credential lacks access to the spreadsheet."""

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(message)


class PermissionRevokedError(PermissionDeniedError):
    """The user revoked the app's access."""

    def __init__(self) -> None:
        super().__init__("Access revoked - re-authorize the app")


# === Local filesystem ===


class FileNotFoundSyncError(SyncError):
    """The local file does not exist."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"File not found: {Path(path).name}")
        self.path = Path(path)


class FileLockedError(SyncError):
    """The local file is not writable (usually open in another app)."""

    is_transient = True

    def __init__(self, path: Path) -> None:
        super().__init__(f"File is locked: {Path(path).name} - close it in other apps")
        self.path = Path(path)


class DiskFullError(SyncError):
    """No space left on the destination volume."""

    def __init__(self) -> None:
        super().__init__("Disk full - free up space")


class FileReadError(SyncError):
    """The local file could not be read."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot read file {Path(path).name}: {reason}")
        self.path = Path(path)


class FileWriteError(SyncError):
    """The local file could not be written."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot write file {Path(path).name}: {reason}")
        self.path = Path(path)


class ParseError(SyncError):
    """The local file content could not be decoded."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Parse error: {message}")


# === Data integrity ===


class BackupFailedError(SyncError):
    """Creating, verifying or restoring a backup failed."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Backup failed: {message}")


class ChecksumMismatchError(BackupFailedError):
    """A backup file no longer matches its recorded checksum."""

    def __init__(self, file_name: str) -> None:
        super().__init__(f"checksum mismatch for {file_name} - file may be corrupted")
        self.file_name = file_name


class UnknownSyncError(SyncError):
    """Unexpected failure wrapped for status reporting."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Unknown error: {cause}")
