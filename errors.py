"""Exception hierarchy and result statuses for the transfer coordinator."""

from enum import Enum


class ShareStatus(str, Enum):
    """Outcome of a resolve or download call, as reported to the receiver."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_DOWNLOADED = "already_downloaded"
    INVALID_CODE = "invalid_code"
    STORAGE_ERROR = "storage_error"


class ShareError(Exception):
    """Base exception for all share errors."""


class InvalidInputError(ShareError):
    """Raised when share metadata is malformed. Nothing is written."""


class FileTooLargeError(InvalidInputError):
    """Raised when an upload exceeds the configured size limit."""


class BlobKeyInUseError(InvalidInputError):
    """Raised when another share record already points at the blob key."""


class CodeCollisionError(ShareError):
    """Raised by the record store when a code is already taken."""


class CodeSpaceExhaustedError(ShareError):
    """Raised when no free code was found within the retry limit."""


class StorageError(ShareError):
    """Raised on blob store failures (unreachable backend, timeouts, disk I/O)."""


class BlobNotFoundError(StorageError):
    """Raised when a blob key does not exist in the store."""
