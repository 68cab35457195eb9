"""Custom exceptions for credrotate.

Per-account errors derive from RotationError and carry an ErrorKind so the
state machine can record them on a RotationOutcome without re-raising.
Batch-level errors (DirectoryUnavailable, PropagationFailed) derive directly
from CredRotateError.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Error kinds recorded on a failed RotationOutcome."""

    EMPTY_SECRET = "EmptySecret"
    WEAK_SECRET = "WeakSecret"
    DIRECTORY_REJECTED = "DirectoryRejected"
    PLATFORM_REJECTED = "PlatformRejected"
    PARTIAL_APPLY = "PartialApply"
    VERIFICATION_FAILED = "VerificationFailed"
    UNEXPECTED = "Unexpected"


class CredRotateError(Exception):
    """Base exception for all credrotate errors."""

    pass


class ConfigurationError(CredRotateError):
    """Raised when settings are missing or inconsistent."""

    pass


class InvalidTransition(CredRotateError):
    """Raised when a rotation state machine is driven backwards."""

    pass


class DirectoryUnavailable(CredRotateError):
    """The backing identity store could not be reached. Fatal for the run."""

    pass


class PropagationFailed(CredRotateError):
    """Restarting dependent services failed after rotation."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        """
        Initialize propagation error.

        Args:
            message: Error message
            cause: Underlying exception, if any
        """
        super().__init__(message)
        self.cause = cause


class RotationError(CredRotateError):
    """Base exception for errors contained to a single account."""

    kind: ErrorKind = ErrorKind.UNEXPECTED
    manual_remediation: bool = False


class EmptySecret(RotationError):
    kind = ErrorKind.EMPTY_SECRET


class WeakSecret(RotationError):
    kind = ErrorKind.WEAK_SECRET


class DirectoryRejected(RotationError):
    """The directory refused the password write. No platform write was attempted."""

    kind = ErrorKind.DIRECTORY_REJECTED


class PlatformRejected(RotationError):
    kind = ErrorKind.PLATFORM_REJECTED


class PartialApply(RotationError):
    """Directory was updated but the platform was not. Needs manual follow-up."""

    kind = ErrorKind.PARTIAL_APPLY
    manual_remediation = True

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class VerificationFailed(RotationError):
    kind = ErrorKind.VERIFICATION_FAILED
