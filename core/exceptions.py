"""Shared exception types for the exit monitor and its clients."""

from typing import Optional

PENDING_SIGNATURE = "PENDING_SIGNATURE"
POSITION_NOT_FOUND = "POSITION_NOT_FOUND"
QUOTE_UNAVAILABLE = "QUOTE_UNAVAILABLE"
BUILD_FAILED = "BUILD_FAILED"
SIGNER_REJECTED = "SIGNER_REJECTED"
CONFIRMATION_FAILED = "CONFIRMATION_FAILED"
BROADCAST_UNKNOWN = "BROADCAST_UNKNOWN"
NO_BALANCE = "NO_BALANCE"
PIPELINE_ERROR = "PIPELINE_ERROR"

# Failure categories
TRANSIENT = "transient"
USER_ACTIONABLE = "user_actionable"
LOCAL_INCONSISTENCY = "local_inconsistency"


class ProviderError(RuntimeError):
    """Raised when an external HTTP collaborator fails or returns garbage."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None,
                 original: Optional[Exception] = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code
        self.original = original


class StoreError(RuntimeError):
    """Raised when the position store cannot be read or written."""


class ExitPipelineError(Exception):
    """Base class for stage failures inside the exit pipeline."""

    marker = PIPELINE_ERROR
    category = TRANSIENT

    def __init__(self, message: str, original: Optional[Exception] = None):
        super().__init__(message)
        self.original = original

    def as_error(self) -> str:
        return f"{self.marker}: {self}"


class SignerUnavailable(ExitPipelineError):
    marker = PENDING_SIGNATURE
    category = USER_ACTIONABLE


class PositionNotFound(ExitPipelineError):
    marker = POSITION_NOT_FOUND
    category = LOCAL_INCONSISTENCY


class NoBalance(ExitPipelineError):
    marker = NO_BALANCE
    category = LOCAL_INCONSISTENCY


class QuoteUnavailable(ExitPipelineError):
    marker = QUOTE_UNAVAILABLE


class BuildFailed(ExitPipelineError):
    marker = BUILD_FAILED


class SignerRejected(ExitPipelineError):
    marker = SIGNER_REJECTED
    category = USER_ACTIONABLE


class ConfirmationFailed(ExitPipelineError):
    marker = CONFIRMATION_FAILED


class BroadcastUnknown(ExitPipelineError):
    """The wallet may have broadcast the sell; reselling could sell twice."""

    marker = BROADCAST_UNKNOWN
    category = USER_ACTIONABLE
