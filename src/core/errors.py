"""Error taxonomy for the sync core and user-facing error classification."""

from enum import Enum

from pydantic import BaseModel


class GardenSyncError(Exception):
    """Base class for local/remote sync failures."""


class NotConnectedError(GardenSyncError):
    """Raised when a remote-requiring operation runs without an active wallet session."""

    def __init__(self, message: str = "Wallet not connected") -> None:
        super().__init__(message)


class TransactionFailedError(GardenSyncError):
    """Raised when the remote store rejects a mutating transaction."""

    def __init__(self, raw_log: str, *, code: int | None = None, tx_hash: str | None = None) -> None:
        self.raw_log = raw_log
        self.code = code
        self.tx_hash = tx_hash
        super().__init__(f"Transaction failed: {raw_log}")


class DocumentIdMissingError(GardenSyncError):
    """Raised when a successful store transaction does not emit a document id."""

    def __init__(self, tx_hash: str | None) -> None:
        self.tx_hash = tx_hash
        super().__init__(f"Store transaction {tx_hash} did not emit a document id")


class QueryUnavailableError(GardenSyncError):
    """Raised when no read gateway is configured for the remote store."""

    def __init__(self, message: str = "Query client not available") -> None:
        super().__init__(message)


class CacheCorruptError(GardenSyncError):
    """Raised when a local cache entry cannot be parsed."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Local cache entry '{key}' is corrupt: {reason}")


class ConfirmationTimeoutError(GardenSyncError):
    """A write was accepted but never observed within the polling budget."""

    def __init__(self, collection: str, document_id: str, attempts: int) -> None:
        self.collection = collection
        self.document_id = document_id
        self.attempts = attempts
        super().__init__(f"Document {document_id} in {collection} not observed after {attempts} polls")


class TaskNotFoundError(KeyError):
    """Raised when an operation references an unknown task id."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")

    def __str__(self) -> str:
        return self.args[0]


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"
    ERR_INVALID_INPUT = "ERR_INVALID_INPUT"
    ERR_INVALID_STATE_TRANSITION = "ERR_INVALID_STATE_TRANSITION"
    ERR_NOT_CONNECTED = "ERR_NOT_CONNECTED"
    ERR_REMOTE_UNAVAILABLE = "ERR_REMOTE_UNAVAILABLE"
    ERR_CACHE_CORRUPT = "ERR_CACHE_CORRUPT"
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


def classify_error_with_response(exception: Exception) -> ErrorResponse:  # noqa: PLR0911
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, TaskNotFoundError):
        return ErrorResponse(
            code=ErrorCode.ERR_TASK_NOT_FOUND,
            message="I couldn't find that task.",
            suggestion="Refresh your task list and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, CacheCorruptError):
        return ErrorResponse(
            code=ErrorCode.ERR_CACHE_CORRUPT,
            message="Your saved garden could not be read, so the starter garden was loaded.",
            suggestion="Connect your wallet and refresh to restore your garden from the network.",
            severity=ErrorSeverity.MEDIUM,
        )

    if isinstance(exception, NotConnectedError):
        return ErrorResponse(
            code=ErrorCode.ERR_NOT_CONNECTED,
            message="Your wallet is not connected.",
            suggestion="Connect your wallet to sync your garden.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, GardenSyncError):
        return ErrorResponse(
            code=ErrorCode.ERR_REMOTE_UNAVAILABLE,
            message="Could not complete this action, local copy unaffected.",
            suggestion="Your change is saved on this device and will sync later.",
            severity=ErrorSeverity.MEDIUM,
        )

    error_str = str(exception).lower()
    if isinstance(exception, ValueError) and (error_str.startswith("cannot") or "invalid state" in error_str):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_STATE_TRANSITION,
            message="This action cannot be performed in the current state.",
            suggestion="Check the task status and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, ValueError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_INPUT,
            message="Some of the details you entered are not valid.",
            suggestion="Check the task title, priority and category.",
            severity=ErrorSeverity.LOW,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
