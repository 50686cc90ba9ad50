"""
Custom exceptions for person sync.

Stores and transports raise these exceptions so the orchestrator can
classify failures without knowing which backend produced them.
"""

from enum import Enum


class PersonSyncError(Exception):
    """Base exception for all person sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PersonSyncError):
    """Raised when person input fails validation.

    Carries every validation message so callers can report them together.
    """

    def __init__(self, errors: list[str]):
        super().__init__("Validation failed: " + "; ".join(errors), {"errors": list(errors)})
        self.errors = list(errors)


class RecordNotFoundError(PersonSyncError):
    """Raised when a person record is not found in the store."""

    def __init__(self, local_id: int):
        super().__init__(f"Person not found: {local_id}", {"local_id": local_id})
        self.local_id = local_id


class StorageIOError(PersonSyncError):
    """Raised when a record store operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class StorageConnectionError(PersonSyncError):
    """Raised when the record store cannot be opened.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class TransportErrorCategory(Enum):
    """Failure categories surfaced by sync clients."""

    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    INTERNAL = "internal"
    GENERIC = "generic"


class TransportError(PersonSyncError):
    """Raised when a remote call fails at the transport level."""

    def __init__(
        self,
        category: TransportErrorCategory,
        endpoint: str,
        detail: str | None = None,
        cause: Exception | None = None,
    ):
        details = {"category": category.value, "endpoint": endpoint}
        if detail:
            details["detail"] = detail
        if cause:
            details["cause"] = str(cause)
        message = f"Transport error ({category.value}) calling {endpoint}"
        if detail:
            message += f": {detail}"
        super().__init__(message, details)
        self.category = category
        self.endpoint = endpoint
        self.detail = detail
        self.cause = cause


class SyncError(PersonSyncError):
    """Raised when a sync operation cannot run at all."""

    def __init__(self, message: str, operation: str | None = None, cause: Exception | None = None):
        details: dict = {}
        if operation:
            details["operation"] = operation
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.operation = operation
        self.cause = cause
