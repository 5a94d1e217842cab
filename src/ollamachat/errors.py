"""Error taxonomy for ollamachat.

Every error raised on purpose by the package derives from ChatError so that
front-ends can catch one type. Cancellation is not an error and never appears
here: a cancelled turn ends with asyncio.CancelledError inside the turn task.
"""

from enum import Enum
from pathlib import Path


class ChatError(Exception):
    """Base class for all ollamachat errors."""


class ProviderErrorKind(str, Enum):
    """Why a provider query failed."""

    UNREACHABLE = "unreachable"
    PROTOCOL = "protocol"
    TIMEOUT = "timeout"
    REMOTE = "remote"


class ProviderError(ChatError):
    """A query to the LLM backend failed.

    Attributes:
        kind: Failure category
        status_code: HTTP status when the backend rejected the request
    """

    kind: ProviderErrorKind = ProviderErrorKind.UNREACHABLE

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderUnreachableError(ProviderError):
    """Backend could not be reached or rejected the request (non-2xx)."""

    kind = ProviderErrorKind.UNREACHABLE


class ProviderProtocolError(ProviderError):
    """Backend sent a malformed frame or closed the stream early."""

    kind = ProviderErrorKind.PROTOCOL


class ProviderTimeoutError(ProviderError):
    """Request exceeded the configured timeout."""

    kind = ProviderErrorKind.TIMEOUT


class ProviderRemoteError(ProviderError):
    """Backend reported an error inside the stream."""

    kind = ProviderErrorKind.REMOTE


class UnsupportedProviderError(ChatError, ValueError):
    """Provider type is unknown or not implemented."""


class StorageErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    IO_FAILURE = "io_failure"


class StorageError(ChatError):
    """A session store operation failed.

    Attributes:
        operation: Store operation that failed (save, load, list, ...)
        path: Path the operation touched, if any
        kind: Failure category
    """

    kind: StorageErrorKind = StorageErrorKind.IO_FAILURE

    def __init__(self, message: str, operation: str, path: str | Path | None = None):
        super().__init__(message)
        self.operation = operation
        self.path = str(path) if path is not None else None

    def __str__(self) -> str:
        base = super().__str__()
        if self.path:
            return f"{base} (operation={self.operation}, path={self.path})"
        return f"{base} (operation={self.operation})"


class SessionNotFoundError(StorageError):
    """No record exists for the requested session id."""

    kind = StorageErrorKind.NOT_FOUND

    def __init__(self, session_id: str, operation: str, path: str | Path | None = None):
        super().__init__(f"session not found: {session_id}", operation, path)
        self.session_id = session_id


class ValidationError(ChatError, ValueError):
    """User-supplied settings input is malformed or out of range."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class ConfigError(ChatError):
    """Configuration file could not be read or holds invalid values."""
