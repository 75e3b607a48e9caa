"""Error kinds surfaced by the SeekRAG client."""

from __future__ import annotations


class SeekRAGError(RuntimeError):
    """Base class for all client errors."""

    kind = "error"
    status_code = 500


class Unauthorized(SeekRAGError):
    """Raised when the bearer credential is missing or malformed."""

    kind = "unauthorized"
    status_code = 401


class InvalidInput(SeekRAGError):
    """Raised when a required field is missing before any network call."""

    kind = "invalid_input"
    status_code = 400


class NotFound(SeekRAGError):
    """Raised for unknown sessions or documents."""

    kind = "not_found"
    status_code = 404


class AlreadyInProgress(SeekRAGError):
    """Raised when a query is already open for a session."""

    kind = "already_in_progress"
    status_code = 409


class InconsistentState(SeekRAGError):
    """Raised when the service reports a status that regresses the lifecycle."""

    kind = "inconsistent_state"
    status_code = 409


class OperationTimeout(SeekRAGError):
    """Raised when polling or stream consumption exceeds its budget."""

    kind = "timeout"
    status_code = 504


class OperationCancelled(SeekRAGError):
    """Raised when an operation is cancelled before anything was observed."""

    kind = "cancelled"
    status_code = 499


class UpstreamFailure(SeekRAGError):
    """Raised when the knowledge service answers with a non-success status.

    The upstream status code and body are kept verbatim so callers can relay them.
    """

    kind = "upstream_failure"

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"API returned {status_code}: {body}")
        self.status_code = status_code
        self.body = body


__all__ = [
    "AlreadyInProgress",
    "InconsistentState",
    "InvalidInput",
    "NotFound",
    "OperationCancelled",
    "OperationTimeout",
    "SeekRAGError",
    "Unauthorized",
    "UpstreamFailure",
]
