"""Document ingestion lifecycle."""

from .polling import BackoffPolicy, StatusPoller
from .service import BatchUploadResult, DocumentIngestionClient, TrackedDocument

__all__ = [
    "BackoffPolicy",
    "BatchUploadResult",
    "DocumentIngestionClient",
    "StatusPoller",
    "TrackedDocument",
]
