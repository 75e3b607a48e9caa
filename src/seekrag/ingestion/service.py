"""Document ingestion client for the external knowledge service."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence
from uuid import uuid4

import httpx

from seekrag.auth import BearerCredential, require_credential
from seekrag.config import Settings, get_settings
from seekrag.errors import InconsistentState, InvalidInput, NotFound, SeekRAGError, UpstreamFailure
from seekrag.metrics.observability import ClientMetrics, TimedSection, get_logger
from seekrag.models import (
    DeleteResult,
    DocumentHandle,
    DocumentPayload,
    DocumentStatus,
    DocumentStatusSnapshot,
)
from seekrag.transport import build_http_client, raise_for_upstream, upstream_errors


@dataclass
class TrackedDocument:
    """Client-side view of one document's lifecycle."""

    id: str
    name: str
    size_bytes: int
    status: DocumentStatus = DocumentStatus.UPLOADING
    error_detail: str | None = None
    _terminal: DocumentStatusSnapshot | None = field(default=None, repr=False)

    def handle(self) -> DocumentHandle:
        return DocumentHandle(id=self.id, name=self.name, size_bytes=self.size_bytes, status=self.status)

    def snapshot(self) -> DocumentStatusSnapshot:
        if self._terminal is not None:
            return self._terminal
        return DocumentStatusSnapshot(
            id=self.id,
            name=self.name,
            size_bytes=self.size_bytes,
            status=self.status,
            error_detail=self.error_detail if self.status is DocumentStatus.ERROR else None,
        )

    def observe(
        self,
        status: DocumentStatus,
        *,
        name: str | None = None,
        size_bytes: int | None = None,
        error_detail: str | None = None,
    ) -> DocumentStatusSnapshot:
        """Apply a status report, refusing anything that moves the lifecycle backwards."""

        if self.status.is_terminal:
            if status is not self.status:
                raise InconsistentState(
                    f"Document {self.id} reported '{status.value}' after terminal '{self.status.value}'"
                )
            return self.snapshot()
        if status.rank < self.status.rank:
            raise InconsistentState(
                f"Document {self.id} regressed from '{self.status.value}' to '{status.value}'"
            )
        if name:
            self.name = name
        if size_bytes is not None:
            self.size_bytes = size_bytes
        self.status = status
        if status is DocumentStatus.ERROR:
            self.error_detail = error_detail or "Failed to process document"
        if status.is_terminal:
            self._terminal = DocumentStatusSnapshot(
                id=self.id,
                name=self.name,
                size_bytes=self.size_bytes,
                status=self.status,
                error_detail=self.error_detail if status is DocumentStatus.ERROR else None,
            )
        return self.snapshot()


@dataclass(frozen=True)
class BatchUploadResult:
    handles: Sequence[DocumentHandle]
    failures: Dict[str, str]


def _parse_status(value: object) -> DocumentStatus:
    try:
        return DocumentStatus(str(value).lower())
    except ValueError as exc:
        raise InconsistentState(f"Unknown document status: {value!r}") from exc


def _parse_size(value: object) -> int | None:
    if value is None:
        return None
    try:
        return int(float(value))  # the service may report fractional byte counts
    except (TypeError, ValueError):
        return None


class DocumentIngestionClient:
    """Uploads documents, tracks their processing status and deletes them.

    Submission to the knowledge service happens in a background task: ``upload``
    returns as soon as the document is accepted locally. Callers drive polling
    themselves (see ``StatusPoller``).
    """

    def __init__(self, settings: Settings | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings or get_settings()
        self._http = client or build_http_client(self._settings)
        self._owns_http = client is None
        self._documents: Dict[str, TrackedDocument] = {}
        self._submissions: Dict[str, asyncio.Task[None]] = {}
        self._logger = get_logger("ingestion")

    async def __aenter__(self) -> "DocumentIngestionClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _document_url(self, document_id: str) -> str:
        return f"{self._settings.documents_url}/{document_id}"

    async def upload(self, file: DocumentPayload | None, auth: BearerCredential | str | None) -> DocumentHandle:
        credential = require_credential(auth)
        file = self._validate_payload(file)
        document_id = uuid4().hex
        document = TrackedDocument(
            id=document_id,
            name=file.filename or f"upload-{document_id}",
            size_bytes=file.size_bytes,
        )
        self._documents[document_id] = document
        self._submissions[document_id] = asyncio.create_task(self._submit(document, file, credential))
        self._logger.info(
            "document.upload_accepted",
            document_id=document_id,
            name=document.name,
            size_bytes=document.size_bytes,
        )
        return document.handle()

    async def upload_many(
        self,
        files: Iterable[DocumentPayload],
        auth: BearerCredential | str | None,
    ) -> BatchUploadResult:
        credential = require_credential(auth)
        handles: List[DocumentHandle] = []
        failures: Dict[str, str] = {}
        for index, file in enumerate(files):
            try:
                handles.append(await self.upload(file, credential))
            except InvalidInput as exc:
                failures[file.filename or f"file-{index}"] = str(exc)
        return BatchUploadResult(handles=handles, failures=failures)

    def _validate_payload(self, file: DocumentPayload | None) -> DocumentPayload:
        if file is None:
            raise InvalidInput("No file provided")
        if not file.content:
            raise InvalidInput(f"File is empty: {file.filename}")
        if file.size_bytes > self._settings.max_upload_size_bytes:
            raise InvalidInput(
                f"File too large (>{self._settings.max_upload_size_mb}MB): {file.filename}"
            )
        return file

    async def _submit(self, document: TrackedDocument, file: DocumentPayload, credential: BearerCredential) -> None:
        try:
            with upstream_errors():
                response = await self._http.post(
                    self._settings.documents_url,
                    headers=credential.headers(),
                    data={"document_id": document.id},
                    files={"file": (document.name, file.content, file.content_type)},
                )
            raise_for_upstream(response)
        except SeekRAGError as exc:
            self._fail_submission(document, str(exc))
            return
        finally:
            self._submissions.pop(document.id, None)
        if self._documents.get(document.id) is not document:
            return
        if document.status is DocumentStatus.UPLOADING:
            document.observe(DocumentStatus.PROCESSING)
        ClientMetrics.uploads.labels(outcome="accepted").inc()
        self._logger.info("document.submitted", document_id=document.id)

    def _fail_submission(self, document: TrackedDocument, detail: str) -> None:
        ClientMetrics.uploads.labels(outcome="failed").inc()
        self._logger.warning("document.submit_failed", document_id=document.id, detail=detail)
        if self._documents.get(document.id) is document and document.status is DocumentStatus.UPLOADING:
            document.observe(DocumentStatus.ERROR, error_detail=detail)

    async def wait_submitted(self, document_id: str) -> DocumentHandle:
        """Wait for the background submission of ``document_id`` to settle."""

        task = self._submissions.get(document_id)
        if task is not None:
            await asyncio.shield(task)
        return self.get(document_id)

    async def poll_status(self, document_id: str, auth: BearerCredential | str | None) -> DocumentStatusSnapshot:
        credential = require_credential(auth)
        if not document_id:
            raise InvalidInput("Document ID is required")
        document = self._require(document_id)

        with TimedSection(ClientMetrics.poll_latency.observe), upstream_errors():
            response = await self._http.get(self._document_url(document_id), headers=credential.headers())
        if self._documents.get(document_id) is not document:
            raise NotFound(f"Document not found: {document_id}")
        if response.status_code == 404:
            if document.status is DocumentStatus.UPLOADING:
                # submission not yet seen by the service
                return document.snapshot()
            raise NotFound(f"Document not found: {document_id}")
        raise_for_upstream(response)

        data = response.json()
        try:
            status = _parse_status(data.get("status"))
            snapshot = document.observe(
                status,
                name=data.get("name"),
                size_bytes=_parse_size(data.get("size", data.get("size_bytes"))),
                error_detail=data.get("error"),
            )
        except InconsistentState as exc:
            ClientMetrics.observe_anomaly("status_regression")
            self._logger.warning(
                "document.anomaly",
                document_id=document_id,
                observed=str(data.get("status")),
                current=document.status.value,
                detail=str(exc),
            )
            raise
        ClientMetrics.observe_poll(snapshot.status.value)
        self._logger.info("document.polled", document_id=document_id, status=snapshot.status.value)
        return snapshot

    async def delete(self, document_id: str, auth: BearerCredential | str | None) -> DeleteResult:
        credential = require_credential(auth)
        if not document_id:
            raise InvalidInput("Document ID is required")
        document = self._documents.pop(document_id, None)
        if document is None:
            raise NotFound(f"Document not found: {document_id}")
        pending = self._submissions.pop(document_id, None)
        if pending is not None and not pending.done():
            pending.cancel()

        # Best effort: local tracking stops even if the service does not confirm.
        try:
            with upstream_errors():
                response = await self._http.delete(self._document_url(document_id), headers=credential.headers())
            if response.is_error and response.status_code != 404:
                raise UpstreamFailure(response.status_code, response.text)
        except SeekRAGError as exc:
            self._logger.warning("document.delete_unconfirmed", document_id=document_id, detail=str(exc))
        else:
            self._logger.info("document.deleted", document_id=document_id)
        return DeleteResult(success=True, message="Document deleted successfully")

    def track(self, document_id: str, *, name: str = "", size_bytes: int = 0) -> DocumentHandle:
        """Resume tracking a document that was submitted by another process."""

        if not document_id:
            raise InvalidInput("Document ID is required")
        document = self._documents.get(document_id)
        if document is None:
            document = TrackedDocument(
                id=document_id,
                name=name or document_id,
                size_bytes=size_bytes,
                status=DocumentStatus.PROCESSING,
            )
            self._documents[document_id] = document
        return document.handle()

    def get(self, document_id: str) -> DocumentHandle:
        return self._require(document_id).handle()

    def documents(self) -> List[DocumentHandle]:
        return [document.handle() for document in self._documents.values()]

    def ready_document_ids(self, selected: Iterable[str] | None = None) -> List[str]:
        chosen = None if selected is None else set(selected)
        return [
            document.id
            for document in self._documents.values()
            if document.status is DocumentStatus.READY and (chosen is None or document.id in chosen)
        ]

    def _require(self, document_id: str) -> TrackedDocument:
        document = self._documents.get(document_id)
        if document is None:
            raise NotFound(f"Document not found: {document_id}")
        return document

    async def aclose(self) -> None:
        pending = [task for task in self._submissions.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._submissions.clear()
        if self._owns_http:
            await self._http.aclose()
