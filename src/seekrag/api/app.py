"""FastAPI application exposing the SeekRAG client operations."""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional
from uuid import uuid4

import httpx
from fastapi import Depends, FastAPI, File, Header, Query, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from seekrag import __version__
from seekrag.api.schemas import (
    AskRequest,
    BatchUploadResponse,
    DeleteResponse,
    DocumentStatusResponse,
    KnowledgeQueryBody,
    SessionCreateRequest,
    SessionRenameRequest,
    SessionResponse,
    UploadedDocument,
    UploadResponse,
)
from seekrag.auth import parse_authorization
from seekrag.config import Settings, get_settings
from seekrag.errors import InvalidInput, SeekRAGError
from seekrag.ingestion import DocumentIngestionClient
from seekrag.knowledge import KnowledgeQueryClient, encode_event
from seekrag.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from seekrag.models import ConversationSession, DocumentPayload, KnowledgeResponse
from seekrag.services import AskOptions, ConversationService
from seekrag.sessions import ConversationSessionStore


@dataclass(frozen=True)
class AppDependencies:
    ingestion: DocumentIngestionClient
    query_client: KnowledgeQueryClient
    store: ConversationSessionStore
    conversation: ConversationService


def _build_dependencies(settings: Settings) -> AppDependencies:
    ingestion = DocumentIngestionClient(settings)
    query_client = KnowledgeQueryClient(settings)
    store = ConversationSessionStore()
    conversation = ConversationService(store, query_client, ingestion=ingestion, settings=settings)
    return AppDependencies(ingestion=ingestion, query_client=query_client, store=store, conversation=conversation)


async def _read_upload(file: UploadFile) -> DocumentPayload:
    content = await file.read()
    await file.close()
    return DocumentPayload(
        filename=file.filename or "",
        content=content,
        content_type=file.content_type or "application/octet-stream",
    )


def _session_response(session: ConversationSession) -> SessionResponse:
    payload = session.to_dict()
    payload["displaySeeds"] = [seed.to_dict() for seed in session.display_seeds()]
    return SessionResponse(**payload)


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    owns_dependencies = dependencies is None
    deps = dependencies or _build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("api.startup", environment=settings.environment)
        yield
        if owns_dependencies:
            await deps.ingestion.aclose()
            await deps.query_client.aclose()
        logger.info("api.shutdown")

    app = FastAPI(title="SeekRAG API", version="0.1.0", lifespan=lifespan)
    app.state.dependencies = deps

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @app.exception_handler(SeekRAGError)
    async def handle_client_error(request: Request, exc: SeekRAGError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        log = logger.error if exc.status_code >= 500 else logger.info
        log("request.failed", kind=exc.kind, status_code=exc.status_code, detail=str(exc), correlation_id=correlation_id)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc), "kind": exc.kind, "correlation_id": correlation_id},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("unhandled.error", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal Server Error", "correlation_id": correlation_id},
        )

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_ingestion(dep: AppDependencies = Depends(get_dependencies)) -> DocumentIngestionClient:
        return dep.ingestion

    def get_query_client(dep: AppDependencies = Depends(get_dependencies)) -> KnowledgeQueryClient:
        return dep.query_client

    def get_store(dep: AppDependencies = Depends(get_dependencies)) -> ConversationSessionStore:
        return dep.store

    def get_conversation(dep: AppDependencies = Depends(get_dependencies)) -> ConversationService:
        return dep.conversation

    # -- documents -----------------------------------------------------

    @app.post("/api/documents/upload", response_model=UploadResponse)
    async def upload_document(
        file: Optional[UploadFile] = File(default=None),
        authorization: Optional[str] = Header(default=None),
        ingestion: DocumentIngestionClient = Depends(get_ingestion),
    ) -> UploadResponse:
        credential = parse_authorization(authorization)
        payload = None if file is None else await _read_upload(file)
        handle = await ingestion.upload(payload, credential)
        return UploadResponse(
            success=True,
            documentId=handle.id,
            message="Document uploaded successfully and is being processed",
        )

    @app.post("/api/documents/upload-batch", response_model=BatchUploadResponse)
    async def upload_documents(
        files: Optional[List[UploadFile]] = File(default=None),
        authorization: Optional[str] = Header(default=None),
        ingestion: DocumentIngestionClient = Depends(get_ingestion),
    ) -> BatchUploadResponse:
        credential = parse_authorization(authorization)
        payloads = [await _read_upload(file) for file in files or []]
        if not payloads:
            raise InvalidInput("No files provided")
        result = await ingestion.upload_many(payloads, credential)
        return BatchUploadResponse(
            success=not result.failures,
            documents=[
                UploadedDocument(documentId=handle.id, name=handle.name, size=handle.size_bytes)
                for handle in result.handles
            ],
            failures=dict(result.failures),
        )

    @app.get("/api/documents/status", response_model=DocumentStatusResponse, response_model_exclude_none=True)
    async def document_status(
        id: Optional[str] = Query(default=None),
        authorization: Optional[str] = Header(default=None),
        ingestion: DocumentIngestionClient = Depends(get_ingestion),
    ) -> DocumentStatusResponse:
        snapshot = await ingestion.poll_status(id or "", authorization)
        return DocumentStatusResponse(**snapshot.to_dict())

    @app.delete("/api/documents/delete", response_model=DeleteResponse)
    async def delete_document(
        id: Optional[str] = Query(default=None),
        authorization: Optional[str] = Header(default=None),
        ingestion: DocumentIngestionClient = Depends(get_ingestion),
    ) -> DeleteResponse:
        result = await ingestion.delete(id or "", authorization)
        return DeleteResponse(success=result.success, message=result.message)

    # -- knowledge -----------------------------------------------------

    @app.post("/api/knowledge/query")
    async def knowledge_query(
        body: KnowledgeQueryBody,
        client: KnowledgeQueryClient = Depends(get_query_client),
    ) -> JSONResponse:
        data = await client.query_raw(body.to_query(settings, stream=False))
        return JSONResponse(content=data)

    @app.post("/api/knowledge/stream")
    async def knowledge_stream(
        body: KnowledgeQueryBody,
        client: KnowledgeQueryClient = Depends(get_query_client),
    ) -> StreamingResponse:
        query = body.to_query(settings, stream=True)
        stack = AsyncExitStack()
        # Upstream status errors surface here, before the response starts
        upstream = await stack.enter_async_context(client.open_stream(query))

        async def relay() -> AsyncIterator[bytes]:
            try:
                async for chunk in upstream.aiter_bytes():
                    yield chunk
            except httpx.HTTPError as exc:
                logger.warning("stream.relay_failed", detail=str(exc))
                yield encode_event(KnowledgeResponse(tag="final", content=f"Error: {exc}"))
            finally:
                await stack.aclose()

        return StreamingResponse(
            relay(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    # -- sessions ------------------------------------------------------

    @app.post("/api/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
    async def create_session(
        payload: SessionCreateRequest,
        store: ConversationSessionStore = Depends(get_store),
    ) -> SessionResponse:
        return _session_response(store.create(payload.name))

    @app.get("/api/sessions", response_model=List[SessionResponse])
    async def list_sessions(store: ConversationSessionStore = Depends(get_store)) -> List[SessionResponse]:
        sessions = store.list() or [store.ensure_default()]
        return [_session_response(session) for session in sessions]

    @app.get("/api/sessions/{session_id}", response_model=SessionResponse)
    async def get_session(session_id: str, store: ConversationSessionStore = Depends(get_store)) -> SessionResponse:
        return _session_response(store.get(session_id))

    @app.patch("/api/sessions/{session_id}", response_model=SessionResponse)
    async def rename_session(
        session_id: str,
        payload: SessionRenameRequest,
        store: ConversationSessionStore = Depends(get_store),
    ) -> SessionResponse:
        return _session_response(store.rename(session_id, payload.name))

    @app.post("/api/sessions/{session_id}/clear", response_model=SessionResponse)
    async def clear_session(session_id: str, store: ConversationSessionStore = Depends(get_store)) -> SessionResponse:
        return _session_response(store.clear(session_id))

    @app.delete("/api/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_session(session_id: str, store: ConversationSessionStore = Depends(get_store)) -> Response:
        store.delete(session_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/api/sessions/{session_id}/ask", response_model=SessionResponse)
    async def ask(
        session_id: str,
        payload: AskRequest,
        conversation: ConversationService = Depends(get_conversation),
    ) -> Response:
        options = AskOptions(
            kb_list=payload.kb_list,
            model=payload.model,
            stream=payload.stream,
            documents=payload.documents,
            temperature=payload.temperature,
            max_tokens=payload.max_tokens,
            response_format=payload.response_format,
            use_history=payload.use_history,
        )
        session = await conversation.ask(session_id, payload.content, options, token=payload.token or "")
        if session is None:
            return Response(status_code=status.HTTP_204_NO_CONTENT)
        return JSONResponse(content=_session_response(session).model_dump())

    # -- operations ----------------------------------------------------

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    return app


app = create_app()
