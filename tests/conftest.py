"""Shared fixtures: a scripted stand-in for the external knowledge service."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List

import httpx
import pytest

from seekrag.config import Settings
from seekrag.ingestion import DocumentIngestionClient
from seekrag.knowledge import KnowledgeQueryClient
from seekrag.sessions import ConversationSessionStore

BASE_URL = "http://knowledge.test"
TOKEN = "secret-token"
AUTH = f"Bearer {TOKEN}"


def sse(*events: Dict[str, Any]) -> bytes:
    return b"".join(f"data: {json.dumps(event)}\n\n".encode("utf-8") for event in events)


def seed(seed_id: str, order: int, **extra: Any) -> Dict[str, Any]:
    payload = {
        "id": seed_id,
        "tokens": 12,
        "content": f"content of {seed_id}",
        "order": order,
        "source_id": f"src-{seed_id}",
        "source_title": f"Source {seed_id}",
        "nip": 0.5,
    }
    payload.update(extra)
    return payload


class StalledStream(httpx.AsyncByteStream):
    """Sends the given prefix, then never finishes."""

    def __init__(self, prefix: bytes) -> None:
        self._prefix = prefix

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self._prefix
        await asyncio.sleep(3600)


class FakeKnowledgeService:
    """Records requests and answers with scripted document statuses and query streams."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.statuses: Dict[str, List[Dict[str, Any]]] = {}
        self.deleted: set[str] = set()
        self.upload_status = 202
        self.delete_status = 200
        self.poll_error_status: int | None = None
        self.seek_status = 200
        self.seek_error = "upstream exploded"
        self.stream_body: bytes = sse({"tag": "final", "content": "ok"})
        self.stream_factory = None
        self.query_body: Any = {"tag": "final", "content": "ok"}

    def script(self, document_id: str, *statuses: Any) -> None:
        self.statuses[document_id] = [
            {"status": item} if isinstance(item, str) else dict(item) for item in statuses
        ]

    def requests_to(self, method: str, path_prefix: str) -> List[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method and request.url.path.startswith(path_prefix)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/external/use/seek-knowledge":
            return self._seek(request)
        if path == "/external/documents" and request.method == "POST":
            return httpx.Response(self.upload_status, json={"accepted": self.upload_status < 400})
        if path.startswith("/external/documents/"):
            document_id = path.rsplit("/", 1)[-1]
            if request.method == "DELETE":
                self.deleted.add(document_id)
                return httpx.Response(self.delete_status, json={"success": self.delete_status < 400})
            if self.poll_error_status is not None:
                return httpx.Response(self.poll_error_status, text="maintenance")
            if document_id in self.deleted or document_id not in self.statuses:
                return httpx.Response(404, json={"error": "not found"})
            script = self.statuses[document_id]
            current = script.pop(0) if len(script) > 1 else script[0]
            return httpx.Response(200, json={"id": document_id, "name": "doc", "size": 0, **current})
        return httpx.Response(404, text="no route")

    def _seek(self, request: httpx.Request) -> httpx.Response:
        if self.seek_status >= 400:
            return httpx.Response(self.seek_status, text=self.seek_error)
        payload = json.loads(request.content)
        if payload.get("stream"):
            if self.stream_factory is not None:
                return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=self.stream_factory())
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=self.stream_body)
        return httpx.Response(200, json=self.query_body)

    def last_seek_payload(self) -> Dict[str, Any]:
        return json.loads(self.requests_to("POST", "/external/use/seek-knowledge")[-1].content)


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "environment": "test",
        "knowledge_base_url": BASE_URL,
        "poll_initial_delay_seconds": 0.0,
        "poll_interval_seconds": 0.01,
        "poll_max_interval_seconds": 0.05,
        "poll_max_wait_seconds": 5.0,
        "stream_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def knowledge_service() -> FakeKnowledgeService:
    return FakeKnowledgeService()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def http_client(knowledge_service: FakeKnowledgeService) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(knowledge_service.handler))


@pytest.fixture
async def ingestion(settings: Settings, http_client: httpx.AsyncClient) -> AsyncIterator[DocumentIngestionClient]:
    client = DocumentIngestionClient(settings, client=http_client)
    yield client
    await client.aclose()


@pytest.fixture
def query_client(settings: Settings, http_client: httpx.AsyncClient) -> KnowledgeQueryClient:
    return KnowledgeQueryClient(settings, client=http_client)


@pytest.fixture
def store() -> ConversationSessionStore:
    return ConversationSessionStore()
