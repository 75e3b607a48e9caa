"""Client for the knowledge service's retrieval endpoint."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from seekrag.auth import BearerCredential
from seekrag.config import Settings, get_settings
from seekrag.errors import InconsistentState, InvalidInput, UpstreamFailure
from seekrag.knowledge.stream import decode_event, iter_events
from seekrag.metrics.observability import get_logger
from seekrag.models import KnowledgeQuery, KnowledgeResponse
from seekrag.transport import build_http_client, raise_for_upstream, upstream_errors


def validate_query(query: KnowledgeQuery) -> None:
    """Reject a query before any network interaction."""

    if not query.token or not query.token.strip():
        raise InvalidInput("API token is required")
    if not query.kb_list or not any(kb and kb.strip() for kb in query.kb_list):
        raise InvalidInput("Knowledge base ID is required")
    if not query.messages:
        raise InvalidInput("Messages are required")


class KnowledgeQueryClient:
    """Submits knowledge queries in streaming or single-response mode."""

    def __init__(self, settings: Settings | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings or get_settings()
        self._http = client or build_http_client(self._settings)
        self._owns_http = client is None
        self._logger = get_logger("knowledge")

    async def __aenter__(self) -> "KnowledgeQueryClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _request(self, query: KnowledgeQuery, *, stream: bool) -> httpx.Request:
        validate_query(query)
        credential = BearerCredential.from_token(query.token.strip())
        payload = query.to_payload()
        payload["stream"] = stream
        return self._http.build_request(
            "POST",
            self._settings.seek_url,
            headers={**credential.headers(), "Content-Type": "application/json"},
            json=payload,
        )

    async def query_raw(self, query: KnowledgeQuery) -> Any:
        """Return the upstream JSON body of a non-streaming query unchanged."""

        request = self._request(query, stream=False)
        with upstream_errors():
            response = await self._http.send(request)
        raise_for_upstream(response)
        self._logger.info("query.complete", kb_count=len(query.kb_list), model=query.model)
        return response.json()

    async def query(self, query: KnowledgeQuery) -> KnowledgeResponse:
        data = await self.query_raw(query)
        event = decode_event(data)
        if event is None:
            raise InconsistentState("Unexpected response from knowledge service")
        return event

    @asynccontextmanager
    async def open_stream(self, query: KnowledgeQuery) -> AsyncIterator[httpx.Response]:
        """Open a streaming query; a non-success status is raised before any byte is yielded."""

        request = self._request(query, stream=True)
        with upstream_errors():
            response = await self._http.send(request, stream=True)
        try:
            if response.is_error:
                with upstream_errors():
                    await response.aread()
                raise UpstreamFailure(response.status_code, response.text)
            self._logger.info("stream.opened", kb_count=len(query.kb_list), model=query.model)
            yield response
        finally:
            await response.aclose()

    async def stream(self, query: KnowledgeQuery) -> AsyncIterator[KnowledgeResponse]:
        async with self.open_stream(query) as response:
            with upstream_errors():
                async for event in iter_events(response.aiter_text()):
                    yield event

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
