"""One conversation turn: submit a knowledge query and fold its events into a session."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
from typing import Sequence

from seekrag.config import Settings, get_settings
from seekrag.errors import InvalidInput, NotFound, OperationTimeout
from seekrag.ingestion.service import DocumentIngestionClient
from seekrag.knowledge.client import KnowledgeQueryClient, validate_query
from seekrag.knowledge.reducer import QueryTicket
from seekrag.metrics.observability import ClientMetrics, get_logger
from seekrag.models import ConversationSession, KnowledgeQuery, Message
from seekrag.sessions.store import ConversationSessionStore


@dataclass(frozen=True)
class AskOptions:
    """Per-turn query options; unset values fall back to settings."""

    kb_list: Sequence[str]
    model: str | None = None
    stream: bool = True
    documents: Sequence[str] | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    response_format: str | None = None
    use_history: bool | None = None


class ConversationService:
    """Runs ``ask`` turns against the knowledge service for sessions in a store."""

    def __init__(
        self,
        store: ConversationSessionStore,
        query_client: KnowledgeQueryClient,
        *,
        ingestion: DocumentIngestionClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._client = query_client
        self._ingestion = ingestion
        self._settings = settings or get_settings()
        self._logger = get_logger("conversation")

    def _document_ids(self, selected: Sequence[str] | None) -> list[str]:
        # Only documents that finished processing are usable as query context
        if not selected:
            return []
        if self._ingestion is None:
            return list(selected)
        return self._ingestion.ready_document_ids(selected)

    def build_query(
        self,
        session: ConversationSession,
        content: str,
        options: AskOptions,
        token: str,
    ) -> KnowledgeQuery:
        settings = self._settings
        use_history = settings.use_history if options.use_history is None else options.use_history
        user_message = Message(role="user", content=content)
        messages = [*session.messages, user_message] if use_history else [user_message]
        return KnowledgeQuery(
            messages=messages,
            token=token,
            model=options.model or settings.default_model,
            kb_list=[kb.strip() for kb in options.kb_list if kb and kb.strip()],
            stream=options.stream,
            documents=self._document_ids(options.documents),
            temperature=settings.default_temperature if options.temperature is None else options.temperature,
            max_tokens=options.max_tokens or settings.default_max_tokens,
            response_format=options.response_format or settings.default_response_format,
        )

    async def ask(
        self,
        session_id: str,
        content: str,
        options: AskOptions,
        *,
        token: str,
        timeout: float | None = None,
    ) -> ConversationSession | None:
        """Run one turn; returns None when the session was deleted while the query ran."""

        if not content or not content.strip():
            raise InvalidInput("Message is required")
        session = self._store.get(session_id)
        query = self.build_query(session, content, options, token)
        validate_query(query)

        ticket = self._store.begin_query(session_id)
        self._store.append_user_message(session_id, content)
        budget = self._settings.stream_timeout_seconds if timeout is None else timeout
        try:
            await asyncio.wait_for(self._consume(query, ticket), timeout=budget)
        except (asyncio.TimeoutError, OperationTimeout) as exc:
            # both the overall budget and the transport read timeout leave searching set
            self._store.abandon_query(ticket)
            self._logger.warning("query.timeout", session_id=session_id, query_id=ticket.query_id, budget=budget)
            if isinstance(exc, OperationTimeout):
                raise
            raise OperationTimeout(f"No final response within {budget}s for session {session_id}") from exc
        except BaseException:
            # cancellation and upstream failures halt application, keeping applied state
            self._store.cancel_query(ticket)
            raise
        try:
            return self._store.get(session_id)
        except NotFound:
            self._logger.info("query.session_deleted", session_id=session_id, query_id=ticket.query_id)
            return None

    async def _consume(self, query: KnowledgeQuery, ticket: QueryTicket) -> None:
        if query.stream:
            async with aclosing(self._client.stream(query)) as events:
                async for event in events:
                    self._store.apply_event(ticket, event)
                    if not ticket.is_open:
                        break
        else:
            self._store.apply_event(ticket, await self._client.query(query))
        if not ticket.finalized and not ticket.closed:
            ClientMetrics.observe_anomaly("missing_final")
            self._logger.warning("stream.incomplete", session_id=ticket.session_id, query_id=ticket.query_id)
            self._store.cancel_query(ticket)
