"""In-process store for conversation sessions."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Literal
from uuid import uuid4

from seekrag.errors import AlreadyInProgress, InvalidInput, NotFound
from seekrag.knowledge.reducer import QueryTicket, apply_event
from seekrag.metrics.observability import ClientMetrics, get_logger
from seekrag.models import ConversationSession, KnowledgeResponse, Message

DEFAULT_SESSION_NAME = "Default session"

ChangeKind = Literal["created", "updated", "deleted"]


@dataclass(frozen=True)
class SessionChange:
    kind: ChangeKind
    session_id: str
    session: ConversationSession | None


SessionListener = Callable[[SessionChange], None]


class ConversationSessionStore:
    """Owns every session and gates query mutation to one writer per session.

    Callers only ever receive copies. Each session has its own lock; the store
    lock guards the maps and is always taken after a session lock, never before.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, ConversationSession] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._open_queries: Dict[str, QueryTicket] = {}
        self._listeners: List[SessionListener] = []
        self._guard = threading.Lock()
        self._logger = get_logger("sessions")

    # -- subscriptions -------------------------------------------------

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        with self._guard:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._guard:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: ChangeKind, session_id: str, session: ConversationSession | None) -> None:
        with self._guard:
            listeners = list(self._listeners)
        change = SessionChange(kind=kind, session_id=session_id, session=session)
        for listener in listeners:
            try:
                listener(change)
            except Exception as exc:
                self._logger.error("sessions.listener_failed", session_id=session_id, kind=kind, error=str(exc))

    # -- helpers -------------------------------------------------------

    @contextmanager
    def _locked(self, session_id: str) -> Iterator[ConversationSession]:
        with self._guard:
            session = self._sessions.get(session_id)
            lock = self._locks.get(session_id)
        if session is None or lock is None:
            raise NotFound(f"Session not found: {session_id}")
        with lock:
            if self._sessions.get(session_id) is not session:
                raise NotFound(f"Session not found: {session_id}")
            yield session

    def _release(self, ticket: QueryTicket) -> None:
        with self._guard:
            if self._open_queries.get(ticket.session_id) is ticket:
                del self._open_queries[ticket.session_id]

    # -- session lifecycle ---------------------------------------------

    def create(self, name: str) -> ConversationSession:
        session = ConversationSession(id=uuid4().hex, name=name.strip() or DEFAULT_SESSION_NAME)
        with self._guard:
            self._sessions[session.id] = session
            self._locks[session.id] = threading.Lock()
        snapshot = session.copy()
        self._logger.info("session.created", session_id=session.id)
        self._notify("created", session.id, snapshot)
        return snapshot

    def ensure_default(self) -> ConversationSession:
        with self._guard:
            existing = next(iter(self._sessions.values()), None)
        if existing is not None:
            return self.get(existing.id)
        return self.create(DEFAULT_SESSION_NAME)

    def get(self, session_id: str) -> ConversationSession:
        with self._locked(session_id) as session:
            return session.copy()

    def list(self) -> List[ConversationSession]:
        with self._guard:
            ids = list(self._sessions)
        sessions: List[ConversationSession] = []
        for session_id in ids:
            try:
                sessions.append(self.get(session_id))
            except NotFound:
                continue
        return sorted(sessions, key=lambda s: s.updated_at, reverse=True)

    def rename(self, session_id: str, name: str) -> ConversationSession:
        if not name or not name.strip():
            raise InvalidInput("Session name is required")
        with self._locked(session_id) as session:
            session.name = name.strip()
            session.touch()
            snapshot = session.copy()
        self._notify("updated", session_id, snapshot)
        return snapshot

    def touch(self, session_id: str) -> ConversationSession:
        with self._locked(session_id) as session:
            session.touch()
            snapshot = session.copy()
        self._notify("updated", session_id, snapshot)
        return snapshot

    def clear(self, session_id: str) -> ConversationSession:
        with self._locked(session_id) as session:
            if self.has_open_query(session_id):
                raise AlreadyInProgress(f"A query is in progress for session {session_id}")
            session.messages = []
            session.response = ""
            session.seeds = []
            session.searching = False
            session.touch()
            snapshot = session.copy()
        self._notify("updated", session_id, snapshot)
        return snapshot

    def delete(self, session_id: str) -> None:
        with self._locked(session_id):
            with self._guard:
                del self._sessions[session_id]
                del self._locks[session_id]
                ticket = self._open_queries.pop(session_id, None)
            if ticket is not None:
                ticket.closed = True
        self._logger.info("session.deleted", session_id=session_id, released_query=ticket is not None)
        self._notify("deleted", session_id, None)

    def append_user_message(self, session_id: str, content: str) -> ConversationSession:
        if not content or not content.strip():
            raise InvalidInput("Message content is required")
        with self._locked(session_id) as session:
            session.messages.append(Message(role="user", content=content))
            session.touch()
            snapshot = session.copy()
        self._notify("updated", session_id, snapshot)
        return snapshot

    # -- query lifecycle -----------------------------------------------

    def has_open_query(self, session_id: str) -> bool:
        with self._guard:
            return session_id in self._open_queries

    def begin_query(self, session_id: str) -> QueryTicket:
        with self._locked(session_id) as session:
            with self._guard:
                if session_id in self._open_queries:
                    raise AlreadyInProgress(f"A query is already in progress for session {session_id}")
                ticket = QueryTicket(session_id=session_id)
                self._open_queries[session_id] = ticket
            session.seeds = []
            session.response = ""
            session.searching = True
            session.touch()
            snapshot = session.copy()
        self._logger.info("query.begin", session_id=session_id, query_id=ticket.query_id)
        self._notify("updated", session_id, snapshot)
        return ticket

    def apply_event(self, ticket: QueryTicket, event: KnowledgeResponse) -> bool:
        with self._guard:
            session = self._sessions.get(ticket.session_id)
            lock = self._locks.get(ticket.session_id)
        if session is None or lock is None:
            ClientMetrics.observe_anomaly("event_for_deleted_session")
            self._logger.info(
                "stream.discarded",
                reason="session_deleted",
                session_id=ticket.session_id,
                query_id=ticket.query_id,
                tag=event.tag,
            )
            return False
        with lock:
            if self._sessions.get(ticket.session_id) is not session:
                return False
            applied = apply_event(session, ticket, event)
            if ticket.finalized:
                self._release(ticket)
            snapshot = session.copy() if applied else None
        if snapshot is not None:
            self._notify("updated", ticket.session_id, snapshot)
        return applied

    def cancel_query(self, ticket: QueryTicket) -> ConversationSession | None:
        """Stop applying events for ``ticket``; already applied state is kept."""

        ticket.closed = True
        self._release(ticket)
        try:
            with self._locked(ticket.session_id) as session:
                if ticket.finalized:
                    return session.copy()
                session.searching = False
                session.touch()
                snapshot = session.copy()
        except NotFound:
            return None
        self._logger.info("query.cancelled", session_id=ticket.session_id, query_id=ticket.query_id)
        self._notify("updated", ticket.session_id, snapshot)
        return snapshot

    def abandon_query(self, ticket: QueryTicket) -> None:
        """Release ``ticket`` without touching session state (``searching`` stays as is)."""

        ticket.closed = True
        self._release(ticket)
        self._logger.info("query.abandoned", session_id=ticket.session_id, query_id=ticket.query_id)
