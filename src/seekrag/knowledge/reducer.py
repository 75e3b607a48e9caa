"""Folds tagged knowledge events into conversation session state."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from uuid import uuid4

from seekrag.metrics.observability import ClientMetrics, get_logger
from seekrag.models import ConversationSession, KnowledgeResponse, Message

_logger = get_logger("reducer")


@dataclass
class QueryTicket:
    """Exclusivity token for one query invocation on one session."""

    session_id: str
    query_id: str = field(default_factory=lambda: uuid4().hex)
    started_at: float = field(default_factory=time.perf_counter)
    finalized: bool = False
    closed: bool = False

    @property
    def is_open(self) -> bool:
        return not (self.finalized or self.closed)


def _discard(ticket: QueryTicket, event: KnowledgeResponse, reason: str) -> bool:
    ClientMetrics.observe_anomaly(reason)
    _logger.warning(
        "stream.anomaly",
        reason=reason,
        session_id=ticket.session_id,
        query_id=ticket.query_id,
        tag=event.tag,
    )
    return False


def apply_event(session: ConversationSession, ticket: QueryTicket, event: KnowledgeResponse) -> bool:
    """Apply one event to ``session``; return False when the event is discarded.

    Holds no state of its own: duplicate detection reads ``session.seeds``, which
    only ever contains seeds of the current query.
    """

    if ticket.session_id != session.id:
        raise ValueError(f"Ticket for session {ticket.session_id} applied to session {session.id}")
    if ticket.finalized:
        return _discard(ticket, event, "event_after_final")
    if ticket.closed:
        return _discard(ticket, event, "event_after_close")

    if event.tag == "searching":
        if not session.searching:
            session.searching = True
            session.touch()
    elif event.tag == "seeds":
        seen = {(seed.id, seed.order) for seed in session.seeds}
        for seed in event.seeds:
            key = (seed.id, seed.order)
            if key in seen:
                _logger.debug("stream.duplicate_seed", session_id=session.id, seed_id=seed.id, order=seed.order)
                continue
            seen.add(key)
            session.seeds.append(seed)
        session.touch()
    elif event.tag == "final":
        text = event.text
        session.response = text
        session.searching = False
        session.messages.append(Message(role="assistant", content=text))
        session.touch()
        ticket.finalized = True
        ClientMetrics.query_latency.observe(time.perf_counter() - ticket.started_at)
        _logger.info(
            "query.final",
            session_id=session.id,
            query_id=ticket.query_id,
            seed_count=len(session.seeds),
        )
    else:
        return _discard(ticket, event, "unknown_tag")
    ClientMetrics.observe_event(event.tag)
    return True
