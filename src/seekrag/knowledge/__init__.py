"""Knowledge queries: transport, event parsing and session folding."""

from .client import KnowledgeQueryClient, validate_query
from .reducer import QueryTicket, apply_event
from .stream import decode_event, encode_event, iter_events, parse_block

__all__ = [
    "KnowledgeQueryClient",
    "QueryTicket",
    "apply_event",
    "decode_event",
    "encode_event",
    "iter_events",
    "parse_block",
    "validate_query",
]
