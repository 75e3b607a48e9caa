"""Shared domain models used across the SeekRAG client."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Literal, Mapping, Sequence

Role = Literal["user", "assistant", "system"]


def now_ms() -> int:
    return int(time.time() * 1000)


class DocumentStatus(str, Enum):
    """Processing status reported for an uploaded document."""

    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.READY, DocumentStatus.ERROR)


_STATUS_RANK = {
    DocumentStatus.UPLOADING: 0,
    DocumentStatus.PROCESSING: 1,
    DocumentStatus.READY: 2,
    DocumentStatus.ERROR: 2,
}


@dataclass(frozen=True)
class DocumentPayload:
    """File contents handed to the ingestion client."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size_bytes(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class DocumentHandle:
    """Returned by upload; describes a document accepted for processing."""

    id: str
    name: str
    size_bytes: int
    status: DocumentStatus


@dataclass(frozen=True)
class DocumentStatusSnapshot:
    """Latest known processing status for a document."""

    id: str
    name: str
    size_bytes: int
    status: DocumentStatus
    error_detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "size": self.size_bytes,
            "status": self.status.value,
        }
        if self.status is DocumentStatus.ERROR:
            payload["error"] = self.error_detail
        return payload


@dataclass(frozen=True)
class DeleteResult:
    success: bool
    message: str


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class KnowledgeSeed:
    """One retrieved evidence snippet with provenance and relevance score."""

    id: str
    tokens: int
    content: str
    order: int
    source_id: str
    source_title: str
    nip: float

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KnowledgeSeed":
        return cls(
            id=str(data.get("id", "")),
            tokens=int(data.get("tokens") or 0),
            content=str(data.get("content", "")),
            order=int(data.get("order") or 0),
            source_id=str(data.get("source_id", "")),
            source_title=str(data.get("source_title", "")),
            nip=float(data.get("nip") or 0.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tokens": self.tokens,
            "content": self.content,
            "order": self.order,
            "source_id": self.source_id,
            "source_title": self.source_title,
            "nip": self.nip,
        }


EventTag = Literal["searching", "seeds", "final"]


@dataclass(frozen=True)
class KnowledgeResponse:
    """Tagged event emitted by the retrieval service for a query."""

    tag: EventTag
    content: Any = None

    @property
    def seeds(self) -> Sequence[KnowledgeSeed]:
        if self.tag != "seeds" or not self.content:
            return ()
        return tuple(
            item if isinstance(item, KnowledgeSeed) else KnowledgeSeed.from_dict(item)
            for item in self.content
        )

    @property
    def text(self) -> str:
        if self.content is None:
            return ""
        return self.content if isinstance(self.content, str) else str(self.content)


@dataclass
class ConversationSession:
    """An ordered message log plus the accumulated output of the current query."""

    id: str
    name: str
    created_at: int = field(default_factory=now_ms)
    updated_at: int = 0
    messages: list[Message] = field(default_factory=list)
    response: str = ""
    seeds: list[KnowledgeSeed] = field(default_factory=list)
    searching: bool = False

    def __post_init__(self) -> None:
        if self.updated_at < self.created_at:
            self.updated_at = self.created_at

    def touch(self) -> None:
        self.updated_at = max(self.updated_at, now_ms())

    def display_seeds(self) -> list[KnowledgeSeed]:
        # sorted() is stable, so equal orders keep arrival order
        return sorted(self.seeds, key=lambda seed: seed.order)

    def copy(self) -> "ConversationSession":
        return replace(self, messages=list(self.messages), seeds=list(self.seeds))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messages": [message.to_dict() for message in self.messages],
            "response": self.response,
            "seeds": [seed.to_dict() for seed in self.seeds],
            "searching": self.searching,
        }


@dataclass(frozen=True)
class KnowledgeQuery:
    """A single query invocation against the retrieval endpoint."""

    messages: Sequence[Message]
    token: str
    model: str
    kb_list: Sequence[str]
    stream: bool = True
    documents: Sequence[str] = ()
    temperature: float = 0.7
    max_tokens: int = 2000
    response_format: str = "text"

    def to_payload(self) -> dict[str, Any]:
        return {
            "messages": [message.to_dict() for message in self.messages],
            "model": self.model,
            "stream": self.stream,
            "kb_list": list(self.kb_list),
            "document_ids": list(self.documents),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": self.response_format,
        }
