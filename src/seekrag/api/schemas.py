"""Pydantic models for the SeekRAG API."""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from seekrag.config import Settings
from seekrag.models import KnowledgeQuery, Message


class MessageModel(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str = ""

    def to_message(self) -> Message:
        return Message(role=self.role, content=self.content)


class SeedModel(BaseModel):
    id: str
    tokens: int
    content: str
    order: int
    source_id: str
    source_title: str
    nip: float


class UploadResponse(BaseModel):
    success: bool
    documentId: str = Field(..., description="Client-assigned identifier of the uploaded document")
    message: str


class UploadedDocument(BaseModel):
    documentId: str
    name: str
    size: int


class BatchUploadResponse(BaseModel):
    success: bool
    documents: List[UploadedDocument]
    failures: Dict[str, str] = Field(default_factory=dict, description="Rejected files by name, with the reason")


class DocumentStatusResponse(BaseModel):
    id: str
    name: str
    size: int = Field(..., ge=0, description="Document size in bytes")
    status: Literal["uploading", "processing", "ready", "error"]
    error: Optional[str] = None


class DeleteResponse(BaseModel):
    success: bool
    message: str


class KnowledgeQueryBody(BaseModel):
    """Query body; presence checks happen in ``validate_query`` so they surface as 400s."""

    model_config = ConfigDict(populate_by_name=True)

    messages: List[MessageModel] = Field(default_factory=list)
    token: Optional[str] = None
    model: Optional[str] = None
    kb_list: List[str] = Field(default_factory=list, alias="kbList")
    stream: bool = False
    documents: List[str] = Field(default_factory=list)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    response_format: Optional[str] = None

    def to_query(self, settings: Settings, *, stream: bool) -> KnowledgeQuery:
        return KnowledgeQuery(
            messages=[message.to_message() for message in self.messages],
            token=(self.token or "").strip(),
            model=self.model or settings.default_model,
            kb_list=list(self.kb_list),
            stream=stream,
            documents=list(self.documents),
            temperature=settings.default_temperature if self.temperature is None else self.temperature,
            max_tokens=self.max_tokens or settings.default_max_tokens,
            response_format=self.response_format or settings.default_response_format,
        )


class SessionCreateRequest(BaseModel):
    name: str = Field(default="", description="Display name; a default is used when empty")


class SessionRenameRequest(BaseModel):
    name: str = Field(..., min_length=1)


class AskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = ""
    token: Optional[str] = None
    kb_list: List[str] = Field(default_factory=list, alias="kbList")
    model: Optional[str] = None
    stream: bool = True
    documents: Optional[List[str]] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    response_format: Optional[str] = None
    use_history: Optional[bool] = None


class SessionResponse(BaseModel):
    id: str
    name: str
    createdAt: int
    updatedAt: int
    messages: List[MessageModel]
    response: str
    seeds: List[SeedModel]
    displaySeeds: List[SeedModel] = Field(default_factory=list, description="Seeds sorted by service rank")
    searching: bool
