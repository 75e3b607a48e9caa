"""Service layer orchestrations for SeekRAG."""

from .conversation import AskOptions, ConversationService

__all__ = ["AskOptions", "ConversationService"]
