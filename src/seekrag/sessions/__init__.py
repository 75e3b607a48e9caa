"""Conversation session storage."""

from .store import DEFAULT_SESSION_NAME, ConversationSessionStore, SessionChange, SessionListener

__all__ = ["ConversationSessionStore", "DEFAULT_SESSION_NAME", "SessionChange", "SessionListener"]
