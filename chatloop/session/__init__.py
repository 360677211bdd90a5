"""Conversation persistence."""

from chatloop.session.store import ConversationStore

__all__ = ["ConversationStore"]
