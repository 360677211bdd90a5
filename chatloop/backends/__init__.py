"""Tool backends."""

from chatloop.backends.analytics import AnalyticsClient
from chatloop.backends.base import BackendError
from chatloop.backends.knowledge_base import KnowledgeBase

__all__ = ["AnalyticsClient", "BackendError", "KnowledgeBase"]
