"""Knowledge-base tools: lookup, category listing, category browse."""

from __future__ import annotations

from chatloop.backends.knowledge_base import KnowledgeBase, format_entry_content
from chatloop.tools.base import Tool, ToolParam
from chatloop.types import ErrorCode, ToolResult

_MAX_SEARCH_RESULTS = 10


def _unavailable() -> ToolResult:
    return ToolResult(
        success=False,
        error="Knowledge base not available",
        error_code=ErrorCode.BACKEND_ERROR,
    )


def _entry_view(entry: dict, summarize: bool) -> dict:
    return {
        "id": entry.get("id", ""),
        "title": entry.get("title", ""),
        "category": entry.get("category", ""),
        "content": format_entry_content(entry, summarize=summarize),
    }


def _scope(category: str | None) -> str:
    return f' in category "{category}"' if category else ""


class _KnowledgeTool(Tool):
    def __init__(self, knowledge: KnowledgeBase | None) -> None:
        self._kb = knowledge

    @property
    def timeout_class(self) -> str:
        return "knowledge"


class LookupKnowledgeBaseTool(_KnowledgeTool):
    @property
    def name(self) -> str:
        return "lookup_knowledge_base"

    @property
    def description(self) -> str:
        return (
            "Search and retrieve information from the knowledge base: definitions, "
            "procedures, technical details and documentation. Supports exact term "
            "matching, partial text search, regex patterns (using * wildcards or "
            "regex syntax), and full-text content search as fallback. Pass an exact "
            "entry ID to fetch that entry directly."
        )

    @property
    def params(self) -> list[ToolParam]:
        return [
            ToolParam("query", "string", "Search term or specific entry ID to look up"),
            ToolParam("category", "string", "Optional category to filter search results", required=False),
            ToolParam(
                "detailed",
                "boolean",
                "Return full content (true) or summaries (false). Default is false.",
                required=False,
            ),
        ]

    async def execute(self, query: str, category: str | None = None, detailed: bool = False) -> ToolResult:
        if self._kb is None:
            return _unavailable()

        if " " not in query and self._kb.get(query) is not None:
            return ToolResult(
                success=True,
                data={"type": "direct_lookup", "entry": _entry_view(self._kb.get(query), not detailed)},
            )

        ids = self._kb.search(query, category)
        if not ids:
            return ToolResult(
                success=True,
                data={
                    "type": "no_matches",
                    "availableCategories": self._kb.category_summaries(),
                },
                message=f'No knowledge base entries found for "{query}"{_scope(category)}',
            )

        results = [_entry_view(self._kb.files[i], not detailed) for i in ids[:_MAX_SEARCH_RESULTS]]
        return ToolResult(
            success=True,
            data={
                "type": "search_results",
                "query": query,
                "category": category,
                "totalMatches": len(ids),
                "results": results,
            },
            message=f'Found {len(ids)} entries matching "{query}"{_scope(category)}',
        )


class GetKnowledgeBaseCategoriesTool(_KnowledgeTool):
    @property
    def name(self) -> str:
        return "get_knowledge_base_categories"

    @property
    def description(self) -> str:
        return (
            "Get a list of all available knowledge base categories with their file "
            "counts. Use this to understand what types of information are available."
        )

    async def execute(self) -> ToolResult:
        if self._kb is None:
            return _unavailable()
        categories = self._kb.category_summaries()
        return ToolResult(
            success=True,
            data={"categories": categories},
            message="Available knowledge base categories: "
                    + ", ".join(c["displayName"] for c in categories),
        )


class BrowseKnowledgeBaseCategoryTool(_KnowledgeTool):
    @property
    def name(self) -> str:
        return "browse_knowledge_base_category"

    @property
    def description(self) -> str:
        return (
            "Browse all entries in a specific knowledge base category. Matches "
            "category names exactly or by display name. Use "
            "get_knowledge_base_categories first to see available options."
        )

    @property
    def params(self) -> list[ToolParam]:
        return [ToolParam("category", "string", "The category to browse")]

    async def execute(self, category: str) -> ToolResult:
        if self._kb is None:
            return _unavailable()

        found = self._kb.find_category(category)
        if found is None:
            return ToolResult(
                success=True,
                data={
                    "type": "no_entries",
                    "availableCategories": self._kb.category_summaries(),
                },
                message=f'No entries found in category "{category}"',
            )

        results = [
            _entry_view(self._kb.files[i], summarize=True)
            for i in found.get("files") or []
            if i in self._kb.files
        ]
        display = found.get("displayName", found.get("name", category))
        return ToolResult(
            success=True,
            data={
                "type": "category_browse",
                "category": category,
                "totalEntries": len(results),
                "results": results,
            },
            message=f'Found {len(results)} entries in category "{display}"',
        )
