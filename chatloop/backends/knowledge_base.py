"""
Knowledge-base document loader and ranked search.

The document is a JSON or YAML mapping::

    files:        {id: {id, title, category, contentType, content}}
    categories:   [{name, displayName, fileCount, files: [id, ...]}]
    searchIndex:  {topics: {term: [id, ...]}, terms: {term: [id, ...]}}

Search ranks matches in three tiers: exact index hits (topics, then
terms), partial title/id matches, then full-text content matches.  Terms
containing wildcard or regex metacharacters also run a regex pass over
the content.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

import yaml

from chatloop.backends.base import BackendError

logger = logging.getLogger(__name__)

_REGEX_HINTS = ("*", "\\", "[", "^", "$")
_ENOUGH_EXACT = 5
_SUMMARY_CHARS = 500
_SUMMARY_TABLES = 5


class KnowledgeBase:
    def __init__(self, data: dict[str, Any]) -> None:
        self.files: dict[str, dict] = data.get("files") or {}
        self.categories: list[dict] = data.get("categories") or []
        index = data.get("searchIndex") or {}
        self._topics: dict[str, list[str]] = index.get("topics") or {}
        self._terms: dict[str, list[str]] = index.get("terms") or {}

    @classmethod
    def from_path(cls, path: str | Path) -> KnowledgeBase:
        """Load a JSON or YAML document.  Raises ``BackendError`` if unreadable."""
        p = Path(path).expanduser()
        if not p.is_file():
            raise BackendError("Knowledge base not available", code="missing")
        try:
            with p.open("r", encoding="utf-8") as f:
                if p.suffix.lower() in (".yaml", ".yml"):
                    data = yaml.safe_load(f) or {}
                else:
                    data = json.load(f)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise BackendError(f"Knowledge base could not be loaded: {exc}", code="load") from exc
        logger.info("Loaded knowledge base from %s (%d entries)", p, len(data.get("files") or {}))
        return cls(data)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, entry_id: str) -> dict | None:
        return self.files.get(entry_id)

    def category_summaries(self) -> list[dict]:
        return [
            {
                "name": c.get("name", ""),
                "displayName": c.get("displayName", c.get("name", "")),
                "fileCount": c.get("fileCount", len(c.get("files") or [])),
            }
            for c in self.categories
        ]

    def find_category(self, name: str) -> dict | None:
        """Match a category by exact name, then case-insensitively by name or display name."""
        lowered = name.lower()
        for c in self.categories:
            if c.get("name") == name:
                return c
        for c in self.categories:
            if c.get("name", "").lower() == lowered or c.get("displayName", "").lower() == lowered:
                return c
        return None

    def search(self, term: str, category: str | None = None) -> list[str]:
        """Return matching entry ids, best matches first."""
        needle = term.lower()
        seen: set[str] = set()
        exact: list[str] = []
        partial: list[str] = []
        content: list[str] = []

        def eligible(entry_id: str) -> bool:
            entry = self.files.get(entry_id)
            return (
                entry is not None
                and entry_id not in seen
                and (not category or entry.get("category") == category)
            )

        for index in (self._topics, self._terms):
            for entry_id in index.get(needle, []):
                if eligible(entry_id):
                    seen.add(entry_id)
                    exact.append(entry_id)

        if len(seen) < _ENOUGH_EXACT:
            for entry_id, entry in self.files.items():
                if not eligible(entry_id):
                    continue
                if needle in entry.get("title", "").lower() or needle in str(entry.get("id", entry_id)).lower():
                    seen.add(entry_id)
                    partial.append(entry_id)

        pattern = _as_regex(term)
        if not seen or pattern is not None:
            for entry_id, entry in self.files.items():
                if not eligible(entry_id):
                    continue
                text = _searchable_text(entry).lower()
                if pattern is not None:
                    found = bool(
                        pattern.search(text)
                        or pattern.search(entry.get("title", ""))
                        or pattern.search(str(entry.get("id", entry_id)))
                    )
                else:
                    found = needle in text
                if found:
                    seen.add(entry_id)
                    content.append(entry_id)

        return exact + partial + content


def format_entry_content(entry: dict, summarize: bool = False) -> str:
    """Render an entry's content as text, optionally as a short summary."""
    body = entry.get("content")
    if entry.get("contentType") == "json" and isinstance(body, dict):
        out = ""
        doc = body.get("document") or {}
        if doc.get("title"):
            out += f"**{doc['title']}** ({doc.get('version', 'Unknown version')})\n\n"
        tables = body.get("tables") or []
        if tables:
            out += f"Database reference containing {len(tables)} tables:\n\n"
            shown = tables[:_SUMMARY_TABLES] if summarize else tables
            for table in shown:
                out += f"- **{table.get('name', '')}**: {table.get('description') or 'No description'}\n"
            if summarize and len(tables) > _SUMMARY_TABLES:
                out += f"... and {len(tables) - _SUMMARY_TABLES} more tables"
        return out

    if isinstance(body, str):
        text = body
    elif body is None:
        text = ""
    else:
        text = json.dumps(body)
    if summarize and len(text) > _SUMMARY_CHARS:
        text = text[:_SUMMARY_CHARS] + "..."
    return text


def _searchable_text(entry: dict) -> str:
    body = entry.get("content")
    if entry.get("contentType") == "json" and isinstance(body, dict):
        return " ".join(
            f"{t.get('name', '')} {t.get('description', '')}" for t in body.get("tables") or []
        )
    return body if isinstance(body, str) else ""


def _as_regex(term: str) -> re.Pattern | None:
    if not any(h in term for h in _REGEX_HINTS):
        return None
    try:
        return re.compile(term.replace("*", ".*"), re.IGNORECASE)
    except re.error:
        return None
