"""
Result truncation and history serialization for tool outcomes.

Tool results are copied into the next request's history as text, so large
payloads are cut down first:

  - row arrays over ``row_threshold``: first and last ``row_sample`` rows
    around a marker row
  - knowledge-base search results: top ``search_limit``
  - category browse listings: first ``browse_limit``
  - direct lookups and plain strings: ``text_budget`` characters

Only successful results are truncated, and an already-truncated result is
returned unchanged.  The serialized text of each outcome is finally capped
at ``max_result_chars``.
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from chatloop.config import ToolsConfig
from chatloop.types import ToolResult

if TYPE_CHECKING:
    from chatloop.orchestrator.executor import ToolOutcome

RESULTS_HEADER = "Here are the results from your tool calls:\n\n"
RESULTS_SEPARATOR = "\n\n---\n\n"
RESULTS_FOOTER = (
    "\n\nIMPORTANT: The tool results above are automatically displayed to the user "
    "in a separate section. Your response should ONLY contain your analysis and "
    "final answer. DO NOT repeat the tool result data in your response. Just "
    "provide your analysis and conclusions based on the data you received."
)
LENGTH_MARKER = "\n...\n[Content truncated for length]"
_CAP_MARGIN = 200


@dataclass(frozen=True)
class TruncationLimits:
    row_threshold: int = 10
    row_sample: int = 5
    search_limit: int = 5
    browse_limit: int = 8
    text_budget: int = 1500
    max_result_chars: int = 4000

    @classmethod
    def from_config(cls, cfg: ToolsConfig) -> TruncationLimits:
        return cls(
            row_threshold=cfg.row_threshold,
            row_sample=cfg.row_sample,
            search_limit=cfg.search_limit,
            browse_limit=cfg.browse_limit,
            text_budget=cfg.text_budget,
            max_result_chars=cfg.max_result_chars,
        )


# ---------------------------------------------------------------------------
# Truncation
# ---------------------------------------------------------------------------

def truncate_result(result: ToolResult, limits: TruncationLimits | None = None) -> ToolResult:
    """Return a truncated copy of *result*, or *result* itself if nothing applies."""
    limits = limits or TruncationLimits()
    if not result.success or result.truncated:
        return result

    if _is_batch(result.data):
        data, summary = _truncate_batch(result.data, limits)
    else:
        data, summary = truncate_data(result.data, limits)
    if summary is None:
        return result
    return dataclasses.replace(result, data=data, truncated=True, context_summary=summary)


def truncate_data(data: Any, limits: TruncationLimits) -> tuple[Any, str | None]:
    """Apply the policy for *data*'s shape.  Returns ``(data, summary or None)``."""
    if isinstance(data, list):
        return _truncate_rows(data, limits)
    if isinstance(data, str):
        return _truncate_text(data, limits)
    if isinstance(data, dict):
        kind = data.get("type")
        if kind == "search_results":
            return _truncate_search(data, limits)
        if kind == "category_browse":
            return _truncate_browse(data, limits)
        if kind == "direct_lookup":
            return _truncate_lookup(data, limits)
    return data, None


def _truncate_rows(rows: list, limits: TruncationLimits) -> tuple[list, str | None]:
    total = len(rows)
    if total <= limits.row_threshold:
        return rows, None
    n = limits.row_sample
    marker = {"_note": f"[Showing first {n} and last {n} of {total} total rows]"}
    return (
        rows[:n] + [marker] + rows[-n:],
        f"Showing first {n} and last {n} of {total} rows",
    )


def _truncate_text(text: str, limits: TruncationLimits) -> tuple[str, str | None]:
    if len(text) <= limits.text_budget:
        return text, None
    return (
        text[:limits.text_budget] + "...",
        f"Text truncated to {limits.text_budget} of {len(text)} characters",
    )


def _truncate_search(data: dict, limits: TruncationLimits) -> tuple[dict, str | None]:
    results = data.get("results") or []
    if len(results) <= limits.search_limit:
        return data, None
    total = data.get("totalMatches", len(results))
    return (
        {**data, "results": results[:limits.search_limit]},
        f"Showing top {limits.search_limit} of {total} matches",
    )


def _truncate_browse(data: dict, limits: TruncationLimits) -> tuple[dict, str | None]:
    results = data.get("results") or []
    if len(results) <= limits.browse_limit:
        return data, None
    total = data.get("totalEntries", len(results))
    return (
        {**data, "results": results[:limits.browse_limit]},
        f"Showing first {limits.browse_limit} of {total} entries in {data.get('category', '')}",
    )


def _truncate_lookup(data: dict, limits: TruncationLimits) -> tuple[dict, str | None]:
    entry = data.get("entry") or {}
    content = entry.get("content")
    if not isinstance(content, str) or len(content) <= limits.text_budget:
        return data, None
    return (
        {**data, "entry": {**entry, "content": content[:limits.text_budget] + "...", "truncated": True}},
        f"Content truncated. Full entry ID: {entry.get('id', '')}",
    )


def _is_batch(data: Any) -> bool:
    return isinstance(data, dict) and isinstance(data.get("batch_results"), list)


def _truncate_batch(data: dict, limits: TruncationLimits) -> tuple[dict, str | None]:
    """Truncate each successful nested invocation result of a batch payload."""
    nested: list = []
    summaries: list[str] = []
    for item in data["batch_results"]:
        if isinstance(item, dict) and item.get("success") and not item.get("truncated"):
            inner, summary = truncate_data(item.get("data"), limits)
            if summary is not None:
                item = {**item, "data": inner, "truncated": True, "contextSummary": summary}
                summaries.append(f"{item.get('tool', 'tool')}: {summary}")
        nested.append(item)
    if not summaries:
        return data, None
    return {**data, "batch_results": nested}, "; ".join(summaries)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def cap_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max(max_chars - _CAP_MARGIN, 0)] + LENGTH_MARKER


def format_result_text(result: ToolResult, limits: TruncationLimits | None = None) -> str:
    limits = limits or TruncationLimits()
    text = json.dumps(result.to_dict(), indent=2, default=str)
    return cap_text(text, limits.max_result_chars)


def format_tool_results_message(
    outcomes: list[ToolOutcome],
    limits: TruncationLimits | None = None,
) -> str:
    """Render outcomes, in call order, as the tool-result history message."""
    sections = [
        f"## Tool Result: {o.call.name}\n\n{format_result_text(o.result, limits)}"
        for o in outcomes
    ]
    return RESULTS_HEADER + RESULTS_SEPARATOR.join(sections) + RESULTS_FOOTER
