"""Tests for the built-in tools and the single-call runner."""

from __future__ import annotations

import time

import pytest

from chatloop.tools.arithmetic import EvaluateExpressionTool, evaluate
from chatloop.tools.control import CompleteTaskTool, ContinueAgentTool
from chatloop.tools.knowledge import (
    BrowseKnowledgeBaseCategoryTool,
    GetKnowledgeBaseCategoriesTool,
    LookupKnowledgeBaseTool,
)
from chatloop.tools.runner import run_tool, tool_not_found
from chatloop.tools.sql import (
    ExecuteSqlTool,
    ExecuteUserApprovedSqlTool,
    PrepareSqlForUserTool,
    check_sql,
)
from chatloop.types import ErrorCode
from tests.mock_backends import analytics_client, sample_knowledge_base
from tests.mock_tools import EchoTool, FailingTool, SlowTool


# ---------------------------------------------------------------------------
# evaluate_expression
# ---------------------------------------------------------------------------

class TestArithmetic:
    @pytest.mark.parametrize("expr,expected", [
        ("2+2*3", 8),
        ("(2+2)*3", 12),
        ("-3 ** 2", -9),
        ("10 / 4", 2.5),
        ("7 // 2", 3),
        ("7 % 4", 3),
        ("sqrt(16) + abs(-1)", 5.0),
        ("max(1, 5, 3) - min(4, 2)", 3),
        ("mean(1, 2, 3, 4)", 2.5),
        ("round(pi, 2)", 3.14),
    ])
    def test_evaluate(self, expr, expected):
        assert evaluate(expr) == expected

    @pytest.mark.parametrize("expr", [
        "__import__('os')",
        "open('x')",
        "2 ** 100000",
        "((9 ** 999) ** 999) ** 9",
        "9 ** 999 * 9 ** 999 * 9 ** 999 * 9 ** 999",
        "x + 1",
        "1 +",
        "'a' * 3",
        "True + 1",
    ])
    def test_rejects_non_arithmetic(self, expr):
        with pytest.raises(ValueError):
            evaluate(expr)

    async def test_tool_success(self):
        result = await EvaluateExpressionTool().execute(expression="2+2*3")
        assert result.success is True
        assert result.data == {"result": 8}

    async def test_tool_division_by_zero(self):
        result = await EvaluateExpressionTool().execute(expression="1/0")
        assert result.success is False
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    async def test_huge_result_fails_fast(self):
        start = time.monotonic()
        result = await run_tool(EvaluateExpressionTool(), {"expression": "((9**999)**999)**99"}, 0.2)
        assert time.monotonic() - start < 1.0
        assert result.success is False
        assert result.error == "Result too large"

    def test_large_but_bounded(self):
        assert evaluate("9 ** 999") == 9 ** 999


# ---------------------------------------------------------------------------
# SQL tools
# ---------------------------------------------------------------------------

class TestCheckSql:
    def test_select_ok(self):
        assert check_sql("SELECT * FROM frpair").valid is True

    @pytest.mark.parametrize("query", [
        "SELECT 1; DROP TABLE frpair",
        "SELECT a FROM t UNION SELECT b FROM u",
        "SELECT 1 -- comment",
        "SELECT /* hidden */ 1",
    ])
    def test_dangerous_patterns(self, query):
        check = check_sql(query)
        assert check.valid is False
        assert "dangerous" in check.error

    def test_modifying_requires_approval(self):
        check = check_sql("UPDATE frpair SET status = 'C' WHERE acct = '1'")
        assert check.valid is False
        assert check.requires_approval is True

    def test_non_select_rejected(self):
        check = check_sql("PRAGMA table_info(frpair)")
        assert check.valid is False
        assert check.requires_approval is False

    def test_approved_mode_allows_modifying(self):
        assert check_sql("DELETE FROM frpair WHERE acct = '1'", select_only=False).valid is True


class TestSqlTools:
    async def test_execute_sql_rows(self):
        seen: list = []
        client = analytics_client([{"acct": "1", "name": "A"}, {"acct": "2", "name": "B"}], seen=seen)
        result = await ExecuteSqlTool(client).execute(query="SELECT acct, name FROM frpair")

        assert result.success is True
        assert result.data == [{"acct": "1", "name": "A"}, {"acct": "2", "name": "B"}]
        assert result.message == "Query executed successfully. Retrieved 2 rows."
        assert result.metadata == {"columns": ["acct", "name"], "rowCount": 2}
        assert seen == [{"sql": "SELECT acct, name FROM frpair", "source": "duckdb"}]

    async def test_execute_sql_modifying_flagged_for_approval(self):
        seen: list = []
        result = await ExecuteSqlTool(analytics_client(seen=seen)).execute(
            query="UPDATE frpair SET status = 'C'"
        )
        assert result.success is True
        assert result.metadata["requiresApproval"] is True
        assert seen == []

    async def test_execute_sql_backend_error(self):
        result = await ExecuteSqlTool(analytics_client(status=500)).execute(query="SELECT 1")
        assert result.success is False
        assert result.error_code == ErrorCode.BACKEND_ERROR
        assert "relation does not exist" in result.error

    async def test_execute_sql_default_query_via_runner(self):
        seen: list = []
        tool = ExecuteSqlTool(analytics_client(seen=seen), default_query="SELECT COUNT(*) FROM frpair")
        result = await run_tool(tool, {}, timeout=5)
        assert result.success is True
        assert seen[0]["sql"] == "SELECT COUNT(*) FROM frpair"

    async def test_prepare_sql_for_user(self):
        seen: list = []
        statement = "UPDATE frpair SET status = 'C' WHERE acct = '1'"
        result = await PrepareSqlForUserTool(analytics_client(seen=seen)).execute(query=statement)

        assert result.success is True
        assert result.data["approvalButton"] == {"text": "Execute Query", "query": statement}
        assert result.metadata["requiresApproval"] is True
        assert "verified" in result.message
        assert seen == [{"sql": "SELECT * FROM frpair LIMIT 1", "source": "duckdb"}]

    async def test_prepare_sql_rejects_select(self):
        result = await PrepareSqlForUserTool(analytics_client()).execute(query="SELECT 1")
        assert result.success is False

    async def test_approved_sql_runs_modifying_statement(self):
        seen: list = []
        result = await ExecuteUserApprovedSqlTool(analytics_client(rows=[], seen=seen)).execute(
            query="DELETE FROM frpair WHERE acct = '9'"
        )
        assert result.success is True
        assert seen[0]["sql"] == "DELETE FROM frpair WHERE acct = '9'"

    async def test_approved_sql_still_blocks_injection(self):
        result = await ExecuteUserApprovedSqlTool(analytics_client()).execute(
            query="DELETE FROM a; DROP TABLE b"
        )
        assert result.success is False


# ---------------------------------------------------------------------------
# Knowledge-base tools
# ---------------------------------------------------------------------------

class TestKnowledgeTools:
    async def test_direct_lookup_by_id(self):
        result = await LookupKnowledgeBaseTool(sample_knowledge_base()).execute(query="fye", detailed=True)
        assert result.data["type"] == "direct_lookup"
        assert result.data["entry"]["title"] == "Fiscal Year End"

    async def test_search_ranks_exact_index_hits_first(self):
        result = await LookupKnowledgeBaseTool(sample_knowledge_base()).execute(query="status")
        data = result.data
        assert data["type"] == "search_results"
        assert data["results"][0]["id"] == "acct-status"

    async def test_search_falls_back_to_content(self):
        result = await LookupKnowledgeBaseTool(sample_knowledge_base()).execute(query="reconcile holdings")
        assert [r["id"] for r in result.data["results"]] == ["month-end"]

    async def test_wildcard_search(self):
        result = await LookupKnowledgeBaseTool(sample_knowledge_base()).execute(query="fisc*year")
        assert "fye" in [r["id"] for r in result.data["results"]]

    async def test_category_filter(self):
        result = await LookupKnowledgeBaseTool(sample_knowledge_base()).execute(
            query="status", category="procedures"
        )
        assert result.data["type"] == "no_matches"
        assert {c["name"] for c in result.data["availableCategories"]} == {
            "definitions", "procedures", "reference",
        }

    async def test_summary_vs_detailed_content(self):
        kb = sample_knowledge_base()
        summary = await LookupKnowledgeBaseTool(kb).execute(query="schema")
        detailed = await LookupKnowledgeBaseTool(kb).execute(query="schema", detailed=True)
        assert "Database reference containing 3 tables" in summary.data["entry"]["content"]
        assert "**frpsec**" in detailed.data["entry"]["content"]

    async def test_categories(self):
        result = await GetKnowledgeBaseCategoriesTool(sample_knowledge_base()).execute()
        assert [c["displayName"] for c in result.data["categories"]] == [
            "Definitions", "Procedures", "Reference",
        ]

    async def test_browse_by_display_name(self):
        result = await BrowseKnowledgeBaseCategoryTool(sample_knowledge_base()).execute(category="Definitions")
        assert result.data["type"] == "category_browse"
        assert result.data["totalEntries"] == 2

    async def test_browse_unknown_category(self):
        result = await BrowseKnowledgeBaseCategoryTool(sample_knowledge_base()).execute(category="nope")
        assert result.data["type"] == "no_entries"

    async def test_unavailable_knowledge_base(self):
        result = await LookupKnowledgeBaseTool(None).execute(query="x")
        assert result.success is False
        assert result.error == "Knowledge base not available"


# ---------------------------------------------------------------------------
# Control tools
# ---------------------------------------------------------------------------

class TestControlTools:
    async def test_continue(self):
        result = await ContinueAgentTool().execute(reason="need more data")
        assert result.data == {"action": "continue", "reason": "need more data"}

    async def test_complete(self):
        result = await CompleteTaskTool().execute(summary="done", recommendations="none")
        assert result.data["action"] == "complete"
        assert result.data["recommendations"] == "none"


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class TestRunTool:
    async def test_success(self):
        result = await run_tool(EchoTool(), {"message": "hi"}, timeout=1)
        assert result.success is True
        assert result.data == {"echo": "hi"}

    async def test_invalid_arguments(self):
        result = await run_tool(EchoTool(), {}, timeout=1)
        assert result.success is False
        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert result.error.startswith("Invalid arguments:")

    async def test_exception_becomes_data(self):
        result = await run_tool(FailingTool(), {}, timeout=1)
        assert result.success is False
        assert result.error_code == ErrorCode.TOOL_EXCEPTION
        assert result.error == "kaboom"

    async def test_timeout(self):
        tool = SlowTool(delay=5)
        result = await run_tool(tool, {}, timeout=0.05)
        assert result.success is False
        assert result.error_code == ErrorCode.TIMEOUT
        assert result.error == "timed out after 50ms"
        assert tool.cancelled is True

    def test_tool_not_found(self):
        result = tool_not_found("ghost")
        assert result.to_dict() == {
            "success": False,
            "error": "Tool not found",
            "errorCode": "unknown_tool",
            "toolName": "ghost",
        }
