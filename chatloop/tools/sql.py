"""
SQL tools backed by the remote analytic database.

``execute_sql`` only runs SELECT statements.  Data-modifying statements are
never executed by the model directly: they come back flagged
``requiresApproval`` and go through ``prepare_sql_for_user``, which hands
the statement to the user; ``execute_user_approved_sql`` runs it once the
user has approved.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from chatloop.backends.analytics import AnalyticsClient
from chatloop.backends.base import BackendError
from chatloop.tools.base import Tool, ToolParam
from chatloop.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_QUERY = "SELECT COUNT(*) AS total_accounts FROM FRPAIR"

_DANGEROUS = [
    re.compile(r";\s*(drop|delete|update|insert|create|alter|truncate)"),
    re.compile(r"union\s+select"),
    re.compile(r"/\*.*\*/"),
    re.compile(r"--"),
    re.compile(r"xp_cmdshell"),
    re.compile(r"sp_executesql"),
]

_MODIFYING = re.compile(r"^\s*(update|insert|delete)\s+")
_TABLE = re.compile(r"(?:UPDATE|DELETE\s+FROM|INSERT\s+INTO)\s+(\w+)", re.IGNORECASE)

_TABLES_HELP = (
    "Available Tables: frpagg, frpair, frpctg, frphold, frpindx, frpsec, frpsi1, frptcd, frptran\n\n"
    "Key Tables:\n"
    "- frpair (Accounts): ACCT, NAME, STATUS, ACTIVE, FYE, etc.\n"
    "- frphold (Holdings): AACCT, ADATE, HID, HUNITS, HPRINCIPAL, HACCRUAL, etc.\n"
    "- frpsec (Securities): ID, TICKER, CUSIP, NAMETKR, ASSETTYPE, CURPRICE, etc.\n"
    "- frptran (Transactions): Transaction data\n"
    "- frpindx (Index Data): INDX, IDATE, IPRICE, IINC, IRET"
)


@dataclass
class SqlCheck:
    valid: bool
    requires_approval: bool = False
    error: str | None = None


def check_sql(query: str, select_only: bool = True) -> SqlCheck:
    if not query or not isinstance(query, str):
        return SqlCheck(False, error="Query must be a non-empty string")
    normalized = query.strip().lower()
    if any(p.search(normalized) for p in _DANGEROUS):
        return SqlCheck(False, error="Query contains potentially dangerous patterns")
    if not select_only:
        return SqlCheck(True)
    if _MODIFYING.match(normalized):
        return SqlCheck(False, requires_approval=True, error="Data-modifying query requires approval")
    if not normalized.startswith("select"):
        return SqlCheck(False, error="Only SELECT queries are allowed")
    return SqlCheck(True)


def _query_param(description: str, required: bool = True) -> ToolParam:
    return ToolParam("query", "string", description, required=required)


class ExecuteSqlTool(Tool):
    def __init__(self, client: AnalyticsClient, default_query: str = DEFAULT_QUERY) -> None:
        self._client = client
        self._default_query = default_query

    @property
    def name(self) -> str:
        return "execute_sql"

    @property
    def description(self) -> str:
        return (
            "Execute a SQL SELECT query against the analytic database and return "
            "results. This tool is safe to use and should be used to fulfill user "
            "requests for data.\n\n" + _TABLES_HELP
        )

    @property
    def params(self) -> list[ToolParam]:
        return [
            _query_param(
                "The SQL SELECT query to execute (e.g., 'SELECT * FROM FRPAIR LIMIT 10')",
                required=False,
            ),
            ToolParam("sql", "string", "Alias for query", required=False),
        ]

    @property
    def timeout_class(self) -> str:
        return "sql"

    def apply_defaults(self, arguments: dict) -> dict:
        args = dict(arguments)
        if args.get("sql") and not args.get("query"):
            args["query"] = args["sql"]
        args.pop("sql", None)
        if not args.get("query"):
            args["query"] = self._default_query
        return args

    async def execute(self, query: str) -> ToolResult:
        check = check_sql(query)
        if check.requires_approval:
            return ToolResult(
                success=True,
                message="This query will be prepared for user approval",
                metadata={"requiresApproval": True, "query": query.strip()},
            )
        if not check.valid:
            logger.info("execute_sql rejected query: %s", check.error)
            return ToolResult(success=False, error=check.error, error_code=ErrorCode.VALIDATION_ERROR)

        try:
            rows = await self._client.query(query)
        except BackendError as e:
            return ToolResult(
                success=False,
                error=f"Database error: {e}",
                error_code=ErrorCode.BACKEND_ERROR,
            )
        columns = list(rows[0].keys()) if rows and isinstance(rows[0], dict) else []
        return ToolResult(
            success=True,
            data=rows,
            message=f"Query executed successfully. Retrieved {len(rows)} rows.",
            metadata={"columns": columns, "rowCount": len(rows)},
        )


class PrepareSqlForUserTool(Tool):
    def __init__(self, client: AnalyticsClient) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return "prepare_sql_for_user"

    @property
    def description(self) -> str:
        return (
            "Prepare a data-modifying SQL query (UPDATE, INSERT, or DELETE) and return "
            "it to the user for approval. This tool does not execute the query. Use "
            "single quotes for string literals."
        )

    @property
    def params(self) -> list[ToolParam]:
        return [_query_param("The SQL query to prepare for user approval")]

    @property
    def timeout_class(self) -> str:
        return "sql"

    async def execute(self, query: str) -> ToolResult:
        statement = query.strip()
        if not _MODIFYING.match(statement.lower()):
            return ToolResult(
                success=False,
                error="This tool is only for UPDATE, INSERT, or DELETE operations. "
                      "Use execute_sql for SELECT queries.",
                error_code=ErrorCode.VALIDATION_ERROR,
            )

        verification = ""
        match = _TABLE.search(statement)
        if match:
            table = match.group(1)
            try:
                await self._client.query(f"SELECT * FROM {table} LIMIT 1")
                verification = f"\nTable {table} verified and accessible."
            except BackendError as e:
                verification = f"\nWarning: Could not verify query - {e}"

        return ToolResult(
            success=True,
            data={
                "query": statement,
                "approvalButton": {"text": "Execute Query", "query": statement},
            },
            message=f"Query prepared for approval.{verification}",
            metadata={"requiresApproval": True},
        )


class ExecuteUserApprovedSqlTool(Tool):
    def __init__(self, client: AnalyticsClient) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return "execute_user_approved_sql"

    @property
    def description(self) -> str:
        return (
            "Execute a SQL query that has been approved by the user. Only used when "
            "the user has clicked the approval button."
        )

    @property
    def params(self) -> list[ToolParam]:
        return [_query_param("The user-approved SQL query to execute")]

    @property
    def timeout_class(self) -> str:
        return "sql"

    async def execute(self, query: str) -> ToolResult:
        check = check_sql(query, select_only=False)
        if not check.valid:
            return ToolResult(success=False, error=check.error, error_code=ErrorCode.VALIDATION_ERROR)
        try:
            rows = await self._client.query(query)
        except BackendError as e:
            return ToolResult(
                success=False,
                error=f"Database error: {e}",
                error_code=ErrorCode.BACKEND_ERROR,
            )
        return ToolResult(success=True, data=rows, message="Query executed successfully")
