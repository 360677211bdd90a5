from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolResult:
    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    message: str = ""
    truncated: bool = False
    context_summary: str | None = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success}
        if self.success:
            d["data"] = self.data
        else:
            d["error"] = self.error
            if self.error_code:
                d["errorCode"] = self.error_code
        if self.message:
            d["message"] = self.message
        if self.truncated:
            d["truncated"] = True
            d["contextSummary"] = self.context_summary
        d.update(self.metadata)
        return d


class ErrorCode:
    MISSING_INPUT = "missing_input"
    API_KEY_MISSING = "api_key_missing"
    UNSUPPORTED_PROVIDER = "unsupported_provider"
    VALIDATION_ERROR = "validation_error"
    PROVIDER_ERROR = "provider_error"
    UNKNOWN_TOOL = "unknown_tool"
    TOOL_EXCEPTION = "tool_exception"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    BATCH_PARTIAL_FAILURE = "batch_partial_failure"
    RECURSIVE_BATCH = "recursive_batch"
    BACKEND_ERROR = "backend_error"
