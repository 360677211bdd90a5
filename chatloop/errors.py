"""
Request-level error taxonomy.

Only request-setup validation and stream-open failures are raised as
exceptions.  Anything scoped to a single tool call or stream line is turned
into data (a failed ``ToolResult``) instead.
"""

from __future__ import annotations

from typing import Any

from chatloop.types import ErrorCode


class ChatError(Exception):
    """Base class for errors that unwind to an HTTP-level response."""

    http_status = 500

    def __init__(
        self,
        message: str,
        code: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class MissingInputError(ChatError):
    http_status = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.MISSING_INPUT, details)


class ValidationError(ChatError):
    http_status = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


class UnsupportedProviderError(ChatError):
    http_status = 400

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"Unsupported provider: {provider}",
            ErrorCode.UNSUPPORTED_PROVIDER,
            {"provider": provider},
        )


class ProviderAuthMissingError(ChatError):
    http_status = 401

    def __init__(self, provider: str, env_var: str) -> None:
        super().__init__(
            f"{env_var} not configured",
            ErrorCode.API_KEY_MISSING,
            {"provider": provider},
        )


class ToolNotFoundError(ChatError):
    http_status = 404

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        super().__init__(
            f'Tool "{name}" not found',
            ErrorCode.UNKNOWN_TOOL,
            {"tool": name, "availableTools": available or []},
        )


class ProviderError(ChatError):
    """Non-2xx response (or transport failure) while opening a provider stream."""

    http_status = 502

    def __init__(self, status: int, body: str, provider: str = "") -> None:
        super().__init__(
            f"{provider or 'provider'} API error: HTTP {status}",
            ErrorCode.PROVIDER_ERROR,
            {"status": status, "body": body[:500]},
        )
        self.status = status
        self.body = body
