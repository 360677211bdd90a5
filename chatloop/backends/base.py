"""Shared backend error type."""

from __future__ import annotations


class BackendError(Exception):
    """Structured error from a backend operation."""

    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.code = code
