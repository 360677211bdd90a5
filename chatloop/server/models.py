"""Request and response bodies for the HTTP surface."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    role: str = "user"
    content: Any = ""


class ChatRequest(BaseModel):
    """Body of ``POST /chat``.  Either ``prompt`` or ``messages`` is required."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[str] = None
    messages: Optional[list[ChatMessage]] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    user_id: str = Field(default="anonymous", alias="userId")
    enable_loop: Optional[bool] = Field(default=None, alias="enableLoop")
    max_iterations: Optional[int] = Field(default=None, alias="maxIterations", ge=1, le=50)
    tools: Optional[list[str]] = None


class ToolRequest(BaseModel):
    """Body of ``POST /tools``."""

    tool: Optional[str] = None
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResponse(BaseModel):
    success: bool
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    code: Optional[str] = None
    execution_time: int = Field(default=0, alias="executionTime")

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    providers: list[str]
    tools: int
