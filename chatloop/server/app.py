"""
HTTP surface for the conversation loop.

Routes:

- ``POST /chat``   run a conversation loop, streamed back as SSE frames
- ``POST /tools``  invoke one tool directly (testing and administration)
- ``GET  /tools``  list registered tools with their parameter schemas
- ``GET  /health`` liveness probe

Request-setup failures (missing input, unknown provider, missing
credentials) are raised as ``ChatError`` before any stream is opened and
rendered as JSON with the error's HTTP status.  Once the SSE stream has
started, failures travel inside the stream as ``error`` frames and the
stream always ends with a ``done`` frame.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import aclosing, asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Callable, Iterable

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from chatloop import __version__
from chatloop.config import ChatloopConfig, load_config
from chatloop.errors import ChatError, MissingInputError, ValidationError
from chatloop.llm.models import SUPPORTED_PROVIDERS
from chatloop.llm.router import LLMRouter, ProviderFactory
from chatloop.llm.types import ROLE_USER, Message
from chatloop.orchestrator.events import ConversationIdEvent
from chatloop.orchestrator.loop import ConversationLoop
from chatloop.prompts.system import build_system_prompt
from chatloop.server.models import ChatRequest, HealthResponse, ToolRequest, ToolResponse
from chatloop.server.sse import SSE_HEADERS, encode_event
from chatloop.session.store import ConversationStore
from chatloop.tools.registry import ToolRegistry, build_registry
from chatloop.tools.runner import run_tool
from chatloop.tools.validation import ToolValidator

logger = logging.getLogger(__name__)

RegistryFactory = Callable[[Iterable[str] | None], ToolRegistry]


def request_messages(body: ChatRequest) -> list[Message]:
    """Build the initial history from ``messages`` or, failing that, ``prompt``."""
    if body.messages:
        messages = [Message.from_dict(m.model_dump()) for m in body.messages]
        if any(m.content.strip() for m in messages):
            return messages
    if body.prompt and body.prompt.strip():
        return [Message(role=ROLE_USER, content=body.prompt)]
    raise MissingInputError("Either prompt or messages is required")


def create_app(
    config: ChatloopConfig | None = None,
    *,
    store: ConversationStore | None = None,
    provider_factory: ProviderFactory | None = None,
    registry_factory: RegistryFactory | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Parameters
    ----------
    config : ChatloopConfig | None
        Loaded configuration; ``load_config()`` defaults when omitted.
    store : ConversationStore | None
        Persistence collaborator.  Initialised and closed by the app lifespan.
    provider_factory : ProviderFactory | None
        ``(provider, model) -> ResolvedProvider``; an ``LLMRouter`` by default.
    registry_factory : RegistryFactory | None
        ``(allowed) -> ToolRegistry``, called once per request.
    """
    cfg = config or load_config()
    conversation_store = store or ConversationStore(cfg.store.db_path)
    resolve_provider = provider_factory or LLMRouter(cfg.providers)
    make_registry = registry_factory or (lambda allowed: build_registry(cfg, allowed))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting chatloop server (default provider=%s)", cfg.providers.default_provider)
        await conversation_store.init()
        yield
        logger.info("Shutting down chatloop server")
        await conversation_store.close()

    app = FastAPI(title="chatloop", version=__version__, lifespan=lifespan)
    app.state.config = cfg
    app.state.store = conversation_store

    # ------------------------------------------------------------------
    # Error rendering
    # ------------------------------------------------------------------

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
        logger.warning("%s %s -> %d %s", request.method, request.url.path, exc.http_status, exc.code)
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        err = ValidationError("Invalid request body", {"errors": exc.errors()})
        return JSONResponse(status_code=err.http_status, content=jsonable_encoder(err.to_dict(), custom_encoder={Exception: str}))

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(
            version=__version__,
            providers=list(SUPPORTED_PROVIDERS),
            tools=len(make_registry(None)),
        )

    @app.get("/tools")
    async def list_tools() -> dict:
        registry = make_registry(None)
        return {"tools": registry.describe(), "count": len(registry)}

    @app.post("/tools", response_model=ToolResponse, response_model_exclude_none=True)
    async def invoke_tool(body: ToolRequest) -> ToolResponse:
        if not body.tool:
            raise MissingInputError("tool is required")
        registry = make_registry(None)
        tool = registry.require(body.tool)

        ok, err = ToolValidator.validate(tool, tool.prepare_arguments(body.arguments))
        if not ok:
            raise ValidationError(
                f"Invalid arguments for {tool.name}: {err}",
                {"tool": tool.name, "expectedSchema": tool.input_schema()},
            )

        start = time.monotonic()
        result = await run_tool(tool, body.arguments, cfg.tools.timeout_for(tool.timeout_class))
        elapsed = int((time.monotonic() - start) * 1000)
        if result.success:
            return ToolResponse(success=True, result=result.to_dict(), execution_time=elapsed)
        return ToolResponse(
            success=False,
            error=result.error,
            code=result.error_code,
            execution_time=elapsed,
        )

    @app.post("/chat")
    async def chat(body: ChatRequest, request: Request) -> StreamingResponse:
        messages = request_messages(body)
        resolved = resolve_provider(body.provider, body.model)
        registry = make_registry(body.tools)

        enable_loop = cfg.loop.enable_loop_default if body.enable_loop is None else body.enable_loop
        max_iterations = body.max_iterations or cfg.loop.max_iterations
        conversation_id = await _open_conversation(body, resolved.provider.name, messages)

        loop = ConversationLoop(
            resolved.provider,
            registry,
            model=resolved.model,
            system_prompt=build_system_prompt(registry, enable_loop, max_iterations),
            loop_config=cfg.loop,
            tools_config=cfg.tools,
            max_iterations=max_iterations,
            enable_loop=enable_loop,
            store=conversation_store,
            conversation_id=conversation_id,
        )

        async def frames() -> AsyncIterator[str]:
            yield encode_event(ConversationIdEvent(conversation_id))
            async with aclosing(loop.run(messages)) as events:
                async for event in events:
                    if await request.is_disconnected():
                        logger.info("Client disconnected from conversation %s", conversation_id)
                        break
                    yield encode_event(event)

        return StreamingResponse(frames(), media_type="text/event-stream", headers=SSE_HEADERS)

    async def _open_conversation(body: ChatRequest, provider: str, messages: list[Message]) -> str:
        try:
            conversation_id = await conversation_store.create_or_get_conversation(
                body.conversation_id, body.user_id, provider
            )
            await conversation_store.save_message(conversation_id, ROLE_USER, messages[-1].content)
        except Exception:
            logger.exception("Failed to record conversation; continuing without persistence")
            return body.conversation_id or str(uuid.uuid4())
        return conversation_id

    return app
