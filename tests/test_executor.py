"""Tests for the Tool Execution Stage."""

from __future__ import annotations

import asyncio

import pytest

from chatloop.config import ToolsConfig
from chatloop.llm.types import ToolCall
from chatloop.orchestrator.executor import ToolExecutor
from chatloop.tools.arithmetic import EvaluateExpressionTool
from chatloop.tools.registry import ToolRegistry
from chatloop.types import ErrorCode
from tests.mock_tools import EchoTool, FailingTool, RowsTool, SlowTool


@pytest.fixture
def tools_config():
    cfg = ToolsConfig()
    cfg.timeouts["slow"] = 0.05
    return cfg


@pytest.fixture
def registry():
    reg = ToolRegistry()
    reg.register(EchoTool())
    reg.register(FailingTool())
    reg.register(EvaluateExpressionTool())
    reg.register(RowsTool(37))
    reg.register(SlowTool(delay=5))
    return reg


class TestExecute:
    async def test_partial_failure_containment(self, registry, tools_config):
        calls = [
            ToolCall("c1", "echo", {"message": "one"}),
            ToolCall("c2", "evaluate_expression", {"expression": "2+2*3"}),
            ToolCall("c3", "explode", {}),
            ToolCall("c4", "echo", {"message": "four"}),
            ToolCall("c5", "evaluate_expression", {"expression": "10-1"}),
        ]
        outcomes = await ToolExecutor(registry, tools_config).execute(calls)

        assert len(outcomes) == 5
        assert [o.position for o in outcomes] == [0, 1, 2, 3, 4]
        assert [o.success for o in outcomes] == [True, True, False, True, True]
        assert outcomes[2].result.error_code == ErrorCode.TOOL_EXCEPTION
        assert outcomes[0].result.data == {"echo": "one"}
        assert outcomes[1].result.data == {"result": 8}
        assert outcomes[3].result.data == {"echo": "four"}
        assert outcomes[4].result.data == {"result": 9}

    async def test_unknown_tool_outcome(self, registry, tools_config):
        [outcome] = await ToolExecutor(registry, tools_config).execute([ToolCall("c1", "ghost", {"a": 1})])
        assert outcome.success is False
        assert outcome.result.error == "Tool not found"
        assert outcome.arguments == {"a": 1}

    async def test_timeout_does_not_block_siblings(self, registry, tools_config):
        outcomes = await ToolExecutor(registry, tools_config).execute([
            ToolCall("c1", "slow", {}),
            ToolCall("c2", "echo", {"message": "fast"}),
        ])
        assert outcomes[0].result.error_code == ErrorCode.TIMEOUT
        assert outcomes[1].success is True

    async def test_truncated_and_raw_results(self, registry, tools_config):
        [outcome] = await ToolExecutor(registry, tools_config).execute([ToolCall("c1", "rows", {})])
        assert outcome.result.truncated is True
        assert len(outcome.result.data) == 11
        assert len(outcome.raw_result.data) == 37

    async def test_arguments_are_prepared(self, registry, tools_config):
        [outcome] = await ToolExecutor(registry, tools_config).execute([
            ToolCall("c1", "echo", {"message": "hi", "stray": True}),
        ])
        assert outcome.success is True
        assert outcome.arguments == {"message": "hi"}


class TestRun:
    async def test_yields_in_completion_order(self, tools_config):
        reg = ToolRegistry()
        reg.register(SlowTool(delay=0.2))
        reg.register(EchoTool())
        tools_config.timeouts["slow"] = 5
        executor = ToolExecutor(reg, tools_config)

        seen = [o.call.name async for o in executor.run([
            ToolCall("c1", "slow", {}),
            ToolCall("c2", "echo", {"message": "x"}),
        ])]
        assert seen == ["echo", "slow"]

    async def test_closing_run_cancels_pending_tools(self, tools_config):
        slow = SlowTool(delay=5)
        reg = ToolRegistry()
        reg.register(slow)
        reg.register(EchoTool())
        tools_config.timeouts["slow"] = 10
        executor = ToolExecutor(reg, tools_config)

        gen = executor.run([ToolCall("c1", "slow", {}), ToolCall("c2", "echo", {"message": "x"})])
        first = await gen.__anext__()
        assert first.call.name == "echo"
        await gen.aclose()
        await asyncio.sleep(0.05)
        assert slow.cancelled is True

    async def test_cancel_pending(self, tools_config):
        slow = SlowTool(delay=5)
        reg = ToolRegistry()
        reg.register(slow)
        tools_config.timeouts["slow"] = 10
        executor = ToolExecutor(reg, tools_config)

        gen = executor.run([ToolCall("c1", "slow", {})])
        pending = asyncio.ensure_future(gen.__anext__())
        await asyncio.sleep(0.01)
        executor.cancel_pending()
        with pytest.raises(asyncio.CancelledError):
            await pending
        assert slow.cancelled is True
