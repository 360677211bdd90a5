"""evaluate_expression: numeric arithmetic over a restricted expression grammar."""

from __future__ import annotations

import ast
import math
import operator
import statistics

from chatloop.tools.base import Tool, ToolParam
from chatloop.types import ErrorCode, ToolResult

_BINOPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARYOPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS = {
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
    "sqrt": math.sqrt,
    "log": math.log,
    "log10": math.log10,
    "exp": math.exp,
    "floor": math.floor,
    "ceil": math.ceil,
    "mean": lambda *xs: statistics.mean(xs),
    "variance": lambda *xs: statistics.variance(xs),
}

_CONSTANTS = {"pi": math.pi, "e": math.e}

_MAX_EXPONENT = 1000
# Bound on integer results, below the int-to-str digit limit.
_MAX_RESULT_BITS = 10_000


def evaluate(expression: str) -> int | float:
    """Evaluate *expression*; raises ``ValueError`` for anything non-arithmetic."""
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as exc:
        raise ValueError(f"Invalid expression: {exc.msg}") from exc
    return _eval(tree.body)


def _check_size(op: ast.operator, left, right) -> None:
    """Reject integer operations whose result would exceed ``_MAX_RESULT_BITS``."""
    if isinstance(op, ast.Pow):
        if abs(right) > _MAX_EXPONENT:
            raise ValueError("Exponent too large")
        if isinstance(left, int) and isinstance(right, int) and right > 0 \
                and abs(left).bit_length() * right > _MAX_RESULT_BITS:
            raise ValueError("Result too large")
    elif isinstance(op, ast.Mult) and isinstance(left, int) and isinstance(right, int):
        if abs(left).bit_length() + abs(right).bit_length() > _MAX_RESULT_BITS:
            raise ValueError("Result too large")


def _eval(node: ast.AST) -> int | float:
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) \
            and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINOPS:
        left, right = _eval(node.left), _eval(node.right)
        _check_size(node.op, left, right)
        return _BINOPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARYOPS:
        return _UNARYOPS[type(node.op)](_eval(node.operand))
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) \
            and node.func.id in _FUNCTIONS and not node.keywords:
        return _FUNCTIONS[node.func.id](*(_eval(a) for a in node.args))
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


class EvaluateExpressionTool(Tool):
    @property
    def name(self) -> str:
        return "evaluate_expression"

    @property
    def description(self) -> str:
        return "Evaluate a numeric arithmetic expression"

    @property
    def params(self) -> list[ToolParam]:
        return [ToolParam("expression", "string", "Arithmetic expression, e.g. '2+2*3'")]

    async def execute(self, expression: str) -> ToolResult:
        try:
            result = evaluate(expression)
        except (ValueError, ZeroDivisionError, OverflowError, TypeError,
                statistics.StatisticsError) as exc:
            return ToolResult(
                success=False,
                error=str(exc),
                error_code=ErrorCode.VALIDATION_ERROR,
            )
        return ToolResult(success=True, data={"result": result})
