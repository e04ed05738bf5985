"""Arithmetic expression tool.

Expressions are parsed with ``ast`` and evaluated over a whitelist of
operators and ``math`` functions, so nothing the model writes is ever
passed to ``eval``.
"""

import ast
import math
import operator
from typing import Any

from killer.tools import Tool, ToolContext

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS = {
    "sqrt": math.sqrt,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "log": math.log,
    "log10": math.log10,
    "exp": math.exp,
    "abs": abs,
    "round": round,
    "floor": math.floor,
    "ceil": math.ceil,
}

_CONSTANTS = {
    "pi": math.pi,
    "e": math.e,
}

MAX_EXPONENT = 10_000


class CalculationError(ValueError):
    pass


def _evaluate(node: ast.AST) -> float | int:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _evaluate(node.left)
        right = _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise CalculationError("exponent too large")
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in _FUNCTIONS
        and not node.keywords
    ):
        return _FUNCTIONS[node.func.id](*(_evaluate(arg) for arg in node.args))
    raise CalculationError(f"unsupported expression element: {ast.dump(node)[:60]}")


def calculate(expression: str) -> float | int:
    """Evaluate ``expression``; ``^`` is accepted as exponentiation."""
    try:
        tree = ast.parse(expression.replace("^", "**"), mode="eval")
    except SyntaxError as e:
        raise CalculationError(f"invalid syntax: {e.msg}") from e
    try:
        return _evaluate(tree)
    except (ArithmeticError, TypeError, ValueError) as e:
        if isinstance(e, CalculationError):
            raise
        raise CalculationError(str(e)) from e


def format_number(value: float | int) -> str:
    if isinstance(value, int):
        return str(value)
    if value.is_integer():
        return str(int(value))
    return f"{value:.10f}".rstrip("0").rstrip(".")


class CalculatorTool(Tool):
    name = "calculator"

    def get_definition(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": (
                    "Perform mathematical calculations. Supports basic arithmetic, "
                    "scientific calculations, and mathematical expressions."
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "expression": {
                            "type": "string",
                            "description": (
                                "Mathematical expression to evaluate "
                                "(e.g., '2 + 2', 'sqrt(16)', 'sin(3.14159/2)')"
                            ),
                        },
                    },
                    "required": ["expression"],
                },
            },
        }

    def execute(self, arguments: dict[str, Any], context: ToolContext) -> tuple[int, dict[str, Any]]:
        expression = str(arguments.get("expression", ""))
        try:
            value = calculate(expression)
        except CalculationError as e:
            return 1, {
                "success": False,
                "expression": expression,
                "error": f"Invalid expression or calculation error: {e}",
            }
        return 0, {
            "success": True,
            "expression": expression,
            "result": format_number(value),
        }
