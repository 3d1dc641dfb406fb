"""Restricted expression evaluation for branch conditions.

Branch expressions such as ``data.plan == "pro" && data.seats > 10`` are
parsed with :mod:`ast` and interpreted by walking a whitelist of node types.
Nothing is compiled or executed: there is no attribute access on arbitrary
objects, no imports, no lambdas or comprehensions, and only a handful of pure
builtins may be called. Anything outside the whitelist raises
:class:`~litestar_flows.exceptions.ExpressionError`.

The JavaScript spellings ``&&``, ``||``, ``!``, ``===``, ``!==``, ``true``,
``false`` and ``null`` are accepted alongside the Python ones, as is
``.length`` on lists and strings.
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Callable, Mapping
from functools import lru_cache
from typing import Any

from litestar_flows.exceptions import ExpressionError

__all__ = ["DEFAULT_MAX_LENGTH", "MAX_DEPTH", "MAX_SEQUENCE_LENGTH", "evaluate_expression", "safe_eval", "safe_eval_bool"]

DEFAULT_MAX_LENGTH = 1000
MAX_DEPTH = 64
MAX_SEQUENCE_LENGTH = 10_000

_JS_TOKENS = re.compile(r"(\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*')|(===|!==|&&|\|\||!(?!=))")
_JS_REPLACEMENTS = {"===": "==", "!==": "!=", "&&": " and ", "||": " or ", "!": " not "}

_CONSTANTS: dict[str, Any] = {"True": True, "False": False, "None": None, "true": True, "false": False, "null": None}

_SAFE_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
}

_BINARY_OPERATORS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_UNARY_OPERATORS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_COMPARISONS: dict[type[ast.cmpop], Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


def _translate(source: str) -> str:
    """Rewrite JavaScript operators to Python ones, leaving string literals untouched."""

    def replace(match: re.Match[str]) -> str:
        if match.group(1):
            return match.group(1)
        return _JS_REPLACEMENTS[match.group(2)]

    return _JS_TOKENS.sub(replace, source).strip()


@lru_cache(maxsize=256)
def _parse(source: str) -> ast.Expression:
    try:
        return ast.parse(_translate(source), mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(source, f"syntax error: {exc.msg}") from exc
    except (RecursionError, MemoryError) as exc:
        raise ExpressionError(source, "expression is nested too deeply") from exc


class _Evaluator:
    """Interprets a whitelisted expression tree against a set of names."""

    def __init__(self, source: str, names: Mapping[str, Any]) -> None:
        self.source = source
        self.names = names
        self.depth = 0

    def fail(self, reason: str) -> ExpressionError:
        return ExpressionError(self.source, reason)

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise self.fail(f"'{type(node).__name__}' is not allowed")
        if self.depth >= MAX_DEPTH:
            raise self.fail(f"expression is nested deeper than {MAX_DEPTH} levels")
        self.depth += 1
        try:
            return method(node)
        finally:
            self.depth -= 1

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.names:
            return self.names[node.id]
        if node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        raise self.fail(f"unknown name '{node.id}'")

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        if node.attr.startswith("_"):
            raise self.fail(f"access to '{node.attr}' is not allowed")
        value = self.visit(node.value)
        if isinstance(value, Mapping):
            return value.get(node.attr)
        if node.attr == "length" and isinstance(value, (str, list, tuple)):
            return len(value)
        if value is None:
            return None
        raise self.fail(f"attribute '{node.attr}' is only available on mappings")

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        value = self.visit(node.value)
        key = self.visit(node.slice)
        if isinstance(value, Mapping):
            return value.get(key)
        if isinstance(value, (str, list, tuple)) and isinstance(key, int) and not isinstance(key, bool):
            return value[key] if -len(value) <= key < len(value) else None
        if value is None:
            return None
        raise self.fail("subscripts are only available on mappings and sequences")

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        result: Any = None
        if isinstance(node.op, ast.And):
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op = _UNARY_OPERATORS.get(type(node.op))
        if op is None:
            raise self.fail(f"operator '{type(node.op).__name__}' is not allowed")
        return op(self.visit(node.operand))

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op = _BINARY_OPERATORS.get(type(node.op))
        if op is None:
            raise self.fail(f"operator '{type(node.op).__name__}' is not allowed")
        left = self.visit(node.left)
        right = self.visit(node.right)
        numbers = isinstance(left, (int, float)) and isinstance(right, (int, float))
        if isinstance(node.op, ast.Mult) and not numbers:
            raise self.fail("multiplication is only allowed between numbers")
        if isinstance(node.op, ast.Mod) and not numbers:
            raise self.fail("modulo is only allowed between numbers")
        if isinstance(node.op, ast.Add) and not numbers:
            sizes = [len(value) for value in (left, right) if isinstance(value, (str, list, tuple))]
            if sum(sizes) > MAX_SEQUENCE_LENGTH:
                raise self.fail(f"concatenation longer than {MAX_SEQUENCE_LENGTH} items")
        return op(left, right)

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for cmp_op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if not _COMPARISONS[type(cmp_op)](left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_List(self, node: ast.List) -> list[Any]:
        return [self.visit(element) for element in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple[Any, ...]:
        return tuple(self.visit(element) for element in node.elts)

    def visit_Dict(self, node: ast.Dict) -> dict[Any, Any]:
        if any(key is None for key in node.keys):
            raise self.fail("dict unpacking is not allowed")
        return {self.visit(key): self.visit(value) for key, value in zip(node.keys, node.values)}  # type: ignore[arg-type]

    def visit_Call(self, node: ast.Call) -> Any:
        if not isinstance(node.func, ast.Name) or node.func.id not in _SAFE_FUNCTIONS:
            raise self.fail("only len, str, int, float, bool, abs, min and max may be called")
        if node.keywords:
            raise self.fail("keyword arguments are not allowed")
        return _SAFE_FUNCTIONS[node.func.id](*(self.visit(arg) for arg in node.args))


def safe_eval(expression: str, names: Mapping[str, Any], max_length: int = DEFAULT_MAX_LENGTH) -> Any:
    """Evaluate a restricted expression.

    Args:
        expression: Expression source.
        names: Names the expression may reference.
        max_length: Longest accepted source, in characters.

    Returns:
        The value of the expression.

    Raises:
        ExpressionError: If the expression is too long, does not parse, uses a
            forbidden construct, or fails while evaluating (e.g. comparing
            ``None`` with a number or overflowing a float conversion).
    """
    if len(expression) > max_length:
        raise ExpressionError(expression[:50], f"expression longer than {max_length} characters")
    tree = _parse(expression)
    try:
        return _Evaluator(expression, names).visit(tree)
    except ExpressionError:
        raise
    except (TypeError, ValueError, ArithmeticError, KeyError, RecursionError, MemoryError) as exc:
        raise ExpressionError(expression, f"{type(exc).__name__}: {exc}") from exc


def safe_eval_bool(expression: str, names: Mapping[str, Any], max_length: int = DEFAULT_MAX_LENGTH) -> bool:
    """Evaluate a restricted expression and coerce the result to ``bool``."""
    return bool(safe_eval(expression, names, max_length=max_length))


def evaluate_expression(expression: str, data: Mapping[str, Any], max_length: int = DEFAULT_MAX_LENGTH) -> bool:
    """Evaluate a branch expression with ``data`` bound to the instance data.

    Example:
        >>> evaluate_expression("data.plan === 'pro' && data.seats > 10", {"plan": "pro", "seats": 12})
        True
    """
    return safe_eval_bool(expression, {"data": data}, max_length=max_length)
