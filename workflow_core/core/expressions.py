"""Restricted expression evaluator for script and condition nodes.

Caller-supplied code is never executed. The text is parsed with :mod:`ast`
as a single Python expression and walked by a visitor that only understands a
whitelisted set of nodes: literals, named inputs, arithmetic, comparison,
boolean logic, the conditional expression, subscripts, and calls to a few
pure helper functions and string/list/dict methods.

A handful of JavaScript spellings are accepted so that snippets written for
browser-side editors keep working:

- a leading ``return`` and trailing ``;`` are stripped
- ``&&``, ``||``, ``!``, ``===`` and ``!==`` map to ``and``, ``or``,
  ``not``, ``==`` and ``!=``
- ``true``, ``false``, ``null`` and ``undefined`` are predefined names

Anything else (statements, assignments, imports, lambdas, comprehensions,
attribute reads) raises :class:`ExpressionSecurityError`.
"""

import ast
import operator
from typing import Any, Dict, Mapping, Optional

from .exceptions import (
    ExpressionError,
    ExpressionNameError,
    ExpressionSecurityError,
    ExpressionSyntaxError,
)

SAFE_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda x, y: x in y,
    ast.NotIn: lambda x, y: x not in y,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Not: operator.not_,
}

SAFE_FUNCTIONS = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "sum": sum,
    "round": round,
    "any": any,
    "all": all,
    "sorted": sorted,
}

SAFE_METHODS = {
    str: {"lower", "upper", "strip", "lstrip", "rstrip", "split", "startswith", "endswith",
          "replace", "join", "find", "count", "title"},
    list: {"index", "count"},
    tuple: {"index", "count"},
    dict: {"get", "keys", "values", "items"},
}

LITERAL_NAMES = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
}

# Longest first so '===' wins over '==' and '!==' over '!'
_JS_OPERATORS = (
    ("===", "=="),
    ("!==", "!="),
    ("&&", " and "),
    ("||", " or "),
)

MAX_EXPRESSION_LENGTH = 10_000
MAX_POWER_EXPONENT = 1_000


def to_text(value: Any) -> str:
    """String form of a value as used in templates and string concatenation."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def normalize_expression(source: str) -> str:
    """Strip the ``return``/``;`` wrapper and rewrite JavaScript operators outside string literals."""
    text = source.strip()
    if text.startswith("return") and (len(text) == 6 or not (text[6].isalnum() or text[6] == "_")):
        text = text[6:].strip()
    while text.endswith(";"):
        text = text[:-1].rstrip()

    out = []
    quote = None
    i = 0
    while i < len(text):
        char = text[i]
        if quote:
            out.append(char)
            if char == "\\" and i + 1 < len(text):
                out.append(text[i + 1])
                i += 2
                continue
            if char == quote:
                quote = None
            i += 1
            continue
        if char in ("'", '"'):
            quote = char
            out.append(char)
            i += 1
            continue
        for js, py in _JS_OPERATORS:
            if text.startswith(js, i):
                out.append(py)
                i += len(js)
                break
        else:
            if char == "!" and not text.startswith("!=", i):
                out.append(" not ")
            else:
                out.append(char)
            i += 1
    return "".join(out).strip()


class RestrictedEvaluator(ast.NodeVisitor):
    """Walks a parsed expression, evaluating only whitelisted constructs."""

    def __init__(self, names: Mapping[str, Any], expression: str):
        self.names = names
        self.expression = expression

    def visit(self, node: ast.AST) -> Any:
        method = "visit_" + node.__class__.__name__
        visitor = getattr(self, method, self.generic_visit)
        return visitor(node)

    def generic_visit(self, node: ast.AST):
        raise ExpressionSecurityError(
            f"Use of {node.__class__.__name__} is not allowed",
            expression=self.expression
        )

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_List(self, node: ast.List) -> list:
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.visit(elt) for elt in node.elts)

    def visit_Dict(self, node: ast.Dict) -> dict:
        if any(key is None for key in node.keys):
            raise ExpressionSecurityError("Dictionary unpacking is not allowed", expression=self.expression)
        return {self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values)}

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op_func = SAFE_OPERATORS.get(type(node.op))
        if op_func is None:
            raise ExpressionSecurityError(
                f"Operator {type(node.op).__name__} is not allowed",
                expression=self.expression
            )
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Add) and (isinstance(left, str) or isinstance(right, str)):
            return to_text(left) + to_text(right)
        if isinstance(node.op, ast.Pow) and isinstance(right, (int, float)) and abs(right) > MAX_POWER_EXPONENT:
            raise ExpressionSecurityError("Exponent is too large", expression=self.expression)
        return op_func(left, right)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op_func = SAFE_OPERATORS.get(type(node.op))
        if op_func is None:
            raise ExpressionSecurityError(
                f"Operator {type(node.op).__name__} is not allowed",
                expression=self.expression
            )
        return op_func(self.visit(node.operand))

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        # Short-circuits and yields the deciding operand
        value = None
        for operand in node.values:
            value = self.visit(operand)
            if isinstance(node.op, ast.And) and not value:
                return value
            if isinstance(node.op, ast.Or) and value:
                return value
        return value

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            op_func = SAFE_OPERATORS.get(type(op))
            if op_func is None:
                raise ExpressionSecurityError(
                    f"Operator {type(op).__name__} is not allowed",
                    expression=self.expression
                )
            right = self.visit(comparator)
            if not op_func(left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        if self.visit(node.test):
            return self.visit(node.body)
        return self.visit(node.orelse)

    def visit_Name(self, node: ast.Name) -> Any:
        if not isinstance(node.ctx, ast.Load):
            raise ExpressionSecurityError("Only reading names is allowed", expression=self.expression)
        if node.id in self.names:
            return self.names[node.id]
        raise ExpressionNameError(
            f"Name '{node.id}' is not defined (available: {', '.join(sorted(self.names)) or 'none'})",
            expression=self.expression
        )

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        value = self.visit(node.value)
        if isinstance(node.slice, ast.Slice):
            lower = self.visit(node.slice.lower) if node.slice.lower else None
            upper = self.visit(node.slice.upper) if node.slice.upper else None
            step = self.visit(node.slice.step) if node.slice.step else None
            return value[lower:upper:step]
        return value[self.visit(node.slice)]

    def visit_Call(self, node: ast.Call) -> Any:
        if node.keywords:
            raise ExpressionSecurityError("Keyword arguments are not allowed", expression=self.expression)
        if any(isinstance(arg, ast.Starred) for arg in node.args):
            raise ExpressionSecurityError("Argument unpacking is not allowed", expression=self.expression)

        if isinstance(node.func, ast.Name):
            func = SAFE_FUNCTIONS.get(node.func.id)
            if func is None:
                raise ExpressionSecurityError(
                    f"Call to function '{node.func.id}' is not allowed "
                    f"(allowed: {', '.join(sorted(SAFE_FUNCTIONS))})",
                    expression=self.expression
                )
        elif isinstance(node.func, ast.Attribute):
            target = self.visit(node.func.value)
            method_name = node.func.attr
            allowed = SAFE_METHODS.get(type(target), set())
            if method_name.startswith("_") or method_name not in allowed:
                raise ExpressionSecurityError(
                    f"Call to method '{method_name}' on {type(target).__name__} is not allowed",
                    expression=self.expression
                )
            func = getattr(target, method_name)
        else:
            raise ExpressionSecurityError("Only named functions can be called", expression=self.expression)

        args = [self.visit(arg) for arg in node.args]
        return func(*args)


def evaluate(expression: str, names: Optional[Mapping[str, Any]] = None) -> Any:
    """
    Evaluate a restricted expression.

    Args:
        expression: Expression text, optionally wrapped as ``return <expr>;``
        names: Values bound by name (node inputs); they shadow the literal names

    Returns:
        The value of the expression

    Raises:
        ExpressionSyntaxError: If the text is not a single valid expression
        ExpressionSecurityError: If the text uses a construct that is not allowed
        ExpressionNameError: If the text references an unbound name
        ExpressionError: If evaluation fails at runtime (e.g. a type mismatch)

    Example:
        >>> evaluate("return input1 + 1", {"input1": 5})
        6
        >>> evaluate("input1 > 3 && input2 === 'yes'", {"input1": 5, "input2": "yes"})
        True
    """
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ExpressionSecurityError("Expression is too long", expression=expression[:100])

    scope: Dict[str, Any] = dict(LITERAL_NAMES)
    if names:
        scope.update(names)

    source = normalize_expression(expression)
    if not source:
        return None

    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise ExpressionSyntaxError(f"Invalid expression syntax: {e.msg}", expression=expression) from e
    except (RecursionError, MemoryError) as e:
        raise ExpressionError("Expression is too deeply nested", expression=expression[:100]) from e

    try:
        return RestrictedEvaluator(scope, expression).visit(tree)
    except ExpressionError:
        raise
    except (TypeError, ValueError, ZeroDivisionError, KeyError, IndexError, AttributeError, OverflowError) as e:
        raise ExpressionError(f"Evaluation failed: {e}", expression=expression) from e
    except (RecursionError, MemoryError) as e:
        raise ExpressionError("Expression is too deeply nested", expression=expression[:100]) from e
