"""
Restricted expression language for ``expression`` assertions.

Expressions are parsed with ``ast`` and walked by a small interpreter; user
text is never passed to ``eval`` or ``compile``. A single variable, ``result``,
is bound to the execution output. JavaScript-style operators and literals
(``===``, ``&&``, ``!``, ``null``, ``true`` ...) are rewritten to their Python
forms first, so both of these work::

    result.data.items.length > 0 && result.status === "ok"
    len(result["data"]["items"]) > 0 and result["status"] == "ok"

Attribute access reads mapping keys; a missing key yields ``None`` (like an
undefined property) rather than an error.
"""

from __future__ import annotations

import ast
import operator
from typing import Any, Callable, Dict, Iterable, List, Mapping

RESULT_NAME = "result"

# Upper bound on the length of a repeated string or list, e.g. "ab" * n
MAX_REPEAT_LENGTH = 100_000


class ExpressionError(ValueError):
    pass


SAFE_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "len": len,
    "any": any,
    "all": all,
    "min": min,
    "max": max,
    "sum": sum,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "round": round,
    "sorted": sorted,
}

_BINOPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY: Dict[type, Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_CMPS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_JS_WORDS = {"null": "None", "undefined": "None", "true": "True", "false": "False"}
_JS_OPERATORS = (("===", "=="), ("!==", "!="), ("&&", " and "), ("||", " or "))


def js_compat(source: str) -> str:
    """Rewrite JavaScript operators and literals outside string literals."""
    out: List[str] = []
    i = 0
    n = len(source)
    while i < n:
        ch = source[i]

        if ch in ("'", '"'):
            end = i + 1
            while end < n and source[end] != ch:
                end += 2 if source[end] == "\\" else 1
            out.append(source[i:end + 1])
            i = end + 1
            continue

        for js, py in _JS_OPERATORS:
            if source.startswith(js, i):
                out.append(py)
                i += len(js)
                break
        else:
            if ch == "!" and not source.startswith("!=", i):
                out.append(" not ")
                i += 1
            elif ch.isalpha() or ch == "_":
                end = i
                while end < n and (source[end].isalnum() or source[end] == "_"):
                    end += 1
                word = source[i:end]
                after_dot = bool(out) and "".join(out).rstrip().endswith(".")
                out.append(word if after_dot else _JS_WORDS.get(word, word))
                i = end
            else:
                out.append(ch)
                i += 1
    return "".join(out)


class _ExpressionValidator(ast.NodeVisitor):
    ALLOWED_NODES = (
        ast.Expression,
        ast.BoolOp,
        ast.BinOp,
        ast.UnaryOp,
        ast.Compare,
        ast.IfExp,
        ast.Call,
        ast.Name,
        ast.Attribute,
        ast.Load,
        ast.Constant,
        ast.Subscript,
        ast.Slice,
        ast.List,
        ast.Tuple,
        ast.Dict,
    )

    def __init__(self, allowed_names: Iterable[str]) -> None:
        self.allowed_names = set(allowed_names)

    def generic_visit(self, node: ast.AST) -> None:
        if isinstance(node, (ast.cmpop, ast.operator, ast.boolop, ast.unaryop)):
            return
        if not isinstance(node, self.ALLOWED_NODES):
            raise ExpressionError(f"Disallowed expression node: {type(node).__name__}")
        super().generic_visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        if not isinstance(node.func, ast.Name) or node.func.id not in SAFE_FUNCTIONS:
            raise ExpressionError("Only whitelisted helper functions can be called")
        if node.keywords or any(isinstance(arg, ast.Starred) for arg in node.args):
            raise ExpressionError("Keyword and starred arguments are not allowed")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id not in self.allowed_names and node.id not in SAFE_FUNCTIONS:
            raise ExpressionError(f"Unknown variable '{node.id}' in expression")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_"):
            raise ExpressionError(f"Access to '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_BinOp(self, node: ast.BinOp) -> None:
        if type(node.op) not in _BINOPS:
            raise ExpressionError(f"Operator '{type(node.op).__name__}' is not allowed")
        self.generic_visit(node)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> None:
        if type(node.op) not in _UNARY:
            raise ExpressionError(f"Unary op '{type(node.op).__name__}' is not allowed")
        self.generic_visit(node)

    def visit_Compare(self, node: ast.Compare) -> None:
        for op in node.ops:
            if type(op) not in _CMPS:
                raise ExpressionError(f"Comparator '{type(op).__name__}' is not allowed")
        self.generic_visit(node)


def _check_repeat(sequence: Any, count: Any) -> None:
    if not isinstance(sequence, (str, list, tuple)) or not isinstance(count, int) or isinstance(count, bool):
        return
    if len(sequence) * count > MAX_REPEAT_LENGTH:
        raise ExpressionError(f"Repetition result exceeds {MAX_REPEAT_LENGTH} items")


class _Interpreter:
    def __init__(self, names: Mapping[str, Any]) -> None:
        self.names = names

    def eval(self, node: ast.AST) -> Any:
        method = getattr(self, f"_eval_{type(node).__name__}", None)
        if method is None:
            raise ExpressionError(f"Disallowed expression node: {type(node).__name__}")
        return method(node)

    def _eval_Expression(self, node: ast.Expression) -> Any:
        return self.eval(node.body)

    def _eval_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def _eval_Name(self, node: ast.Name) -> Any:
        if node.id in self.names:
            return self.names[node.id]
        if node.id in SAFE_FUNCTIONS:
            return SAFE_FUNCTIONS[node.id]
        raise ExpressionError(f"Unknown variable '{node.id}' in expression")

    def _eval_BoolOp(self, node: ast.BoolOp) -> Any:
        value: Any = None
        for operand in node.values:
            value = self.eval(operand)
            if isinstance(node.op, ast.And) and not value:
                return value
            if isinstance(node.op, ast.Or) and value:
                return value
        return value

    def _eval_UnaryOp(self, node: ast.UnaryOp) -> Any:
        return _UNARY[type(node.op)](self.eval(node.operand))

    def _eval_BinOp(self, node: ast.BinOp) -> Any:
        left, right = self.eval(node.left), self.eval(node.right)
        if isinstance(node.op, ast.Mult):
            _check_repeat(left, right)
            _check_repeat(right, left)
        return _BINOPS[type(node.op)](left, right)

    def _eval_Compare(self, node: ast.Compare) -> bool:
        left = self.eval(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.eval(comparator)
            if not _CMPS[type(op)](left, right):
                return False
            left = right
        return True

    def _eval_IfExp(self, node: ast.IfExp) -> Any:
        return self.eval(node.body) if self.eval(node.test) else self.eval(node.orelse)

    def _eval_Attribute(self, node: ast.Attribute) -> Any:
        value = self.eval(node.value)
        attr = node.attr
        if isinstance(value, Mapping):
            if attr in value:
                return value[attr]
            if attr == "length":
                return len(value)
            return None
        if attr == "length" and isinstance(value, (list, tuple, str)):
            return len(value)
        raise ExpressionError(f"Cannot read property '{attr}' of {_describe(value)}")

    def _eval_Subscript(self, node: ast.Subscript) -> Any:
        value = self.eval(node.value)
        if isinstance(node.slice, ast.Slice):
            if not isinstance(value, (list, tuple, str)):
                raise ExpressionError(f"Cannot slice {_describe(value)}")
            return value[self._eval_Slice(node.slice)]

        key = self.eval(node.slice)
        if isinstance(value, Mapping):
            return value.get(key)
        if isinstance(value, (list, tuple, str)):
            if not isinstance(key, int) or isinstance(key, bool):
                raise ExpressionError(f"Index must be an integer, got {_describe(key)}")
            return value[key] if -len(value) <= key < len(value) else None
        raise ExpressionError(f"Cannot index {_describe(value)}")

    def _eval_Slice(self, node: ast.Slice) -> slice:
        parts = [None if part is None else self.eval(part) for part in (node.lower, node.upper, node.step)]
        return slice(*parts)

    def _eval_List(self, node: ast.List) -> List[Any]:
        return [self.eval(elt) for elt in node.elts]

    def _eval_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.eval(elt) for elt in node.elts)

    def _eval_Dict(self, node: ast.Dict) -> Dict[Any, Any]:
        if any(key is None for key in node.keys):
            raise ExpressionError("Dict unpacking is not allowed")
        return {self.eval(k): self.eval(v) for k, v in zip(node.keys, node.values)}

    def _eval_Call(self, node: ast.Call) -> Any:
        func = self.eval(node.func)
        return func(*[self.eval(arg) for arg in node.args])


def _describe(value: Any) -> str:
    if value is None:
        return "null"
    return type(value).__name__


def parse_expression(source: str) -> ast.Expression:
    """Parse and statically check ``source``; raises ``ExpressionError``."""
    if not isinstance(source, str) or not source.strip():
        raise ExpressionError("Expression is empty")
    try:
        tree = ast.parse(js_compat(source).strip(), mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid assertion syntax: {e.msg}") from e
    _ExpressionValidator({RESULT_NAME}).visit(tree)
    return tree


def check_expression(source: str) -> None:
    parse_expression(source)


def evaluate_expression(source: str, result: Any) -> Any:
    """Evaluate ``source`` with ``result`` bound; raises ``ExpressionError`` on any failure."""
    tree = parse_expression(source)
    try:
        return _Interpreter({RESULT_NAME: result}).eval(tree)
    except ExpressionError:
        raise
    except (TypeError, ValueError, ZeroDivisionError, KeyError, IndexError, OverflowError) as e:
        raise ExpressionError(f"{type(e).__name__}: {e}") from e


__all__ = [
    "ExpressionError",
    "SAFE_FUNCTIONS",
    "check_expression",
    "evaluate_expression",
    "js_compat",
    "parse_expression",
]
