"""
Expression Evaluator - tiny, side-effect-free language for dependency rules.

Condition and quantity expressions stored on a DependencyRule are parsed into
an immutable AST and interpreted against a resource's config. There is no
escape hatch to Python evaluation.

Grammar (lowest to highest precedence):

    coalesce   a ?? b
    or         a || b, a or b
    and        a && b, a and b
    not        !a, not a
    compare    == != < <= > >=
    sum        + -
    term       * / %
    unary      -a
    atom       number, 'string', "string", true, false, null,
               dotted.path, ( expr )

A leading "metadata." or "config." on a path is a root alias and is ignored.

Missing fields evaluate to ABSENT instead of raising:
- ABSENT == null is true
- ordering comparisons and arithmetic on ABSENT (or null) yield ABSENT
- a ?? b yields b when a is ABSENT or null
- ABSENT is falsy
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, DivisionByZero, InvalidOperation
from typing import Any, Union

from archcost.core.errors import ExpressionEvaluationError, ExpressionSyntaxError
from archcost.core.schema import ConditionResult


class _Absent:
    """Sentinel for a field that does not exist in the config."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()

ROOT_ALIASES = ("metadata", "config")

Value = Union[Decimal, str, bool, None, _Absent, Mapping, list]


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class FieldRef:
    path: tuple[str, ...]


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Node


@dataclass(frozen=True)
class Binary:
    op: str
    left: Node
    right: Node


Node = Union[Literal, FieldRef, Unary, Binary]


@dataclass(frozen=True)
class Expression:
    """A parsed expression and the text it came from."""

    source: str
    root: Node | None  # None for an empty expression

    @property
    def is_empty(self) -> bool:
        return self.root is None


# ---------------------------------------------------------------------------
# Tokenizer / parser
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d+)?|\.\d+)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<op>\?\?|\|\||&&|==|!=|<=|>=|[<>!+\-*/%()])
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)
    """,
    re.VERBOSE,
)

_KEYWORD_OPS = {"or": "||", "and": "&&", "not": "!"}
_KEYWORD_LITERALS = {"true": True, "false": False, "null": None}


@dataclass(frozen=True)
class _Token:
    kind: str  # number, string, op, ident, end
    text: str
    pos: int


def _tokenize(source: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_RE.match(source, pos)
        if not match:
            raise ExpressionSyntaxError(
                f"Unexpected character {source[pos]!r} at position {pos}",
                expression=source,
                position=pos,
            )
        kind = match.lastgroup
        text = match.group()
        if kind == "ident" and text in _KEYWORD_OPS:
            tokens.append(_Token("op", _KEYWORD_OPS[text], pos))
        elif kind != "ws":
            tokens.append(_Token(kind, text, pos))
        pos = match.end()
    tokens.append(_Token("end", "", pos))
    return tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    _COMPARE_OPS = ("==", "!=", "<", "<=", ">", ">=")

    def __init__(self, source: str):
        self._source = source
        self._tokens = _tokenize(source)
        self._pos = 0

    def parse(self) -> Node:
        node = self._coalesce()
        token = self._peek()
        if token.kind != "end":
            self._fail(f"Unexpected token {token.text!r}", token)
        return node

    def _peek(self) -> _Token:
        return self._tokens[self._pos]

    def _advance(self) -> _Token:
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def _accept(self, *ops: str) -> str | None:
        token = self._peek()
        if token.kind == "op" and token.text in ops:
            self._pos += 1
            return token.text
        return None

    def _fail(self, message: str, token: _Token) -> None:
        raise ExpressionSyntaxError(
            f"{message} at position {token.pos} in {self._source!r}",
            expression=self._source,
            position=token.pos,
        )

    def _coalesce(self) -> Node:
        node = self._or()
        while self._accept("??"):
            node = Binary("??", node, self._or())
        return node

    def _or(self) -> Node:
        node = self._and()
        while self._accept("||"):
            node = Binary("||", node, self._and())
        return node

    def _and(self) -> Node:
        node = self._not()
        while self._accept("&&"):
            node = Binary("&&", node, self._not())
        return node

    def _not(self) -> Node:
        if self._accept("!"):
            return Unary("!", self._not())
        return self._compare()

    def _compare(self) -> Node:
        node = self._sum()
        op = self._accept(*self._COMPARE_OPS)
        if op:
            node = Binary(op, node, self._sum())
            if self._peek().kind == "op" and self._peek().text in self._COMPARE_OPS:
                self._fail("Chained comparisons are not supported", self._peek())
        return node

    def _sum(self) -> Node:
        node = self._term()
        while True:
            op = self._accept("+", "-")
            if not op:
                return node
            node = Binary(op, node, self._term())

    def _term(self) -> Node:
        node = self._unary()
        while True:
            op = self._accept("*", "/", "%")
            if not op:
                return node
            node = Binary(op, node, self._unary())

    def _unary(self) -> Node:
        if self._accept("-"):
            return Unary("-", self._unary())
        return self._atom()

    def _atom(self) -> Node:
        token = self._advance()
        if token.kind == "number":
            return Literal(Decimal(token.text))
        if token.kind == "string":
            return Literal(_unescape(token.text[1:-1]))
        if token.kind == "ident":
            if token.text in _KEYWORD_LITERALS:
                return Literal(_KEYWORD_LITERALS[token.text])
            parts = tuple(token.text.split("."))
            if len(parts) > 1 and parts[0] in ROOT_ALIASES:
                parts = parts[1:]
            return FieldRef(parts)
        if token.kind == "op" and token.text == "(":
            node = self._coalesce()
            if not self._accept(")"):
                self._fail("Expected ')'", self._peek())
            return node
        if token.kind == "end":
            self._fail("Unexpected end of expression", token)
        self._fail(f"Unexpected token {token.text!r}", token)
        raise AssertionError("unreachable")


def _unescape(text: str) -> str:
    return re.sub(r"\\(.)", r"\1", text)


def parse_expression(source: str | None) -> Expression:
    """Parse expression text. Empty or blank text gives an empty Expression."""
    text = (source or "").strip()
    if not text:
        return Expression(source=text, root=None)
    return Expression(source=text, root=_Parser(text).parse())


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, Decimal) and not isinstance(value, bool)


def _is_missing(value: Any) -> bool:
    return value is ABSENT or value is None


def truthy(value: Any) -> bool:
    if _is_missing(value):
        return False
    if isinstance(value, bool):
        return value
    if _is_number(value):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return bool(value)


def _coerce_config_value(value: Any) -> Any:
    """Normalize a raw config value to the evaluator's value domain."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    return value


class ExpressionEvaluator:
    """
    Evaluate rule expressions against a resource config.

    Parsed expressions are cached per evaluator; the cache only ever holds
    immutable ASTs, so one evaluator can be shared across worker threads.
    """

    def __init__(self) -> None:
        self._cache: dict[str, Expression] = {}

    def parse(self, source: str | None) -> Expression:
        key = (source or "").strip()
        cached = self._cache.get(key)
        if cached is None:
            cached = parse_expression(key)
            self._cache[key] = cached
        return cached

    def evaluate(self, expression: str | Expression | None, config: Mapping[str, Any]) -> Value:
        """Evaluate to a raw value. An empty expression yields ABSENT."""
        expr = expression if isinstance(expression, Expression) else self.parse(expression)
        if expr.root is None:
            return ABSENT
        try:
            return self._eval(expr.root, config or {})
        except (InvalidOperation, DivisionByZero) as e:
            raise ExpressionEvaluationError(
                f"Arithmetic error in {expr.source!r}: {e}", expression=expr.source
            ) from e
        except ExpressionEvaluationError as e:
            if e.expression is None:
                e.expression = expr.source
            raise

    def evaluate_condition(
        self, expression: str | Expression | None, config: Mapping[str, Any]
    ) -> ConditionResult:
        """
        Evaluate a condition. Empty conditions are always true.

        Only the boolean true fires; ABSENT is reported separately so callers
        can tell a missing field from an explicit false.
        """
        expr = expression if isinstance(expression, Expression) else self.parse(expression)
        if expr.is_empty:
            return ConditionResult.TRUE
        value = self.evaluate(expr, config)
        if value is True:
            return ConditionResult.TRUE
        if value is ABSENT:
            return ConditionResult.ABSENT
        return ConditionResult.FALSE

    def evaluate_quantity(
        self, expression: str | Expression | None, config: Mapping[str, Any]
    ) -> Decimal | _Absent:
        """Evaluate a quantity. Returns ABSENT when it cannot be determined."""
        expr = expression if isinstance(expression, Expression) else self.parse(expression)
        value = self.evaluate(expr, config)
        if _is_missing(value):
            return ABSENT
        if isinstance(value, str):
            try:
                value = Decimal(value.strip())
            except InvalidOperation:
                raise ExpressionEvaluationError(
                    f"Quantity {value!r} from {expr.source!r} is not numeric",
                    expression=expr.source,
                ) from None
        if not _is_number(value) or not value.is_finite():
            raise ExpressionEvaluationError(
                f"Quantity from {expr.source!r} is not numeric: {value!r}",
                expression=expr.source,
            )
        if value < 0:
            raise ExpressionEvaluationError(
                f"Quantity from {expr.source!r} is negative: {value}",
                expression=expr.source,
            )
        return value

    def _eval(self, node: Node, config: Mapping[str, Any]) -> Value:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, FieldRef):
            return self._lookup(node.path, config)
        if isinstance(node, Unary):
            return self._eval_unary(node, config)
        if isinstance(node, Binary):
            return self._eval_binary(node, config)
        raise ExpressionEvaluationError(f"Unknown node {node!r}")

    @staticmethod
    def _lookup(path: tuple[str, ...], config: Mapping[str, Any]) -> Value:
        current: Any = config
        for part in path:
            if not isinstance(current, Mapping) or part not in current:
                return ABSENT
            current = current[part]
        return _coerce_config_value(current)

    def _eval_unary(self, node: Unary, config: Mapping[str, Any]) -> Value:
        value = self._eval(node.operand, config)
        if node.op == "!":
            return not truthy(value)
        # unary minus
        if _is_missing(value):
            return ABSENT
        if not _is_number(value):
            raise ExpressionEvaluationError(f"Cannot negate {value!r}")
        return -value

    def _eval_binary(self, node: Binary, config: Mapping[str, Any]) -> Value:
        op = node.op
        left = self._eval(node.left, config)

        # Short-circuiting operators
        if op == "??":
            return self._eval(node.right, config) if _is_missing(left) else left
        if op == "||":
            return True if truthy(left) else truthy(self._eval(node.right, config))
        if op == "&&":
            return truthy(self._eval(node.right, config)) if truthy(left) else False

        right = self._eval(node.right, config)
        if op == "==":
            return _equals(left, right)
        if op == "!=":
            return not _equals(left, right)
        if op in ("<", "<=", ">", ">="):
            return _compare(op, left, right)
        return _arithmetic(op, left, right)


def _equals(left: Any, right: Any) -> bool:
    if left is ABSENT or right is ABSENT:
        other = right if left is ABSENT else left
        return other is ABSENT or other is None
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def _compare(op: str, left: Any, right: Any) -> Value:
    if _is_missing(left) or _is_missing(right):
        return ABSENT
    comparable = (_is_number(left) and _is_number(right)) or (
        isinstance(left, str) and isinstance(right, str)
    )
    if not comparable:
        raise ExpressionEvaluationError(f"Cannot compare {left!r} {op} {right!r}")
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


def _arithmetic(op: str, left: Any, right: Any) -> Value:
    if _is_missing(left) or _is_missing(right):
        return ABSENT
    if op == "+" and isinstance(left, str) and isinstance(right, str):
        return left + right
    if not (_is_number(left) and _is_number(right)):
        raise ExpressionEvaluationError(f"Cannot apply {op!r} to {left!r} and {right!r}")
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if right == 0:
        raise ExpressionEvaluationError(f"Division by zero: {left} {op} {right}")
    if op == "/":
        return left / right
    return left % right
