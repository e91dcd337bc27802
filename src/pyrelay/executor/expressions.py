"""
Restricted expression language for conditions and transforms.

Workflow authors write small JavaScript-flavoured expressions such as
``status == "ok" && retries < 3``. They are parsed here by a tokenizer and
a recursive-descent parser into a tiny AST, then evaluated with JavaScript
value semantics (truthiness, loose/strict equality, ``+`` concatenation).
Nothing is ever handed to ``eval``: there are no calls, no subscripts, and
identifiers can only read variables through the supplied lookup function.

Grammar (lowest precedence first):
    or        := and (("||" | "or") and)*
    and       := equality (("&&" | "and") equality)*
    equality  := relation (("==" | "!=" | "===" | "!==") relation)*
    relation  := additive (("<" | "<=" | ">" | ">=") additive)*
    additive  := term (("+" | "-") term)*
    term      := unary (("*" | "/" | "%") unary)*
    unary     := ("!" | "not" | "-" | "+") unary | primary
    primary   := number | string | true | false | null | undefined
               | identifier ("." segment)* | "(" or ")"
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pyrelay.executor.variables import UNDEFINED, stringify

Lookup = Callable[[str], Any]

_OPERATORS = (
    "===",
    "!==",
    "==",
    "!=",
    "<=",
    ">=",
    "&&",
    "||",
    "<",
    ">",
    "!",
    "+",
    "-",
    "*",
    "/",
    "%",
    "(",
    ")",
)

_KEYWORD_LITERALS = {"true": True, "false": False, "null": None, "undefined": UNDEFINED}
_WORD_OPERATORS = {"and": "&&", "or": "||", "not": "!"}
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"', "0": "\0"}


class ExpressionError(Exception):
    """Expression could not be parsed or evaluated."""

    pass


# ============================================================================
# AST
# ============================================================================


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Name:
    path: str


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Expr


@dataclass(frozen=True)
class Binary:
    op: str
    left: Expr
    right: Expr


Expr = Literal | Name | Unary | Binary


# ============================================================================
# Tokenizer
# ============================================================================


@dataclass(frozen=True)
class _Token:
    kind: str  # "number" | "string" | "name" | "op" | "literal" | "eof"
    value: Any
    pos: int


def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch in "_$"


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


def tokenize(source: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    n = len(source)

    while i < n:
        ch = source[i]

        if ch.isspace():
            i += 1
            continue

        if ch.isdigit() or (ch == "." and i + 1 < n and source[i + 1].isdigit()):
            start = i
            while i < n and source[i].isdigit():
                i += 1
            is_float = False
            if i < n and source[i] == "." and (i + 1 >= n or not _is_ident_start(source[i + 1])):
                is_float = True
                i += 1
                while i < n and source[i].isdigit():
                    i += 1
            if i < n and source[i] in "eE":
                j = i + 1
                if j < n and source[j] in "+-":
                    j += 1
                if j < n and source[j].isdigit():
                    is_float = True
                    i = j
                    while i < n and source[i].isdigit():
                        i += 1
            text = source[start:i]
            tokens.append(_Token("number", float(text) if is_float else int(text), start))
            continue

        if ch in "'\"":
            start = i
            quote = ch
            i += 1
            chars: list[str] = []
            while True:
                if i >= n:
                    raise ExpressionError(f"Unterminated string at position {start}")
                c = source[i]
                if c == quote:
                    i += 1
                    break
                if c == "\\":
                    if i + 1 >= n:
                        raise ExpressionError(f"Unterminated string at position {start}")
                    chars.append(_ESCAPES.get(source[i + 1], source[i + 1]))
                    i += 2
                    continue
                chars.append(c)
                i += 1
            tokens.append(_Token("string", "".join(chars), start))
            continue

        if _is_ident_start(ch):
            start = i
            while i < n and _is_ident_char(source[i]):
                i += 1
            # Dotted path: a.b.0.c
            while i + 1 < n and source[i] == "." and _is_ident_char(source[i + 1]):
                i += 1
                while i < n and _is_ident_char(source[i]):
                    i += 1
            word = source[start:i]
            if word in _KEYWORD_LITERALS:
                tokens.append(_Token("literal", _KEYWORD_LITERALS[word], start))
            elif word in _WORD_OPERATORS:
                tokens.append(_Token("op", _WORD_OPERATORS[word], start))
            else:
                tokens.append(_Token("name", word, start))
            continue

        for op in _OPERATORS:
            if source.startswith(op, i):
                tokens.append(_Token("op", op, i))
                i += len(op)
                break
        else:
            raise ExpressionError(f"Unexpected character {ch!r} at position {i}")

    tokens.append(_Token("eof", None, n))
    return tokens


# ============================================================================
# Parser
# ============================================================================

_BINARY_LEVELS: tuple[tuple[str, ...], ...] = (
    ("||",),
    ("&&",),
    ("==", "!=", "===", "!=="),
    ("<", "<=", ">", ">="),
    ("+", "-"),
    ("*", "/", "%"),
)


class _Parser:
    def __init__(self, tokens: list[_Token], max_depth: int):
        self._tokens = tokens
        self._pos = 0
        self._max_depth = max_depth
        self._depth = 0

    def parse(self) -> Expr:
        expr = self._binary(0)
        token = self._peek()
        if token.kind != "eof":
            raise ExpressionError(f"Unexpected token {token.value!r} at position {token.pos}")
        return expr

    def _peek(self) -> _Token:
        return self._tokens[self._pos]

    def _advance(self) -> _Token:
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def _enter(self) -> None:
        self._depth += 1
        if self._depth > self._max_depth:
            raise ExpressionError(f"Expression nested deeper than {self._max_depth} levels")

    def _binary(self, level: int) -> Expr:
        if level == len(_BINARY_LEVELS):
            return self._unary()

        operators = _BINARY_LEVELS[level]
        left = self._binary(level + 1)
        chain = 0
        while self._peek().kind == "op" and self._peek().value in operators:
            op = self._advance().value
            right = self._binary(level + 1)
            left = Binary(op, left, right)
            chain += 1
            if chain + self._depth > self._max_depth:
                raise ExpressionError(f"Expression nested deeper than {self._max_depth} levels")
        return left

    def _unary(self) -> Expr:
        token = self._peek()
        if token.kind == "op" and token.value in ("!", "-", "+"):
            self._advance()
            self._enter()
            operand = self._unary()
            self._depth -= 1
            return Unary(token.value, operand)
        return self._primary()

    def _primary(self) -> Expr:
        token = self._advance()
        if token.kind in ("number", "string", "literal"):
            return Literal(token.value)
        if token.kind == "name":
            return Name(token.value)
        if token.kind == "op" and token.value == "(":
            self._enter()
            expr = self._binary(0)
            self._depth -= 1
            closing = self._advance()
            if closing.kind != "op" or closing.value != ")":
                raise ExpressionError(f"Expected ')' at position {closing.pos}")
            return expr
        if token.kind == "eof":
            raise ExpressionError("Unexpected end of expression")
        raise ExpressionError(f"Unexpected token {token.value!r} at position {token.pos}")


def parse(source: str, max_length: int = 2048, max_depth: int = 64) -> Expr:
    """Parse an expression.

    Raises:
        ExpressionError: On syntax errors, or when the source exceeds the
            length or nesting limits
    """
    if not isinstance(source, str):
        raise ExpressionError(f"Expression must be a string, got {type(source).__name__}")
    if len(source) > max_length:
        raise ExpressionError(f"Expression longer than {max_length} characters")
    if not source.strip():
        raise ExpressionError("Empty expression")
    return _Parser(tokenize(source), max_depth).parse()


# ============================================================================
# JavaScript value semantics
# ============================================================================


def truthy(value: Any) -> bool:
    """JavaScript truthiness."""
    if value is None or value is UNDEFINED or value is False:
        return False
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, float)):
        return not (value == 0 or math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def to_number(value: Any) -> float | int:
    if value is None:
        return 0
    if value is UNDEFINED:
        return math.nan
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0
        if text in ("Infinity", "+Infinity"):
            return math.inf
        if text == "-Infinity":
            return -math.inf
        if "_" in text:
            return math.nan
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return math.nan
        # float() accepts "nan"/"inf", JavaScript does not
        return math.nan if text.lower().lstrip("+-") in ("nan", "inf", "infinity") else number
    if isinstance(value, (list, tuple)):
        if len(value) == 0:
            return 0
        if len(value) == 1:
            return to_number(to_js_string(value[0]))
    return math.nan


def to_js_string(value: Any) -> str:
    """JavaScript String() conversion (arrays join with commas)."""
    if isinstance(value, (list, tuple)):
        return ",".join("" if v is None or v is UNDEFINED else to_js_string(v) for v in value)
    if isinstance(value, dict):
        return "[object Object]"
    return stringify(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_object(value: Any) -> bool:
    return isinstance(value, (list, tuple, dict))


def strict_equals(a: Any, b: Any) -> bool:
    if _is_number(a) and _is_number(b):
        return a == b
    if _is_object(a) or _is_object(b):
        return a is b
    if type(a) is not type(b):
        return False
    return a == b


def loose_equals(a: Any, b: Any) -> bool:
    nullish = (None, UNDEFINED)
    if a in nullish or b in nullish:
        return a in nullish and b in nullish
    if _is_number(a) and _is_number(b):
        return a == b
    if type(a) is type(b) or (_is_object(a) and _is_object(b)):
        return strict_equals(a, b)
    if isinstance(a, bool):
        return loose_equals(to_number(a), b)
    if isinstance(b, bool):
        return loose_equals(a, to_number(b))
    if _is_object(a):
        return loose_equals(to_js_string(a), b)
    if _is_object(b):
        return loose_equals(a, to_js_string(b))
    # number vs string
    return to_number(a) == to_number(b)


def _normalize(number: float | int) -> float | int:
    if isinstance(number, float) and number.is_integer() and abs(number) < 2**53:
        return int(number)
    return number


def _divide(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1, b)
    return a / b


def _modulo(a: float, b: float) -> float:
    if b == 0 or math.isinf(a) or math.isnan(a) or math.isnan(b):
        return math.nan
    if math.isinf(b):
        return a
    return math.fmod(a, b)


def _compare(op: str, a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        left, right = a, b
    else:
        if _is_object(a):
            a = to_js_string(a)
        if _is_object(b):
            b = to_js_string(b)
        if isinstance(a, str) and isinstance(b, str):
            left, right = a, b
        else:
            left, right = to_number(a), to_number(b)
            if math.isnan(left) or math.isnan(right):
                return False
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


def _add(a: Any, b: Any) -> Any:
    if _is_object(a):
        a = to_js_string(a)
    if _is_object(b):
        b = to_js_string(b)
    if isinstance(a, str) or isinstance(b, str):
        return to_js_string(a) + to_js_string(b)
    return _normalize(to_number(a) + to_number(b))


def evaluate(expr: Expr, lookup: Lookup) -> Any:
    """Evaluate a parsed expression.

    Args:
        expr: AST produced by parse()
        lookup: Resolves a dotted identifier; returns UNDEFINED when absent
    """
    if isinstance(expr, Literal):
        return expr.value

    if isinstance(expr, Name):
        return lookup(expr.path)

    if isinstance(expr, Unary):
        operand = evaluate(expr.operand, lookup)
        if expr.op == "!":
            return not truthy(operand)
        number = to_number(operand)
        return _normalize(-number) if expr.op == "-" else number

    if isinstance(expr, Binary):
        op = expr.op

        # Short-circuit operators return an operand, as in JavaScript
        if op == "&&":
            left = evaluate(expr.left, lookup)
            return evaluate(expr.right, lookup) if truthy(left) else left
        if op == "||":
            left = evaluate(expr.left, lookup)
            return left if truthy(left) else evaluate(expr.right, lookup)

        left = evaluate(expr.left, lookup)
        right = evaluate(expr.right, lookup)

        if op == "+":
            return _add(left, right)
        if op == "-":
            return _normalize(to_number(left) - to_number(right))
        if op == "*":
            return _normalize(to_number(left) * to_number(right))
        if op == "/":
            return _normalize(_divide(to_number(left), to_number(right)))
        if op == "%":
            return _normalize(_modulo(to_number(left), to_number(right)))
        if op == "==":
            return loose_equals(left, right)
        if op == "!=":
            return not loose_equals(left, right)
        if op == "===":
            return strict_equals(left, right)
        if op == "!==":
            return not strict_equals(left, right)
        if op in ("<", "<=", ">", ">="):
            return _compare(op, left, right)

    raise ExpressionError(f"Unsupported expression node: {expr!r}")


def evaluate_expression(
    source: str,
    lookup: Lookup,
    max_length: int = 2048,
    max_depth: int = 64,
) -> Any:
    """Parse and evaluate ``source`` in one step."""
    return evaluate(parse(source, max_length=max_length, max_depth=max_depth), lookup)
