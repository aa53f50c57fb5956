"""Computed-metric formulas: tokenizer and recursive-descent parser.

Formulas reference other metrics (or dimension aliases) by key, e.g.
``orders_total / NULLIF(ad_spend_spend, 0)``, and parse into the shared
expression AST so they can be evaluated in process or rendered into SQL.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from slice_engine.ast.nodes import BinaryOp, ColumnRef, Expr, FunctionCall, Literal, UnaryOp
from slice_engine.models.errors import ConfigurationError

# name → (min args, max args); None = unbounded
FUNCTIONS: dict[str, tuple[int, int | None]] = {
    "NULLIF": (2, 2),
    "COALESCE": (1, None),
    "ABS": (1, 1),
    "ROUND": (1, 2),
}


@dataclass
class _Token:
    kind: str  # "ident", "number", "op", "lparen", "rparen", "comma"
    value: str
    pos: int


def _error(formula: str, message: str) -> ConfigurationError:
    return ConfigurationError.single(
        "INVALID_EXPRESSION", f"Invalid expression '{formula}': {message}"
    )


def tokenize(formula: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    while i < len(formula):
        ch = formula[i]
        if ch.isspace():
            i += 1
        elif ch.isalpha() or ch == "_":
            j = i
            while j < len(formula) and (formula[j].isalnum() or formula[j] == "_"):
                j += 1
            tokens.append(_Token(kind="ident", value=formula[i:j], pos=i))
            i = j
        elif ch.isdigit() or (ch == "." and i + 1 < len(formula) and formula[i + 1].isdigit()):
            j = i
            while j < len(formula) and (formula[j].isdigit() or formula[j] == "."):
                j += 1
            tokens.append(_Token(kind="number", value=formula[i:j], pos=i))
            i = j
        elif ch in "+-*/":
            tokens.append(_Token(kind="op", value=ch, pos=i))
            i += 1
        elif ch == "(":
            tokens.append(_Token(kind="lparen", value=ch, pos=i))
            i += 1
        elif ch == ")":
            tokens.append(_Token(kind="rparen", value=ch, pos=i))
            i += 1
        elif ch == ",":
            tokens.append(_Token(kind="comma", value=ch, pos=i))
            i += 1
        else:
            raise _error(formula, f"unexpected character '{ch}' at position {i}")
    return tokens


class _Parser:
    """Grammar:

        expr   → term (('+' | '-') term)*
        term   → unary (('*' | '/') unary)*
        unary  → '-' unary | factor
        factor → NUMBER | IDENT | IDENT '(' expr (',' expr)* ')' | '(' expr ')'
    """

    def __init__(self, formula: str) -> None:
        self._formula = formula
        self._tokens = tokenize(formula)
        self._pos = 0

    def parse(self) -> Expr:
        if not self._tokens:
            raise _error(self._formula, "empty expression")
        node = self._expr()
        tok = self._peek()
        if tok is not None:
            raise _error(self._formula, f"unexpected '{tok.value}' at position {tok.pos}")
        return node

    def _peek(self) -> _Token | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _advance(self) -> _Token:
        tok = self._peek()
        if tok is None:
            raise _error(self._formula, "unexpected end of expression")
        self._pos += 1
        return tok

    def _expect(self, kind: str) -> _Token:
        tok = self._advance()
        if tok.kind != kind:
            raise _error(self._formula, f"expected {kind} at position {tok.pos}, got '{tok.value}'")
        return tok

    def _expr(self) -> Expr:
        left = self._term()
        while (tok := self._peek()) and tok.kind == "op" and tok.value in "+-":
            self._advance()
            left = BinaryOp(left=left, op=tok.value, right=self._term())
        return left

    def _term(self) -> Expr:
        left = self._unary()
        while (tok := self._peek()) and tok.kind == "op" and tok.value in "*/":
            self._advance()
            left = BinaryOp(left=left, op=tok.value, right=self._unary())
        return left

    def _unary(self) -> Expr:
        tok = self._peek()
        if tok is not None and tok.kind == "op" and tok.value == "-":
            self._advance()
            return UnaryOp(op="-", operand=self._unary())
        return self._factor()

    def _factor(self) -> Expr:
        tok = self._advance()
        if tok.kind == "number":
            try:
                val = float(tok.value) if "." in tok.value else int(tok.value)
            except ValueError:
                raise _error(self._formula, f"bad number '{tok.value}'") from None
            return Literal.number(val)
        if tok.kind == "lparen":
            node = self._expr()
            self._expect("rparen")
            return node
        if tok.kind == "ident":
            nxt = self._peek()
            if nxt is not None and nxt.kind == "lparen":
                return self._call(tok)
            if tok.value.upper() == "NULL":
                return Literal.null()
            return ColumnRef(name=tok.value)
        raise _error(self._formula, f"unexpected '{tok.value}' at position {tok.pos}")

    def _call(self, name_tok: _Token) -> Expr:
        name = name_tok.value.upper()
        if name not in FUNCTIONS:
            raise ConfigurationError.single(
                "UNKNOWN_FUNCTION",
                f"Unknown function '{name_tok.value}' in expression '{self._formula}'",
            )
        self._expect("lparen")
        args: list[Expr] = [self._expr()]
        while (tok := self._peek()) and tok.kind == "comma":
            self._advance()
            args.append(self._expr())
        self._expect("rparen")

        low, high = FUNCTIONS[name]
        if len(args) < low or (high is not None and len(args) > high):
            raise _error(self._formula, f"{name} takes {low}..{high or 'n'} arguments, got {len(args)}")
        return FunctionCall(name=name, args=tuple(args))


@lru_cache(maxsize=512)
def parse_formula(formula: str) -> Expr:
    """Parse a formula into an expression tree (cached; the tree is immutable)."""
    return _Parser(formula).parse()
