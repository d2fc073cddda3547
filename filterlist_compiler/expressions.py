"""
Evaluation of `!#if` preprocessor conditions.

Grammar (lowest to highest precedence):

    expr    := and_expr ("||" and_expr)*
    and_expr:= unary ("&&" unary)*
    unary   := "!" unary | primary
    primary := "true" | "false" | IDENTIFIER | "(" expr ")"

An identifier is true only when it equals the configured platform exactly.
Unknown characters are skipped, trailing tokens are ignored and a missing
`)` is tolerated. An operand position holding anything else is false; an
empty condition is true.
"""
from __future__ import annotations

import logging
import re
from typing import NamedTuple

logger = logging.getLogger(__name__)

TRUE = "TRUE"
FALSE = "FALSE"
NOT = "NOT"
AND = "AND"
OR = "OR"
LPAREN = "LPAREN"
RPAREN = "RPAREN"
IDENTIFIER = "IDENTIFIER"

_TOKEN_RE = re.compile(
    r"\s*(?:(?P<and>&&)|(?P<or>\|\|)|(?P<not>!)|(?P<lparen>\()|(?P<rparen>\))"
    r"|(?P<ident>[A-Za-z0-9_]+))"
)


class Token(NamedTuple):
    kind: str
    text: str


def tokenize(expr: str) -> list[Token]:
    """Split a condition into tokens; characters no token starts with are skipped."""
    tokens: list[Token] = []
    pos = 0
    text = expr.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m:
            logger.debug("Skipping unexpected character %r in condition %r", text[pos], expr)
            pos += 1
            continue
        pos = m.end()
        if m.group("and"):
            tokens.append(Token(AND, "&&"))
        elif m.group("or"):
            tokens.append(Token(OR, "||"))
        elif m.group("not"):
            tokens.append(Token(NOT, "!"))
        elif m.group("lparen"):
            tokens.append(Token(LPAREN, "("))
        elif m.group("rparen"):
            tokens.append(Token(RPAREN, ")"))
        else:
            word = m.group("ident")
            if word.lower() == "true":
                tokens.append(Token(TRUE, word))
            elif word.lower() == "false":
                tokens.append(Token(FALSE, word))
            else:
                tokens.append(Token(IDENTIFIER, word))
    return tokens


class _Parser:
    def __init__(self, tokens: list[Token], platform: str | None):
        self.tokens = tokens
        self.platform = platform
        self.pos = 0

    def _peek(self) -> str | None:
        return self.tokens[self.pos].kind if self.pos < len(self.tokens) else None

    def parse(self) -> bool:
        value = self._or()
        if self.pos != len(self.tokens):
            logger.debug(
                "Ignoring trailing tokens: %s",
                " ".join(t.text for t in self.tokens[self.pos:]),
            )
        return value

    def _or(self) -> bool:
        value = self._and()
        while self._peek() == OR:
            self.pos += 1
            rhs = self._and()
            value = value or rhs
        return value

    def _and(self) -> bool:
        value = self._unary()
        while self._peek() == AND:
            self.pos += 1
            rhs = self._unary()
            value = value and rhs
        return value

    def _unary(self) -> bool:
        if self._peek() == NOT:
            self.pos += 1
            return not self._unary()
        return self._primary()

    def _primary(self) -> bool:
        kind = self._peek()
        if kind == TRUE:
            self.pos += 1
            return True
        if kind == FALSE:
            self.pos += 1
            return False
        if kind == IDENTIFIER:
            text = self.tokens[self.pos].text
            self.pos += 1
            return self.platform is not None and text == self.platform
        if kind == LPAREN:
            self.pos += 1
            value = self._or()
            if self._peek() == RPAREN:
                self.pos += 1
            return value
        # operator, ')' or end of input where an operand belongs
        return False


def evaluate(expr: str, platform: str | None = None) -> bool:
    """Evaluate a preprocessor condition against `platform`."""
    if not expr or not expr.strip():
        return True
    return _Parser(tokenize(expr), platform).parse()
