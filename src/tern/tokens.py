"""Tern tokenizer — lexes source into a flat token sequence."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator


# Token kind constants
TK_KEYWORD = "KEYWORD"
TK_IDENT = "IDENT"
TK_INT = "INT"
TK_OP = "OP"
TK_PUNCT = "PUNCT"
TK_STRING = "STRING"
TK_CHAR = "CHAR"
TK_EOF = "EOF"

KEYWORDS: set[str] = {
    "dump",
    "else",
    "exit",
    "func",
    "if",
    "let",
}

# Reserved else-if shorthand. Lexed so it can be reported, never parsed.
RESERVED_ELSE_IF = "if*"

# Multi-character operators, checked before single characters
MULTI_OPS: list[str] = [
    "==",
    "!=",
    ">=",
    "<=",
    "&&",
    "||",
]

SINGLE_OPS: set[str] = {
    "+",
    "-",
    "*",
    "/",
    "<",
    ">",
    "=",
}

PUNCTUATION: set[str] = {
    "(",
    ")",
    "{",
    "}",
    ";",
    ",",
}


class LexError(Exception):
    """Error during tokenization."""

    def __init__(self, msg: str, line: int, col: int, char: str = ""):
        self.msg: str = msg
        self.line: int = line
        self.col: int = col
        self.char: str = char
        super().__init__(msg + " at line " + str(line) + " col " + str(col))


@dataclass(frozen=True)
class Token:
    """A token with kind, lexeme, and 1-indexed position."""

    kind: str
    value: str
    line: int
    col: int

    def __repr__(self) -> str:
        return (
            "Token("
            + self.kind
            + ", "
            + repr(self.value)
            + ", "
            + str(self.line)
            + ", "
            + str(self.col)
            + ")"
        )


def _is_digit(c: str) -> bool:
    return c >= "0" and c <= "9"


def _is_alpha(c: str) -> bool:
    return (c >= "a" and c <= "z") or (c >= "A" and c <= "Z") or c == "_"


def _is_alnum(c: str) -> bool:
    return _is_alpha(c) or _is_digit(c)


def _scan_quoted(source: str, pos: int, quote: str, line: int, col: int) -> int:
    """Skip a quoted literal starting at the opening quote. Returns the position past the close."""
    what = "string" if quote == '"' else "char"
    length = len(source)
    pos += 1
    while pos < length and source[pos] != quote:
        if source[pos] == "\n":
            raise LexError("unterminated " + what + " literal", line, col, quote)
        if source[pos] == "\\":
            # The escaped character never terminates the literal
            pos += 1
            if pos < length and source[pos] == "\n":
                raise LexError("unterminated " + what + " literal", line, col, quote)
        pos += 1
    if pos >= length:
        raise LexError("unterminated " + what + " literal", line, col, quote)
    return pos + 1


def _scan(source: str) -> Iterator[Token]:
    pos = 0
    line = 1
    col = 1
    length = len(source)

    while pos < length:
        c = source[pos]

        # Newlines
        if c == "\n":
            pos += 1
            line += 1
            col = 1
            continue

        # Whitespace
        if c == " " or c == "\t" or c == "\r":
            pos += 1
            col += 1
            continue

        # Line comment: //
        if c == "/" and pos + 1 < length and source[pos + 1] == "/":
            while pos < length and source[pos] != "\n":
                pos += 1
            continue

        start_pos = pos
        start_col = col

        # Integer literal
        if _is_digit(c):
            while pos < length and _is_digit(source[pos]):
                pos += 1
            if pos < length and _is_alpha(source[pos]):
                raise LexError(
                    "invalid character in integer literal: " + repr(source[pos]),
                    line,
                    col + (pos - start_pos),
                    source[pos],
                )
            col += pos - start_pos
            yield Token(TK_INT, source[start_pos:pos], line, start_col)
            continue

        # Identifier or keyword
        if _is_alpha(c):
            while pos < length and _is_alnum(source[pos]):
                pos += 1
            word = source[start_pos:pos]
            if word == "if" and pos < length and source[pos] == "*":
                pos += 1
                word = RESERVED_ELSE_IF
            col += pos - start_pos
            if word in KEYWORDS or word == RESERVED_ELSE_IF:
                yield Token(TK_KEYWORD, word, line, start_col)
            else:
                yield Token(TK_IDENT, word, line, start_col)
            continue

        # String and char literals
        if c == '"' or c == "'":
            pos = _scan_quoted(source, pos, c, line, col)
            col += pos - start_pos
            kind = TK_STRING if c == '"' else TK_CHAR
            yield Token(kind, source[start_pos:pos], line, start_col)
            continue

        # Multi-character operators
        two = source[pos : pos + 2]
        if two in MULTI_OPS:
            pos += 2
            col += 2
            yield Token(TK_OP, two, line, start_col)
            continue

        if c in SINGLE_OPS:
            pos += 1
            col += 1
            yield Token(TK_OP, c, line, start_col)
            continue

        if c in PUNCTUATION:
            pos += 1
            col += 1
            yield Token(TK_PUNCT, c, line, start_col)
            continue

        raise LexError("unexpected character: " + repr(c), line, col, c)

    yield Token(TK_EOF, "", line, col)


class TokenStream:
    """Lazy token sequence over a source buffer.

    Every iteration rescans from the start, so the stream can be walked any
    number of times. Lexing stops at the first error.
    """

    def __init__(self, source: str):
        self.source: str = source

    def __iter__(self) -> Iterator[Token]:
        return _scan(self.source)


def tokenize(source: str) -> list[Token]:
    """Tokenize Tern source into a flat list ending with TK_EOF."""
    return list(TokenStream(source))
