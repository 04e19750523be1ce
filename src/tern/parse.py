"""Tern parser — recursive descent, precedence climbing for binary operators."""

from __future__ import annotations

from .ast import (
    Assign,
    Binary,
    Block,
    Call,
    Dump,
    Exit,
    Expr,
    ExprStmt,
    FunctionDecl,
    Grouping,
    Identifier,
    If,
    IntLiteral,
    LetDecl,
    Pos,
    Program,
    Stmt,
    Unary,
)
from .limits import FRAMES_PER_NESTING, MAX_NESTING, recursion_headroom
from .tokens import (
    RESERVED_ELSE_IF,
    TK_CHAR,
    TK_EOF,
    TK_IDENT,
    TK_INT,
    TK_KEYWORD,
    TK_OP,
    TK_STRING,
    Token,
)

# Binary operator precedence, higher binds tighter. All levels are left-associative.
BINARY_PRECEDENCE: dict[str, int] = {
    "||": 1,
    "&&": 2,
    "==": 3,
    "!=": 3,
    ">=": 4,
    "<=": 4,
    "<": 4,
    ">": 4,
    "+": 5,
    "-": 5,
    "*": 6,
    "/": 6,
}

INT64_MAX: int = 2**63 - 1


class ParseError(Exception):
    """Parse error with location info and the offending token."""

    def __init__(self, msg: str, line: int, col: int, expected: str = "", found: str = ""):
        self.msg: str = msg
        self.line: int = line
        self.col: int = col
        self.expected: str = expected
        self.found: str = found
        super().__init__(msg + " at line " + str(line) + " col " + str(col))


def _describe(tok: Token) -> str:
    if tok.kind == TK_EOF:
        return "end of input"
    return tok.value


class Parser:
    """Recursive descent parser for Tern."""

    def __init__(self, tokens: list[Token]):
        self.tokens: list[Token] = tokens
        self.pos: int = 0
        self.nesting: int = 0

    # ── Helpers ──────────────────────────────────────────────

    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int) -> Token:
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return self.tokens[len(self.tokens) - 1]
        return self.tokens[idx]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind != TK_EOF:
            self.pos += 1
        return tok

    def at(self, value: str) -> bool:
        tok = self.current()
        return tok.value == value and tok.kind not in (TK_STRING, TK_CHAR, TK_EOF)

    def at_kind(self, kind: str) -> bool:
        return self.current().kind == kind

    def expect(self, value: str) -> Token:
        if not self.at(value):
            raise self.error_expected("'" + value + "'")
        return self.advance()

    def expect_ident(self) -> Token:
        if not self.at_kind(TK_IDENT):
            raise self.error_expected("identifier")
        return self.advance()

    def error_expected(self, what: str) -> ParseError:
        tok = self.current()
        found = _describe(tok)
        return ParseError(
            "expected " + what + ", got '" + found + "'",
            tok.line,
            tok.col,
            expected=what,
            found=found,
        )

    def _pos(self) -> Pos:
        tok = self.current()
        return Pos(tok.line, tok.col)

    def enter_nesting(self, what: str) -> None:
        self.nesting += 1
        if self.nesting > MAX_NESTING:
            tok = self.current()
            raise ParseError(
                what + " nested too deeply",
                tok.line,
                tok.col,
                expected="at most " + str(MAX_NESTING) + " levels",
                found=_describe(tok),
            )

    def leave_nesting(self) -> None:
        self.nesting -= 1

    # ── Top Level ────────────────────────────────────────────

    def parse_program(self) -> Program:
        functions: list[FunctionDecl] = []
        with recursion_headroom(MAX_NESTING * FRAMES_PER_NESTING):
            while not self.at_kind(TK_EOF):
                functions.append(self.parse_function())
        return Program(functions)

    def parse_function(self) -> FunctionDecl:
        pos = self._pos()
        self.expect("func")
        name_tok = self.expect_ident()
        body = self.parse_block()
        return FunctionDecl(pos, name_tok.value, body)

    def parse_block(self) -> Block:
        pos = self._pos()
        self.enter_nesting("block")
        self.expect("{")
        stmts: list[Stmt] = []
        while not self.at("}"):
            if self.at_kind(TK_EOF):
                raise self.error_expected("'}'")
            stmts.append(self.parse_stmt())
        self.expect("}")
        self.leave_nesting()
        return Block(pos, stmts)

    # ── Statements ───────────────────────────────────────────

    def parse_stmt(self) -> Stmt:
        tok = self.current()
        if tok.kind == TK_KEYWORD:
            if tok.value == "let":
                return self.parse_let()
            if tok.value == "if":
                return self.parse_if()
            if tok.value == "dump":
                pos = self._pos()
                self.advance()
                value = self.parse_expr()
                self.expect(";")
                return Dump(pos, value)
            if tok.value == "exit":
                pos = self._pos()
                self.advance()
                value = self.parse_expr()
                self.expect(";")
                return Exit(pos, value)
            if tok.value == RESERVED_ELSE_IF:
                raise ParseError(
                    "'" + RESERVED_ELSE_IF + "' is reserved and has no meaning yet",
                    tok.line,
                    tok.col,
                    expected="statement",
                    found=tok.value,
                )
        if tok.kind == TK_IDENT:
            if self.peek(1).value == "=" and self.peek(1).kind == TK_OP:
                return self.parse_assign()
            if self.peek(1).value == "(":
                pos = self._pos()
                call = self.parse_call()
                self.expect(";")
                return ExprStmt(pos, call)
        raise self.error_expected("statement")

    def parse_let(self) -> LetDecl:
        pos = self._pos()
        self.expect("let")
        name_tok = self.expect_ident()
        init: Expr | None = None
        if self.at("="):
            self.advance()
            init = self.parse_expr()
        self.expect(";")
        return LetDecl(pos, name_tok.value, init)

    def parse_assign(self) -> Assign:
        pos = self._pos()
        name_tok = self.expect_ident()
        self.expect("=")
        value = self.parse_expr()
        self.expect(";")
        return Assign(pos, name_tok.value, value)

    def parse_if(self) -> If:
        pos = self._pos()
        self.expect("if")
        cond = self.parse_expr()
        then_block = self.parse_block()
        else_block: Block | None = None
        if self.at("else"):
            self.advance()
            if self.at("if"):
                nested_pos = self._pos()
                self.enter_nesting("else-if chain")
                else_block = Block(nested_pos, [self.parse_if()])
                self.leave_nesting()
            else:
                else_block = self.parse_block()
        return If(pos, cond, then_block, else_block)

    # ── Expressions ──────────────────────────────────────────

    def parse_expr(self) -> Expr:
        return self.parse_binary(1)

    def parse_binary(self, min_prec: int) -> Expr:
        """Binary = Unary ( op Binary[prec + 1] )* for every op with prec >= min_prec."""
        left = self.parse_unary()
        while True:
            tok = self.current()
            if tok.kind != TK_OP:
                break
            prec = BINARY_PRECEDENCE.get(tok.value)
            if prec is None or prec < min_prec:
                break
            self.advance()
            right = self.parse_binary(prec + 1)
            left = Binary(left.pos, tok.value, left, right)
        return left

    def parse_unary(self) -> Expr:
        """Unary = '-' Unary | Primary"""
        if self.at_kind(TK_OP) and self.current().value == "-":
            pos = self._pos()
            self.enter_nesting("expression")
            self.advance()
            operand = self.parse_unary()
            self.leave_nesting()
            return Unary(pos, "-", operand)
        return self.parse_primary()

    def parse_call(self) -> Call:
        pos = self._pos()
        name_tok = self.expect_ident()
        self.expect("(")
        if not self.at(")"):
            raise self.error_expected("')' (functions take no arguments)")
        self.advance()
        return Call(pos, name_tok.value)

    def parse_primary(self) -> Expr:
        tok = self.current()
        pos = self._pos()
        if tok.kind == TK_INT:
            value = int(tok.value)
            if value > INT64_MAX:
                raise ParseError(
                    "integer literal out of range: " + tok.value,
                    tok.line,
                    tok.col,
                    expected="64-bit integer",
                    found=tok.value,
                )
            self.advance()
            return IntLiteral(pos, value)
        if tok.kind == TK_IDENT:
            if self.peek(1).value == "(":
                return self.parse_call()
            self.advance()
            return Identifier(pos, tok.value)
        if self.at("("):
            self.enter_nesting("expression")
            self.advance()
            inner = self.parse_expr()
            self.expect(")")
            self.leave_nesting()
            return Grouping(pos, inner)
        if tok.kind == TK_STRING or tok.kind == TK_CHAR:
            raise ParseError(
                "string and char literals cannot be used in expressions",
                tok.line,
                tok.col,
                expected="expression",
                found=tok.value,
            )
        raise self.error_expected("expression")
