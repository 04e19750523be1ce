"""Tern debug dumps — render tokens and parse trees as text.

This is total over the AST in `tern/ast.py`: a new node type needs a case here.
"""

from __future__ import annotations

from typing import Iterable

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
    Program,
    Stmt,
    Unary,
)
from .limits import TREE_FRAMES, recursion_headroom
from .tokens import Token


def format_tokens(tokens: Iterable[Token]) -> str:
    """One line per token: `[line:col] KIND 'value'`."""
    lines: list[str] = []
    for tok in tokens:
        lines.append(f"[{tok.line}:{tok.col}] {tok.kind} {tok.value!r}")
    return "\n".join(lines) + "\n"


def format_tree(program: Program) -> str:
    """Indented parse tree, one node per line."""
    return _TreePrinter().render(program)


class _TreePrinter:
    _INDENT: str = "    "

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._depth: int = 0

    def render(self, program: Program) -> str:
        self._lines = []
        self._depth = 0
        self._node("Program")
        self._depth += 1
        with recursion_headroom(TREE_FRAMES):
            for fn in program.functions:
                self._function(fn)
        self._depth -= 1
        return "\n".join(self._lines) + "\n"

    def _node(self, text: str) -> None:
        self._lines.append(self._INDENT * self._depth + text)

    def _function(self, fn: FunctionDecl) -> None:
        self._node(f"FunctionDecl `{fn.name}`")
        self._depth += 1
        self._block(fn.body)
        self._depth -= 1

    def _block(self, block: Block) -> None:
        self._node("Block")
        self._depth += 1
        for st in block.statements:
            self._stmt(st)
        self._depth -= 1

    def _stmt(self, st: Stmt) -> None:
        if isinstance(st, LetDecl):
            self._node(f"LetDecl `{st.name}`")
            if st.init is not None:
                self._child(st.init)
        elif isinstance(st, Assign):
            self._node(f"Assign `{st.name}`")
            self._child(st.value)
        elif isinstance(st, If):
            self._node("If")
            self._depth += 1
            self._expr(st.cond)
            self._block(st.then_block)
            if st.else_block is not None:
                self._node("Else")
                self._depth += 1
                self._block(st.else_block)
                self._depth -= 1
            self._depth -= 1
        elif isinstance(st, Dump):
            self._node("Dump")
            self._child(st.value)
        elif isinstance(st, Exit):
            self._node("Exit")
            self._child(st.value)
        elif isinstance(st, ExprStmt):
            self._node("ExprStmt")
            self._child(st.call)
        else:
            raise TypeError("unhandled statement type: " + type(st).__name__)

    def _child(self, expr: Expr) -> None:
        self._depth += 1
        self._expr(expr)
        self._depth -= 1

    def _expr(self, expr: Expr) -> None:
        if isinstance(expr, IntLiteral):
            self._node(f"IntLiteral `{expr.value}`")
        elif isinstance(expr, Identifier):
            self._node(f"Identifier `{expr.name}`")
        elif isinstance(expr, Call):
            self._node(f"Call `{expr.name}`")
        elif isinstance(expr, Unary):
            self._node(f"Unary `{expr.op}`")
            self._child(expr.operand)
        elif isinstance(expr, Binary):
            self._node(f"Binary `{expr.op}`")
            self._depth += 1
            self._expr(expr.left)
            self._expr(expr.right)
            self._depth -= 1
        elif isinstance(expr, Grouping):
            self._node("Grouping")
            self._child(expr.inner)
        else:
            raise TypeError("unhandled expression type: " + type(expr).__name__)
