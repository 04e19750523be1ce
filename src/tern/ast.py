"""Tern AST — parse-time node definitions plus resolved bindings."""

from __future__ import annotations

from dataclasses import dataclass, field


# ============================================================
# POSITION
# ============================================================


@dataclass
class Pos:
    """Source position, 1-indexed."""

    line: int
    col: int


# ============================================================
# RESOLVED BINDINGS
# ============================================================


@dataclass(frozen=True)
class LocalBinding:
    """A variable slot in the enclosing function's frame.

    slot is the declaration-order index within the function; depth is the
    lexical depth of the declaring block (function body = 1).
    """

    slot: int
    depth: int


@dataclass(frozen=True)
class FunctionBinding:
    """An entry in the global function table."""

    index: int
    name: str


# ============================================================
# EXPRESSIONS
# ============================================================


@dataclass
class Expr:
    """Base for all expressions."""

    pos: Pos


@dataclass
class IntLiteral(Expr):
    """Decimal integer literal."""

    value: int


@dataclass
class Identifier(Expr):
    """Variable reference."""

    name: str
    binding: LocalBinding | None = field(default=None, compare=False)


@dataclass
class Unary(Expr):
    """-operand."""

    op: str
    operand: Expr


@dataclass
class Binary(Expr):
    """left op right."""

    op: str
    left: Expr
    right: Expr


@dataclass
class Call(Expr):
    """name() — zero-arity call."""

    name: str
    binding: FunctionBinding | None = field(default=None, compare=False)


@dataclass
class Grouping(Expr):
    """(inner)."""

    inner: Expr


# ============================================================
# STATEMENTS
# ============================================================


@dataclass
class Stmt:
    """Base for all statements."""

    pos: Pos


@dataclass
class Block:
    """{ statements } — introduces a lexical scope."""

    pos: Pos
    statements: list[Stmt]


@dataclass
class LetDecl(Stmt):
    """let name = init;"""

    name: str
    init: Expr | None
    binding: LocalBinding | None = field(default=None, compare=False)


@dataclass
class Assign(Stmt):
    """name = value;"""

    name: str
    value: Expr
    binding: LocalBinding | None = field(default=None, compare=False)


@dataclass
class If(Stmt):
    """if cond { ... } else { ... }"""

    cond: Expr
    then_block: Block
    else_block: Block | None


@dataclass
class Dump(Stmt):
    """dump value;"""

    value: Expr


@dataclass
class Exit(Stmt):
    """exit value;"""

    value: Expr


@dataclass
class ExprStmt(Stmt):
    """name(); as a statement."""

    call: Call


# ============================================================
# DECLARATIONS
# ============================================================


@dataclass
class FunctionDecl:
    """func name { body }"""

    pos: Pos
    name: str
    body: Block


@dataclass
class Program:
    """Top-level program — function declarations in source order."""

    functions: list[FunctionDecl]
