"""Tern resolver — binds every name to its declaration and lays out frames.

Pass one collects all function declarations into a flat global table so
calls may refer forward. Pass two walks each function body with its own
arena of scope records, attaching a LocalBinding to every let, assignment
and variable reference and a FunctionBinding to every call. Both backends
consume only these bindings, so they cannot disagree about scoping.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .ast import (
    Assign,
    Binary,
    Block,
    Call,
    Dump,
    Exit,
    Expr,
    ExprStmt,
    FunctionBinding,
    FunctionDecl,
    Grouping,
    Identifier,
    If,
    IntLiteral,
    LetDecl,
    LocalBinding,
    Pos,
    Program,
    Stmt,
    Unary,
)
from .limits import TREE_FRAMES, recursion_headroom

ENTRY_POINT: str = "main"
SLOT_SIZE: int = 8
FRAME_ALIGN: int = 16


# ============================================================
# ERRORS
# ============================================================


class ResolveError(Exception):
    """Static name-resolution error."""

    def __init__(self, msg: str, line: int, col: int):
        self.msg: str = msg
        self.line: int = line
        self.col: int = col
        super().__init__(msg + " at line " + str(line) + " col " + str(col))


class UndeclaredVariable(ResolveError):
    pass


class RedeclaredVariable(ResolveError):
    pass


class UndeclaredFunction(ResolveError):
    pass


class DuplicateFunction(ResolveError):
    pass


class MissingEntryPoint(ResolveError):
    pass


# ============================================================
# RESOLVED PROGRAM
# ============================================================


@dataclass
class Slot:
    """One variable slot in a function frame."""

    index: int
    name: str
    depth: int
    offset: int  # bytes from the frame base pointer, always negative


@dataclass
class FunctionInfo:
    index: int
    name: str
    decl: FunctionDecl
    slots: list[Slot] = field(default_factory=list)
    frame_size: int = 0


@dataclass
class ResolvedProgram:
    program: Program
    functions: list[FunctionInfo]
    entry: FunctionInfo

    def function(self, binding: FunctionBinding) -> FunctionInfo:
        return self.functions[binding.index]


@dataclass
class Scope:
    """A lexical scope record. parent indexes into the same arena."""

    parent: int | None
    depth: int
    names: dict[str, int] = field(default_factory=dict)


def slot_offset(index: int) -> int:
    return -SLOT_SIZE * (index + 1)


def frame_size(slot_count: int) -> int:
    raw = SLOT_SIZE * slot_count
    return (raw + FRAME_ALIGN - 1) // FRAME_ALIGN * FRAME_ALIGN


# ============================================================
# RESOLVER
# ============================================================


class Resolver:
    def __init__(self) -> None:
        self.functions: list[FunctionInfo] = []
        self.by_name: dict[str, FunctionInfo] = {}
        # Per-function state
        self.scopes: list[Scope] = []
        self.current: int | None = None
        self.fn: FunctionInfo | None = None
        # Nodes given a binding so far, cleared again if resolution fails
        self.bound: list[LetDecl | Assign | Identifier | Call] = []

    # ── Pass 1: Collect declarations ──────────────────────────

    def collect_functions(self, program: Program) -> None:
        for decl in program.functions:
            if decl.name in self.by_name:
                raise DuplicateFunction(
                    "function '" + decl.name + "' already declared",
                    decl.pos.line,
                    decl.pos.col,
                )
            info = FunctionInfo(len(self.functions), decl.name, decl)
            self.functions.append(info)
            self.by_name[decl.name] = info

    def entry_point(self) -> FunctionInfo:
        if ENTRY_POINT not in self.by_name:
            raise MissingEntryPoint("no '" + ENTRY_POINT + "' function to start from", 1, 1)
        return self.by_name[ENTRY_POINT]

    # ── Scope management ──────────────────────────────────────

    def enter_scope(self) -> None:
        depth = 1 if self.current is None else self.scopes[self.current].depth + 1
        self.scopes.append(Scope(self.current, depth))
        self.current = len(self.scopes) - 1

    def exit_scope(self) -> None:
        if self.current is None:
            raise RuntimeError("exit_scope without an open scope")
        self.current = self.scopes[self.current].parent

    def declare(self, name: str, pos: Pos) -> LocalBinding:
        if self.current is None or self.fn is None:
            raise RuntimeError("declare outside a function scope")
        scope = self.scopes[self.current]
        if name in scope.names:
            raise RedeclaredVariable(
                "'" + name + "' already declared in this scope", pos.line, pos.col
            )
        index = len(self.fn.slots)
        self.fn.slots.append(Slot(index, name, scope.depth, slot_offset(index)))
        scope.names[name] = index
        return LocalBinding(index, scope.depth)

    def lookup(self, name: str, pos: Pos) -> LocalBinding:
        # Search scopes innermost-out
        i = self.current
        while i is not None:
            scope = self.scopes[i]
            if name in scope.names:
                return LocalBinding(scope.names[name], scope.depth)
            i = scope.parent
        raise UndeclaredVariable("undeclared variable '" + name + "'", pos.line, pos.col)

    def unbind(self) -> None:
        for node in self.bound:
            node.binding = None
        self.bound = []

    # ── Pass 2: Resolve bodies ────────────────────────────────

    def resolve_function(self, info: FunctionInfo) -> None:
        self.fn = info
        self.scopes = []
        self.current = None
        self.resolve_block(info.decl.body)
        info.frame_size = frame_size(len(info.slots))
        self.fn = None

    def resolve_block(self, block: Block) -> None:
        self.enter_scope()
        for stmt in block.statements:
            self.resolve_stmt(stmt)
        self.exit_scope()

    def resolve_stmt(self, stmt: Stmt) -> None:
        if isinstance(stmt, LetDecl):
            # Initializer sees the enclosing bindings, not the name being declared
            if stmt.init is not None:
                self.resolve_expr(stmt.init)
            stmt.binding = self.declare(stmt.name, stmt.pos)
            self.bound.append(stmt)
        elif isinstance(stmt, Assign):
            self.resolve_expr(stmt.value)
            stmt.binding = self.lookup(stmt.name, stmt.pos)
            self.bound.append(stmt)
        elif isinstance(stmt, If):
            self.resolve_expr(stmt.cond)
            self.resolve_block(stmt.then_block)
            if stmt.else_block is not None:
                self.resolve_block(stmt.else_block)
        elif isinstance(stmt, Dump):
            self.resolve_expr(stmt.value)
        elif isinstance(stmt, Exit):
            self.resolve_expr(stmt.value)
        elif isinstance(stmt, ExprStmt):
            self.resolve_expr(stmt.call)
        else:
            raise TypeError("unhandled statement type: " + type(stmt).__name__)

    def resolve_expr(self, expr: Expr) -> None:
        if isinstance(expr, IntLiteral):
            return
        if isinstance(expr, Identifier):
            expr.binding = self.lookup(expr.name, expr.pos)
            self.bound.append(expr)
        elif isinstance(expr, Unary):
            self.resolve_expr(expr.operand)
        elif isinstance(expr, Binary):
            self.resolve_expr(expr.left)
            self.resolve_expr(expr.right)
        elif isinstance(expr, Grouping):
            self.resolve_expr(expr.inner)
        elif isinstance(expr, Call):
            info = self.by_name.get(expr.name)
            if info is None:
                raise UndeclaredFunction(
                    "undeclared function '" + expr.name + "'", expr.pos.line, expr.pos.col
                )
            expr.binding = FunctionBinding(info.index, info.name)
            self.bound.append(expr)
        else:
            raise TypeError("unhandled expression type: " + type(expr).__name__)


# ============================================================
# PUBLIC API
# ============================================================


def resolve(program: Program) -> ResolvedProgram:
    """Resolve a parsed Program. Raises the first ResolveError found.

    Bindings stay on the AST only when the whole program resolves. A failed
    resolve clears every binding it attached.
    """
    resolver = Resolver()
    try:
        with recursion_headroom(TREE_FRAMES):
            resolver.collect_functions(program)
            for info in resolver.functions:
                try:
                    resolver.resolve_function(info)
                except RecursionError:
                    pos = info.decl.pos
                    raise ResolveError(
                        "function '" + info.name + "' is nested too deeply", pos.line, pos.col
                    ) from None
            entry = resolver.entry_point()
    except ResolveError:
        resolver.unbind()
        raise
    return ResolvedProgram(program, resolver.functions, entry)
