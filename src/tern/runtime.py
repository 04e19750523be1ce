"""Tern runtime — evaluate a resolved program by walking its AST."""

from __future__ import annotations

from dataclasses import dataclass

from .ast import (
    Assign,
    Binary,
    Block,
    Call,
    Dump,
    Exit,
    Expr,
    ExprStmt,
    Grouping,
    Identifier,
    If,
    IntLiteral,
    LetDecl,
    LocalBinding,
    Pos,
    Stmt,
    Unary,
)
from .limits import FRAMES_PER_CALL, TREE_FRAMES, recursion_headroom
from .resolve import FunctionInfo, ResolvedProgram

DEFAULT_MAX_CALL_DEPTH: int = 10_000

_MASK64: int = (1 << 64) - 1
_SIGN64: int = 1 << 63


# ============================================================
# Diagnostics
# ============================================================


class RuntimeFault(Exception):
    """Fatal runtime error. The program cannot recover from it."""

    def __init__(self, msg: str, pos: Pos | None = None):
        if pos is None:
            super().__init__(msg)
        else:
            super().__init__(f"{msg} at line {pos.line} col {pos.col}")
        self.msg = msg
        self.pos = pos
        # Output the program produced before the fault
        self.stdout: bytes = b""


class DivisionByZero(RuntimeFault):
    """Integer division with a zero divisor."""


class StackOverflow(RuntimeFault):
    """Call nesting exceeded the configured depth."""


# ============================================================
# Control flow signals (internal)
# ============================================================


@dataclass
class _Exit(Exception):
    code: int


# ============================================================
# Integer semantics
# ============================================================


def wrap64(value: int) -> int:
    """Reduce to a signed 64-bit two's complement value."""
    value &= _MASK64
    if value & _SIGN64:
        return value - (1 << 64)
    return value


def _div_trunc(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    if (a < 0) != (b < 0):
        q = -q
    return q


def _eval_binary(op: str, left: int, right: int, *, pos: Pos) -> int:
    if op == "+":
        return wrap64(left + right)
    if op == "-":
        return wrap64(left - right)
    if op == "*":
        return wrap64(left * right)
    if op == "/":
        if right == 0:
            raise DivisionByZero("division by zero", pos)
        return wrap64(_div_trunc(left, right))
    if op == "==":
        return int(left == right)
    if op == "!=":
        return int(left != right)
    if op == "<":
        return int(left < right)
    if op == "<=":
        return int(left <= right)
    if op == ">":
        return int(left > right)
    if op == ">=":
        return int(left >= right)
    raise RuntimeFault(f"unsupported operator '{op}'", pos)


# ============================================================
# Frames
# ============================================================


class _Frame:
    """Storage for one function activation, indexed by resolved slot."""

    def __init__(self, fn: FunctionInfo):
        self.fn = fn
        self.values: list[int] = [0] * len(fn.slots)

    def get(self, binding: LocalBinding) -> int:
        return self.values[binding.slot]

    def set(self, binding: LocalBinding, value: int) -> None:
        self.values[binding.slot] = value


@dataclass
class RunResult:
    exit_code: int
    stdout: bytes


# ============================================================
# Interpreter
# ============================================================


class Runtime:
    def __init__(self, resolved: ResolvedProgram, *, max_call_depth: int = DEFAULT_MAX_CALL_DEPTH):
        self.resolved = resolved
        self.max_call_depth = max_call_depth
        self.stdout = bytearray()
        self._frames: list[_Frame] = []

    def run_main(self) -> RunResult:
        entry = self.resolved.entry
        try:
            with recursion_headroom(self.max_call_depth * FRAMES_PER_CALL + 2 * TREE_FRAMES):
                try:
                    self._call(entry, entry.decl.pos)
                except RecursionError:
                    raise StackOverflow(
                        "call depth exceeded the interpreter stack", entry.decl.pos
                    ) from None
        except _Exit as e:
            return RunResult(e.code, bytes(self.stdout))
        except RuntimeFault as fault:
            fault.stdout = bytes(self.stdout)
            raise
        return RunResult(0, bytes(self.stdout))

    # ---- Functions ---------------------------------------------------------

    def _call(self, fn: FunctionInfo, pos: Pos) -> None:
        if len(self._frames) >= self.max_call_depth:
            raise StackOverflow(
                f"call depth exceeded {self.max_call_depth} calling '{fn.name}'", pos
            )
        self._frames.append(_Frame(fn))
        try:
            self._exec_block(fn.decl.body)
        finally:
            self._frames.pop()

    # ---- Statements --------------------------------------------------------

    def _exec_block(self, block: Block) -> None:
        for st in block.statements:
            self._exec_stmt(st)

    def _exec_stmt(self, st: Stmt) -> None:
        frame = self._frames[-1]

        if isinstance(st, LetDecl):
            value = 0 if st.init is None else self._eval(st.init)
            frame.set(_local(st.binding, st.pos), value)
            return

        if isinstance(st, Assign):
            value = self._eval(st.value)
            frame.set(_local(st.binding, st.pos), value)
            return

        if isinstance(st, If):
            if self._eval(st.cond) != 0:
                self._exec_block(st.then_block)
            elif st.else_block is not None:
                self._exec_block(st.else_block)
            return

        if isinstance(st, Dump):
            value = self._eval(st.value)
            self.stdout.extend((str(value) + "\n").encode("utf-8"))
            return

        if isinstance(st, Exit):
            raise _Exit(self._eval(st.value) % 256)

        if isinstance(st, ExprStmt):
            self._eval(st.call)
            return

        raise RuntimeFault("unsupported statement", st.pos)

    # ---- Expressions -------------------------------------------------------

    def _eval(self, expr: Expr) -> int:
        if isinstance(expr, IntLiteral):
            return expr.value

        if isinstance(expr, Identifier):
            return self._frames[-1].get(_local(expr.binding, expr.pos))

        if isinstance(expr, Grouping):
            return self._eval(expr.inner)

        if isinstance(expr, Unary):
            operand = self._eval(expr.operand)
            if expr.op == "-":
                return wrap64(-operand)
            raise RuntimeFault(f"unsupported unary operator '{expr.op}'", expr.pos)

        if isinstance(expr, Binary):
            # Short-circuit: the right operand is only evaluated when needed
            if expr.op == "&&":
                if self._eval(expr.left) == 0:
                    return 0
                return int(self._eval(expr.right) != 0)
            if expr.op == "||":
                if self._eval(expr.left) != 0:
                    return 1
                return int(self._eval(expr.right) != 0)
            left = self._eval(expr.left)
            right = self._eval(expr.right)
            return _eval_binary(expr.op, left, right, pos=expr.pos)

        if isinstance(expr, Call):
            if expr.binding is None:
                raise RuntimeFault(f"unresolved call to '{expr.name}'", expr.pos)
            self._call(self.resolved.function(expr.binding), expr.pos)
            return 0

        raise RuntimeFault("unsupported expression", expr.pos)


def _local(binding: LocalBinding | None, pos: Pos) -> LocalBinding:
    if binding is None:
        raise RuntimeFault("unresolved variable", pos)
    return binding


def run(resolved: ResolvedProgram, *, max_call_depth: int = DEFAULT_MAX_CALL_DEPTH) -> RunResult:
    """Run a resolved Tern program from its entry function."""
    return Runtime(resolved, max_call_depth=max_call_depth).run_main()
