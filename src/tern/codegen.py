"""Tern x86-64 backend — emit NASM assembly from a resolved program.

Target: Linux x86-64, `nasm -f elf64`, linked with `ld` and entered at
`_start`. No libc; output and termination go through raw syscalls.

Expressions are lowered as a stack machine: every expression leaves exactly
one qword pushed. Variables live at fixed negative offsets from rbp, taken
from the resolver's frame layout.
"""

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
    Grouping,
    Identifier,
    If,
    IntLiteral,
    LetDecl,
    LocalBinding,
    Stmt,
    Unary,
)
from .limits import TREE_FRAMES, recursion_headroom
from .resolve import FunctionInfo, ResolvedProgram

SYS_WRITE: int = 1
SYS_EXIT: int = 60
STDOUT_FD: int = 1
STDERR_FD: int = 2
DIV_BY_ZERO_EXIT: int = 1
DIV_BY_ZERO_MESSAGE: str = "runtime error: division by zero"

_SETCC: dict[str, str] = {
    "==": "sete",
    "!=": "setne",
    "<": "setl",
    "<=": "setle",
    ">": "setg",
    ">=": "setge",
}


class InternalCodegenError(Exception):
    """The backend met a construct it cannot lower. Always a compiler defect."""


def mangle(name: str) -> str:
    """Assembly label for a user function."""
    return "fn_" + name


# Prints rdi as signed decimal followed by a newline.
_DUMP_ROUTINE: list[str] = [
    "dump:",
    "    push rbp",
    "    mov rbp, rsp",
    "    sub rsp, 32",
    "    mov rax, rdi",
    "    lea rsi, [rbp - 1]",
    "    mov byte [rsi], 10",
    "    mov rcx, 1",
    "    mov r8, 10",
    "    xor r9, r9",
    "    test rax, rax",
    "    jns .digits",
    "    neg rax",
    "    mov r9, 1",
    ".digits:",
    "    xor rdx, rdx",
    "    div r8",
    "    add dl, '0'",
    "    dec rsi",
    "    mov [rsi], dl",
    "    inc rcx",
    "    test rax, rax",
    "    jnz .digits",
    "    test r9, r9",
    "    jz .write",
    "    dec rsi",
    "    mov byte [rsi], '-'",
    "    inc rcx",
    ".write:",
    f"    mov rax, {SYS_WRITE}",
    f"    mov rdi, {STDOUT_FD}",
    "    mov rdx, rcx",
    "    syscall",
    "    leave",
    "    ret",
]

_DIV_BY_ZERO_ROUTINE: list[str] = [
    "div_by_zero:",
    f"    mov rax, {SYS_WRITE}",
    f"    mov rdi, {STDERR_FD}",
    "    lea rsi, [rel div_by_zero_msg]",
    "    mov rdx, div_by_zero_len",
    "    syscall",
    f"    mov rdi, {DIV_BY_ZERO_EXIT}",
    f"    mov rax, {SYS_EXIT}",
    "    syscall",
]


class AsmBackend:
    """Emit NASM x86-64 assembly from a ResolvedProgram."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self._label_counter: int = 0
        self._fn: FunctionInfo | None = None
        self._resolved: ResolvedProgram | None = None

    def emit(self, resolved: ResolvedProgram) -> str:
        self.lines = []
        self._label_counter = 0
        self._resolved = resolved
        self._emit_header()
        # Lowering takes more frames per tree level than resolving
        with recursion_headroom(2 * TREE_FRAMES):
            for fn in resolved.functions:
                self._emit_function(fn)
        self._emit_footer(resolved.entry)
        self._emit_data()
        return "\n".join(self.lines) + "\n"

    # ============================================================
    # LINES AND LABELS
    # ============================================================

    def _line(self, text: str = "") -> None:
        self.lines.append(text)

    def _ins(self, text: str) -> None:
        self.lines.append("    " + text)

    def _comment(self, text: str) -> None:
        self.lines.append("; --- " + text + " ---")

    def _new_label(self, kind: str) -> str:
        """Unique local label; the counter spans the whole program."""
        self._label_counter += 1
        return f".L{kind}{self._label_counter}"

    # ============================================================
    # HEADER, FOOTER, DATA
    # ============================================================

    def _emit_header(self) -> None:
        self._line("; Generated by tern - x86-64 NASM backend")
        self._line("global _start")
        self._line("section .text")
        self._comment("runtime: dump")
        for text in _DUMP_ROUTINE:
            self._line(text)
        self._comment("runtime: div_by_zero")
        for text in _DIV_BY_ZERO_ROUTINE:
            self._line(text)

    def _emit_footer(self, entry: FunctionInfo) -> None:
        self._comment("entry")
        self._line("_start:")
        self._ins("call " + mangle(entry.name))
        self._ins("mov rdi, 0")
        self._ins(f"mov rax, {SYS_EXIT}")
        self._ins("syscall")

    def _emit_data(self) -> None:
        self._line("section .rodata")
        self._line(f'div_by_zero_msg: db "{DIV_BY_ZERO_MESSAGE}", 10')
        self._line("div_by_zero_len: equ $ - div_by_zero_msg")

    # ============================================================
    # FUNCTIONS
    # ============================================================

    def _emit_function(self, fn: FunctionInfo) -> None:
        self._fn = fn
        self._comment("func " + fn.name)
        self._line(mangle(fn.name) + ":")
        self._ins("push rbp")
        self._ins("mov rbp, rsp")
        if fn.frame_size > 0:
            self._ins(f"sub rsp, {fn.frame_size}")
        self._emit_block(fn.decl.body)
        self._ins("mov rsp, rbp")
        self._ins("pop rbp")
        self._ins("ret")
        self._fn = None

    def _slot_operand(self, binding: LocalBinding | None, what: str) -> str:
        if binding is None or self._fn is None:
            raise InternalCodegenError("unresolved variable '" + what + "'")
        if binding.slot >= len(self._fn.slots):
            raise InternalCodegenError(
                f"slot {binding.slot} outside frame of '{self._fn.name}'"
            )
        offset = self._fn.slots[binding.slot].offset
        return f"qword [rbp - {-offset}]"

    # ============================================================
    # STATEMENTS
    # ============================================================

    def _emit_block(self, block: Block) -> None:
        for st in block.statements:
            self._emit_stmt(st)

    def _emit_stmt(self, st: Stmt) -> None:
        if isinstance(st, LetDecl):
            target = self._slot_operand(st.binding, st.name)
            if st.init is None:
                self._ins(f"mov {target}, 0")
            else:
                self._emit_expr(st.init)
                self._ins("pop rax")
                self._ins(f"mov {target}, rax")
            return
        if isinstance(st, Assign):
            target = self._slot_operand(st.binding, st.name)
            self._emit_expr(st.value)
            self._ins("pop rax")
            self._ins(f"mov {target}, rax")
            return
        if isinstance(st, If):
            self._emit_if(st)
            return
        if isinstance(st, Dump):
            self._emit_expr(st.value)
            self._ins("pop rdi")
            self._ins("call dump")
            return
        if isinstance(st, Exit):
            self._emit_expr(st.value)
            self._ins("pop rdi")
            self._ins("and rdi, 255")
            self._ins(f"mov rax, {SYS_EXIT}")
            self._ins("syscall")
            return
        if isinstance(st, ExprStmt):
            self._emit_call(st.call)
            return
        raise InternalCodegenError("cannot lower statement " + type(st).__name__)

    def _emit_if(self, st: If) -> None:
        else_label = self._new_label("else")
        end_label = self._new_label("endif")
        self._emit_expr(st.cond)
        self._ins("pop rax")
        self._ins("cmp rax, 0")
        self._ins("je " + else_label)
        self._emit_block(st.then_block)
        self._ins("jmp " + end_label)
        self._line(else_label + ":")
        if st.else_block is not None:
            self._emit_block(st.else_block)
        self._line(end_label + ":")

    def _emit_call(self, call: Call) -> None:
        if call.binding is None or self._resolved is None:
            raise InternalCodegenError("unresolved call to '" + call.name + "'")
        target = self._resolved.function(call.binding)
        self._ins("call " + mangle(target.name))

    # ============================================================
    # EXPRESSIONS
    # ============================================================

    def _emit_expr(self, expr: Expr) -> None:
        if isinstance(expr, IntLiteral):
            self._ins(f"mov rax, {expr.value}")
            self._ins("push rax")
            return
        if isinstance(expr, Identifier):
            self._ins("mov rax, " + self._slot_operand(expr.binding, expr.name))
            self._ins("push rax")
            return
        if isinstance(expr, Grouping):
            self._emit_expr(expr.inner)
            return
        if isinstance(expr, Unary):
            if expr.op != "-":
                raise InternalCodegenError("cannot lower unary operator '" + expr.op + "'")
            self._emit_expr(expr.operand)
            self._ins("pop rax")
            self._ins("neg rax")
            self._ins("push rax")
            return
        if isinstance(expr, Binary):
            if expr.op == "&&" or expr.op == "||":
                self._emit_logical(expr)
            else:
                self._emit_binary(expr)
            return
        if isinstance(expr, Call):
            # Calls have no value; every expression still leaves one push
            self._emit_call(expr)
            self._ins("mov rax, 0")
            self._ins("push rax")
            return
        raise InternalCodegenError("cannot lower expression " + type(expr).__name__)

    def _emit_binary(self, expr: Binary) -> None:
        self._emit_expr(expr.left)
        self._emit_expr(expr.right)
        self._ins("pop rbx")
        self._ins("pop rax")
        op = expr.op
        if op == "+":
            self._ins("add rax, rbx")
        elif op == "-":
            self._ins("sub rax, rbx")
        elif op == "*":
            self._ins("imul rax, rbx")
        elif op == "/":
            self._emit_division()
        elif op in _SETCC:
            self._ins("cmp rax, rbx")
            self._ins(_SETCC[op] + " al")
            self._ins("movzx rax, al")
        else:
            raise InternalCodegenError("cannot lower binary operator '" + op + "'")
        self._ins("push rax")

    def _emit_division(self) -> None:
        """rax / rbx into rax, truncating. idiv faults on INT64_MIN / -1, so -1 negates."""
        idiv_label = self._new_label("div")
        end_label = self._new_label("div_end")
        self._ins("test rbx, rbx")
        self._ins("jz div_by_zero")
        self._ins("cmp rbx, -1")
        self._ins("jne " + idiv_label)
        self._ins("neg rax")
        self._ins("jmp " + end_label)
        self._line(idiv_label + ":")
        self._ins("cqo")
        self._ins("idiv rbx")
        self._line(end_label + ":")

    def _emit_logical(self, expr: Binary) -> None:
        """Lower && and || with branches; the right operand only runs when needed."""
        is_and = expr.op == "&&"
        short_label = self._new_label("and_false" if is_and else "or_true")
        end_label = self._new_label("and_end" if is_and else "or_end")
        short_jump = "je" if is_and else "jne"
        self._emit_expr(expr.left)
        self._ins("pop rax")
        self._ins("cmp rax, 0")
        self._ins(f"{short_jump} {short_label}")
        self._emit_expr(expr.right)
        self._ins("pop rax")
        self._ins("cmp rax, 0")
        self._ins(f"{short_jump} {short_label}")
        self._ins(f"mov rax, {1 if is_and else 0}")
        self._ins("push rax")
        self._ins("jmp " + end_label)
        self._line(short_label + ":")
        self._ins(f"mov rax, {0 if is_and else 1}")
        self._ins("push rax")
        self._line(end_label + ":")


def generate(resolved: ResolvedProgram) -> str:
    """Emit NASM assembly text for a resolved program."""
    return AsmBackend().emit(resolved)
