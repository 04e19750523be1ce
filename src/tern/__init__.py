"""Tern toolchain — public API."""

from __future__ import annotations

from .ast import Program
from .codegen import InternalCodegenError as InternalCodegenError, generate
from .parse import ParseError as ParseError, Parser
from .resolve import (
    DuplicateFunction as DuplicateFunction,
    MissingEntryPoint as MissingEntryPoint,
    RedeclaredVariable as RedeclaredVariable,
    ResolveError as ResolveError,
    ResolvedProgram,
    UndeclaredFunction as UndeclaredFunction,
    UndeclaredVariable as UndeclaredVariable,
    resolve as resolve_program,
)
from .runtime import (
    DEFAULT_MAX_CALL_DEPTH,
    DivisionByZero as DivisionByZero,
    RunResult as RunResult,
    RuntimeFault as RuntimeFault,
    StackOverflow as StackOverflow,
    run as run_resolved,
)
from .tokens import LexError as LexError, TokenStream as TokenStream, tokenize as tokenize


def parse(source: str) -> Program:
    """Parse Tern source code into a Program AST."""
    return Parser(tokenize(source)).parse_program()


def resolve(source: str) -> ResolvedProgram:
    """Parse and resolve Tern source."""
    return resolve_program(parse(source))


def run(source: str, *, max_call_depth: int = DEFAULT_MAX_CALL_DEPTH) -> RunResult:
    """Parse, resolve and interpret Tern source."""
    return run_resolved(resolve(source), max_call_depth=max_call_depth)


def compile_program(source: str) -> str:
    """Parse, resolve and emit x86-64 NASM assembly for Tern source."""
    return generate(resolve(source))
