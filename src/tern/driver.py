"""Tern driver — turn generated assembly into a native executable.

Runs the external assembler and linker as subprocesses. Tool paths default
to `nasm` and `ld` on PATH and can be overridden with TERN_NASM / TERN_LD.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from . import compile_program

logger = logging.getLogger(__name__)


class ToolchainError(Exception):
    """The assembler or linker is missing or failed."""

    def __init__(self, msg: str, stderr: str = ""):
        self.msg: str = msg
        self.stderr: str = stderr
        if stderr:
            super().__init__(msg + ":\n" + stderr)
        else:
            super().__init__(msg)


@dataclass
class Toolchain:
    nasm: str = "nasm"
    ld: str = "ld"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Toolchain:
        source = os.environ if env is None else env
        return cls(
            nasm=source.get("TERN_NASM", "nasm"),
            ld=source.get("TERN_LD", "ld"),
        )

    def assemble(self, asm_path: Path, obj_path: Path) -> None:
        _invoke([self.nasm, "-f", "elf64", "-o", str(obj_path), str(asm_path)], "assembler")

    def link(self, obj_path: Path, exe_path: Path) -> None:
        _invoke([self.ld, "-o", str(exe_path), str(obj_path)], "linker")


def _invoke(cmd: Sequence[str], role: str) -> None:
    logger.info("calling `%s`", " ".join(cmd))
    try:
        result = subprocess.run(list(cmd), capture_output=True, text=True)
    except FileNotFoundError as e:
        raise ToolchainError(f"{role} not found: {cmd[0]}") from e
    if result.returncode != 0:
        raise ToolchainError(
            f"{role} failed with exit code {result.returncode}", result.stderr.strip()
        )
    if result.stderr.strip():
        logger.warning("%s: %s", role, result.stderr.strip())


def compile_source(
    source: str,
    output: str | Path,
    *,
    toolchain: Toolchain | None = None,
    keep_asm: bool = False,
) -> Path:
    """Compile source text into a native executable at `output`."""
    return build_executable(
        compile_program(source), output, toolchain=toolchain, keep_asm=keep_asm
    )


def build_executable(
    asm: str,
    output: str | Path,
    *,
    toolchain: Toolchain | None = None,
    keep_asm: bool = False,
) -> Path:
    """Assemble and link generated assembly. `<output>.asm` is kept only if asked."""
    tools = toolchain if toolchain is not None else Toolchain.from_env()
    exe_path = Path(output)
    asm_path = exe_path.with_name(exe_path.name + ".asm")
    obj_path = exe_path.with_name(exe_path.name + ".o")

    asm_path.write_text(asm, encoding="utf-8")
    logger.info("wrote %s", asm_path)
    try:
        tools.assemble(asm_path, obj_path)
        tools.link(obj_path, exe_path)
    finally:
        if obj_path.exists():
            obj_path.unlink()
        if not keep_asm:
            asm_path.unlink()
        else:
            logger.info("kept %s", asm_path)
    logger.info("compiled %s", exe_path)
    return exe_path


def run_executable(path: str | Path) -> subprocess.CompletedProcess[bytes]:
    """Run a compiled program, capturing stdout and stderr."""
    exe = Path(path).resolve()
    logger.info("running %s", exe)
    return subprocess.run([str(exe)], capture_output=True)
