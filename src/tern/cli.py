"""Tern CLI — simulate or compile .tern files."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from .codegen import generate
from .driver import Toolchain, ToolchainError, build_executable, run_executable
from .dump import format_tokens, format_tree
from .parse import ParseError, Parser
from .resolve import ResolvedProgram, ResolveError, resolve
from .runtime import RuntimeFault, run
from .tokens import LexError, tokenize

logger = logging.getLogger(__name__)

USAGE: str = """\
tern MODE FILE [OPTIONS]

Modes:
  sim                 Interpret the program directly
  com                 Compile to a native executable (nasm + ld)

Options:
  -o, --output PATH   Executable path for com (default: FILE without suffix)
  -r, --run           com: run the executable after linking
  -a, --assembly      com: keep the intermediate .asm file
  -t, --tokens        Print tokens to stderr
  -pt, --parse-tree   Print the parse tree to stderr
  -v, --verbose       Log pipeline progress to stderr
  -h, --help          Show this help message

Environment:
  TERN_NASM, TERN_LD  Assembler and linker to use (default: nasm, ld)
"""

MODES: list[str] = ["sim", "com"]


def main(argv: list[str] | None = None) -> int:
    args = argv if argv is not None else sys.argv[1:]
    mode: str = ""
    filepath: str = ""
    output: str = ""
    run_after = False
    keep_asm = False
    show_tokens = False
    show_tree = False
    verbose = False
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--help" or arg == "-h":
            print(USAGE, end="")
            return 0
        elif arg == "-o" or arg == "--output":
            if i + 1 >= len(args):
                print("tern: " + arg + " requires a path", file=sys.stderr)
                return 2
            output = args[i + 1]
            i += 2
        elif arg == "-r" or arg == "--run":
            run_after = True
            i += 1
        elif arg == "-a" or arg == "--assembly":
            keep_asm = True
            i += 1
        elif arg == "-t" or arg == "--tokens":
            show_tokens = True
            i += 1
        elif arg == "-pt" or arg == "--parse-tree":
            show_tree = True
            i += 1
        elif arg == "-v" or arg == "--verbose":
            verbose = True
            i += 1
        elif arg.startswith("-"):
            print("tern: unknown flag '" + arg + "'", file=sys.stderr)
            return 2
        elif mode == "":
            if arg not in MODES:
                print("tern: unknown mode '" + arg + "' (expected sim or com)", file=sys.stderr)
                return 2
            mode = arg
            i += 1
        elif filepath == "":
            filepath = arg
            i += 1
        else:
            print("tern: unexpected argument '" + arg + "'", file=sys.stderr)
            return 2
    if mode == "":
        print(USAGE, end="", file=sys.stderr)
        return 2
    if filepath == "":
        print("tern: missing file argument", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        with open(filepath, "rb") as f:
            raw = f.read()
    except FileNotFoundError:
        print("tern: " + filepath + ": No such file or directory", file=sys.stderr)
        return 1
    except OSError as e:
        print("tern: " + filepath + ": " + str(e), file=sys.stderr)
        return 1
    try:
        source = raw.decode("utf-8")
    except ValueError:
        print("tern: " + filepath + ": invalid utf-8", file=sys.stderr)
        return 1

    try:
        tokens = tokenize(source)
        logger.info("lexed %d tokens", len(tokens))
        if show_tokens:
            sys.stderr.write(format_tokens(tokens))
        program = Parser(tokens).parse_program()
        logger.info("parsed %d functions", len(program.functions))
        if show_tree:
            sys.stderr.write(format_tree(program))
        resolved = resolve(program)
    except LexError as e:
        print("tern: lex error: " + str(e), file=sys.stderr)
        return 1
    except ParseError as e:
        print("tern: parse error: " + str(e), file=sys.stderr)
        return 1
    except ResolveError as e:
        print("tern: resolve error: " + str(e), file=sys.stderr)
        return 1

    if mode == "sim":
        return _simulate(resolved)

    exe_path = output if output != "" else str(Path(filepath).with_suffix(""))
    if exe_path == filepath:
        exe_path = filepath + ".out"
    try:
        build_executable(
            generate(resolved), exe_path, toolchain=Toolchain.from_env(), keep_asm=keep_asm
        )
    except ToolchainError as e:
        print("tern: toolchain error: " + str(e), file=sys.stderr)
        return 1
    if not run_after:
        return 0
    result = run_executable(exe_path)
    sys.stdout.buffer.write(result.stdout)
    sys.stderr.buffer.write(result.stderr)
    code = result.returncode
    if code < 0:
        # Killed by a signal; report it the way a shell does
        code = 128 - code
    logger.info("exit code %d", code)
    return code


def _simulate(resolved: ResolvedProgram) -> int:
    try:
        result = run(resolved)
    except RuntimeFault as e:
        sys.stdout.buffer.write(e.stdout)
        print("tern: runtime error: " + str(e), file=sys.stderr)
        return 1
    sys.stdout.buffer.write(result.stdout)
    logger.info("exit code %d", result.exit_code)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
