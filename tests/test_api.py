"""Tests for the public Python API: tokens, trees, bindings and runtime."""

import sys

import pytest

from tern import (
    DivisionByZero,
    LexError,
    MissingEntryPoint,
    ParseError,
    RedeclaredVariable,
    ResolveError,
    RuntimeFault,
    StackOverflow,
    TokenStream,
    UndeclaredFunction,
    UndeclaredVariable,
    compile_program,
    parse,
    resolve,
    run,
    tokenize,
)
from tern import runtime
from tern.ast import (
    Binary,
    Block,
    Dump,
    ExprStmt,
    FunctionBinding,
    Grouping,
    Identifier,
    If,
    IntLiteral,
    LetDecl,
    LocalBinding,
    Pos,
    Unary,
)
from tern.driver import Toolchain
from tern.dump import format_tokens, format_tree
from tern.limits import MAX_NESTING
from tern.resolve import Resolver, frame_size, resolve as resolve_program, slot_offset
from tern.runtime import DEFAULT_MAX_CALL_DEPTH, wrap64
from tern.tokens import TK_EOF, TK_IDENT, TK_INT, TK_KEYWORD, TK_OP, TK_PUNCT


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def test_token_stream_is_restartable():
    stream = TokenStream("func main { dump 1 <= 2; }")
    first = list(stream)
    second = list(stream)
    assert first == second
    assert first[-1].kind == TK_EOF


def test_token_kinds_and_positions():
    tokens = tokenize("func main {\n  let x = 42;\n}")
    kinds = [(t.kind, t.value, t.line, t.col) for t in tokens]
    assert kinds == [
        (TK_KEYWORD, "func", 1, 1),
        (TK_IDENT, "main", 1, 6),
        (TK_PUNCT, "{", 1, 11),
        (TK_KEYWORD, "let", 2, 3),
        (TK_IDENT, "x", 2, 7),
        (TK_OP, "=", 2, 9),
        (TK_INT, "42", 2, 11),
        (TK_PUNCT, ";", 2, 13),
        (TK_PUNCT, "}", 3, 1),
        (TK_EOF, "", 3, 2),
    ]


def test_two_character_operators_win():
    values = [t.value for t in tokenize("a<=b>=c==d!=e&&f||g")]
    assert values == ["a", "<=", "b", ">=", "c", "==", "d", "!=", "e", "&&", "f", "||", "g", ""]


def test_reserved_else_if_is_one_keyword():
    tokens = tokenize("if* if *")
    assert (tokens[0].kind, tokens[0].value) == (TK_KEYWORD, "if*")
    assert (tokens[1].kind, tokens[1].value) == (TK_KEYWORD, "if")
    assert (tokens[2].kind, tokens[2].value) == (TK_OP, "*")


def test_lex_error_position():
    with pytest.raises(LexError) as exc:
        tokenize("let a = 1;\nlet b = #;")
    assert (exc.value.line, exc.value.col, exc.value.char) == (2, 9, "#")
    assert str(exc.value).endswith("at line 2 col 9")


def test_format_tokens():
    assert format_tokens(tokenize("let x;")) == (
        "[1:1] KEYWORD 'let'\n[1:5] IDENT 'x'\n[1:6] PUNCT ';'\n[1:7] EOF ''\n"
    )


# ---------------------------------------------------------------------------
# Parse trees
# ---------------------------------------------------------------------------


def test_precedence_shapes_the_tree():
    program = parse("func main { dump 1 + 2 * 3; }")
    value = program.functions[0].body.statements[0].value
    assert isinstance(value, Binary) and value.op == "+"
    assert isinstance(value.right, Binary) and value.right.op == "*"


def test_left_associativity():
    value = parse("func main { dump 10 - 3 - 2; }").functions[0].body.statements[0].value
    assert value.op == "-"
    assert isinstance(value.left, Binary)
    assert value.right == IntLiteral(value.right.pos, 2)


def test_unary_and_grouping():
    value = parse("func main { dump -(1); }").functions[0].body.statements[0].value
    assert isinstance(value, Unary)
    assert isinstance(value.operand, Grouping)


def test_else_if_nests_an_if_in_the_else_block():
    stmt = parse("func main { if 1 { } else if 2 { } else { dump 3; } }").functions[0].body.statements[0]
    assert isinstance(stmt, If)
    assert isinstance(stmt.else_block, Block)
    assert len(stmt.else_block.statements) == 1
    nested = stmt.else_block.statements[0]
    assert isinstance(nested, If)
    assert isinstance(nested.else_block.statements[0], Dump)


def test_parse_error_details():
    with pytest.raises(ParseError) as exc:
        parse("func main { let = 1; }")
    assert exc.value.expected == "identifier"
    assert exc.value.found == "="
    assert (exc.value.line, exc.value.col) == (1, 17)


def nested_parens(depth: int) -> str:
    return "(" * depth + "1" + ")" * depth


def test_deep_grouping_parses_and_runs():
    source = "func main { dump " + nested_parens(300) + "; }"
    assert run(source).stdout == b"1\n"
    assert "call dump" in compile_program(source)


def test_long_unary_chain_runs():
    assert run("func main { dump " + "- " * 301 + "1; }").stdout == b"-1\n"


def test_long_operator_chain_runs():
    source = "func main { dump " + " + ".join(["1"] * 5000) + "; }"
    assert run(source).stdout == b"5000\n"
    assert compile_program(source).count("add rax, rbx") == 4999


def test_long_else_if_chain_runs():
    source = "func main { if 0 { } " + "else if 0 { } " * 500 + "else { dump 7; } }"
    assert run(source).stdout == b"7\n"


@pytest.mark.parametrize(
    "body,what",
    [
        ("dump " + nested_parens(MAX_NESTING) + ";", "expression"),
        ("dump " + "- " * MAX_NESTING + "1;", "expression"),
        ("if 1 { " * MAX_NESTING + "}" * MAX_NESTING, "block"),
        ("if 0 { } " + "else if 0 { } " * MAX_NESTING, "else-if chain"),
    ],
)
def test_nesting_limit_is_a_parse_error(body, what):
    with pytest.raises(ParseError) as exc:
        parse("func main { " + body + " }")
    assert exc.value.msg == what + " nested too deeply"


def test_nesting_error_points_at_the_first_level_too_deep():
    with pytest.raises(ParseError) as exc:
        parse("func main { dump " + nested_parens(MAX_NESTING + 5) + "; }")
    # The function body counts as one level
    assert (exc.value.line, exc.value.col) == (1, 17 + MAX_NESTING)
    assert exc.value.found == "("


def test_format_tree():
    assert format_tree(parse("func main { let x = 1 + 2; if x { f(); } else { dump -x; } } func f { }")) == (
        "Program\n"
        "    FunctionDecl `main`\n"
        "        Block\n"
        "            LetDecl `x`\n"
        "                Binary `+`\n"
        "                    IntLiteral `1`\n"
        "                    IntLiteral `2`\n"
        "            If\n"
        "                Identifier `x`\n"
        "                Block\n"
        "                    ExprStmt\n"
        "                        Call `f`\n"
        "                Else\n"
        "                    Block\n"
        "                        Dump\n"
        "                            Unary `-`\n"
        "                                Identifier `x`\n"
        "    FunctionDecl `f`\n"
        "        Block\n"
    )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def test_bindings_are_attached():
    resolved = resolve("func main { let x = 1; if 1 { let x = 2; dump x; } dump x; helper(); } func helper { }")
    body = resolved.entry.decl.body.statements
    outer, branch, dump_outer, call = body
    assert outer.binding == LocalBinding(0, 1)
    inner = branch.then_block.statements[0]
    assert isinstance(inner, LetDecl)
    assert inner.binding == LocalBinding(1, 2)
    assert branch.then_block.statements[1].value.binding == LocalBinding(1, 2)
    assert isinstance(dump_outer.value, Identifier)
    assert dump_outer.value.binding == LocalBinding(0, 1)
    assert isinstance(call, ExprStmt)
    assert call.call.binding == FunctionBinding(1, "helper")
    assert resolved.function(call.call.binding).name == "helper"


def test_assignment_binds_to_innermost_declaration():
    resolved = resolve("func main { let a; if 1 { let a; a = 1; } a = 2; }")
    stmts = resolved.entry.decl.body.statements
    assert stmts[1].then_block.statements[1].binding.slot == 1
    assert stmts[2].binding.slot == 0


def test_frame_layout():
    resolved = resolve("func main { let a; if 1 { let b; } if 1 { let c; } }")
    main = resolved.entry
    assert [s.name for s in main.slots] == ["a", "b", "c"]
    assert [s.offset for s in main.slots] == [-8, -16, -24]
    assert [s.depth for s in main.slots] == [1, 2, 2]
    assert main.frame_size == 32


@pytest.mark.parametrize("count,size", [(0, 0), (1, 16), (2, 16), (3, 32), (4, 32), (5, 48)])
def test_frame_size(count, size):
    assert frame_size(count) == size


def test_slot_offsets_are_negative_and_distinct():
    offsets = [slot_offset(i) for i in range(6)]
    assert offsets == [-8, -16, -24, -32, -40, -48]


def test_functions_keep_source_order():
    resolved = resolve("func b { } func main { } func a { }")
    assert [f.name for f in resolved.functions] == ["b", "main", "a"]
    assert resolved.entry.index == 1


@pytest.mark.parametrize(
    "source,error",
    [
        ("func main { dump x; }", UndeclaredVariable),
        ("func main { let x; let x; }", RedeclaredVariable),
        ("func main { g(); }", UndeclaredFunction),
        ("func helper { }", MissingEntryPoint),
    ],
)
def test_resolve_error_types(source, error):
    with pytest.raises(error) as exc:
        resolve(source)
    assert isinstance(exc.value, ResolveError)


def test_resolve_error_position():
    with pytest.raises(UndeclaredVariable) as exc:
        resolve("func main {\n    dump 1 + y;\n}")
    assert (exc.value.line, exc.value.col) == (2, 14)


def test_resolved_tree_compares_equal_to_fresh_parse():
    source = "func main { let x = 1; dump x; }"
    assert resolve(source).program == parse(source)


def test_failed_resolve_leaves_no_bindings():
    # main resolves completely before helper fails
    program = parse("func main { let x = 1; dump x; x = 2; helper(); } func helper { dump y; }")
    with pytest.raises(UndeclaredVariable):
        resolve_program(program)
    let, dump, assign, call = program.functions[0].body.statements
    assert let.binding is None
    assert dump.value.binding is None
    assert assign.binding is None
    assert call.call.binding is None


def test_missing_entry_point_leaves_no_bindings():
    program = parse("func helper { let a; dump a; }")
    with pytest.raises(MissingEntryPoint):
        resolve_program(program)
    let, dump = program.functions[0].body.statements
    assert let.binding is None
    assert dump.value.binding is None


def test_scope_misuse_is_an_internal_error():
    resolver = Resolver()
    with pytest.raises(RuntimeError, match="without an open scope"):
        resolver.exit_scope()
    with pytest.raises(RuntimeError, match="outside a function scope"):
        resolver.declare("x", Pos(1, 1))


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------


def test_run_result():
    result = run("func main { dump 1; dump 2; exit 258; }")
    assert result.exit_code == 2
    assert result.stdout == b"1\n2\n"


def test_main_returning_exits_zero():
    assert run("func main { }").exit_code == 0


def test_division_by_zero_fault():
    with pytest.raises(DivisionByZero) as exc:
        run("func main { dump 3; let z = 0; dump 1 / z; }")
    assert isinstance(exc.value, RuntimeFault)
    assert exc.value.stdout == b"3\n"
    assert (exc.value.pos.line, exc.value.pos.col) == (1, 37)


def test_call_depth_limit():
    source = "func main { a(); } func a { b(); } func b { dump 1; }"
    assert run(source, max_call_depth=3).stdout == b"1\n"
    with pytest.raises(StackOverflow):
        run(source, max_call_depth=2)


def test_default_depth_stops_unbounded_recursion():
    with pytest.raises(StackOverflow) as exc:
        run("func main { dump 0; main(); }")
    assert exc.value.stdout == b"0\n" * DEFAULT_MAX_CALL_DEPTH


def call_chain(length: int) -> str:
    """main calls f0, each fN calls fN+1, and the last one dumps the length."""
    funcs = ["func main { f0(); }"]
    funcs += [f"func f{i} {{ f{i + 1}(); }}" for i in range(length - 1)]
    funcs.append(f"func f{length - 1} {{ dump {length}; }}")
    return "\n".join(funcs)


@pytest.mark.parametrize("length", [200, 3000])
def test_default_depth_allows_long_call_chains(length):
    assert run(call_chain(length)).stdout == f"{length}\n".encode()


def test_interpreter_stack_exhaustion_is_a_stack_overflow(monkeypatch):
    monkeypatch.setattr(runtime, "FRAMES_PER_CALL", 1)
    monkeypatch.setattr(runtime, "TREE_FRAMES", 0)
    with pytest.raises(StackOverflow) as exc:
        run("func main { dump 0; main(); }")
    assert exc.value.msg == "call depth exceeded the interpreter stack"
    assert exc.value.stdout.startswith(b"0\n0\n")


def test_recursion_limit_is_restored():
    limit = sys.getrecursionlimit()
    run(call_chain(50))
    run("func main { exit 3; }")
    with pytest.raises(StackOverflow):
        run("func main { main(); }")
    with pytest.raises(ParseError):
        parse("func main { dump " + nested_parens(MAX_NESTING) + "; }")
    with pytest.raises(UndeclaredVariable):
        resolve("func main { dump " + nested_parens(50) + " + z; }")
    assert sys.getrecursionlimit() == limit


@pytest.mark.parametrize(
    "value,wrapped",
    [
        (0, 0),
        (2**63 - 1, 2**63 - 1),
        (2**63, -(2**63)),
        (-(2**63) - 1, 2**63 - 1),
        (2**64 + 5, 5),
        (-1, -1),
    ],
)
def test_wrap64(value, wrapped):
    assert wrap64(value) == wrapped


def test_call_value_is_zero():
    assert run("func main { dump f(); } func f { }").stdout == b"0\n"


# ---------------------------------------------------------------------------
# Toolchain configuration
# ---------------------------------------------------------------------------


def test_toolchain_defaults():
    tools = Toolchain.from_env({})
    assert (tools.nasm, tools.ld) == ("nasm", "ld")


def test_toolchain_from_env():
    tools = Toolchain.from_env({"TERN_NASM": "/opt/nasm", "TERN_LD": "/opt/ld.lld"})
    assert (tools.nasm, tools.ld) == ("/opt/nasm", "/opt/ld.lld")
