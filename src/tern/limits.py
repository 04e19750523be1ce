"""Recursion limits for the phases that walk the AST.

The parser, resolver, backend and interpreter all recurse over the tree, and
the interpreter also recurses once per Tern call. Each phase raises Python's
recursion limit for its own duration and restores it afterwards. The parser
rejects nesting past MAX_NESTING, which bounds its own recursion.
"""

from __future__ import annotations

import sys
from contextlib import contextmanager
from typing import Iterator

# Parens, unary minus, blocks and else-if arms, counted together
MAX_NESTING: int = 1000

# Python frames the parser may spend on one nesting level
FRAMES_PER_NESTING: int = 16

# Python frames the interpreter may spend on one Tern call
FRAMES_PER_CALL: int = 16

# Operator chains deepen the tree without nesting, so later phases get more
TREE_FRAMES: int = 100_000


@contextmanager
def recursion_headroom(frames: int) -> Iterator[None]:
    """Allow `frames` more Python frames than the current limit inside the block."""
    previous = sys.getrecursionlimit()
    sys.setrecursionlimit(previous + frames)
    try:
        yield
    finally:
        sys.setrecursionlimit(previous)
