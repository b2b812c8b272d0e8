"""Syntax Tree Provider — JavaScript source text to a positioned syntax tree.

Thin wrapper over tree-sitter's JavaScript grammar.  tree-sitter never throws
on bad input; it produces a tree containing ERROR / missing nodes instead.
``parse`` turns the first such node into a ``ParseError`` carrying a
human-readable message and a 1-based line / 0-based column location, so the
rest of the package only ever sees valid trees.

Columns are reported in characters, not the UTF-8 byte offsets tree-sitter
works in.  Tree walks here are iterative; nesting depth is limited only by
memory.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import tree_sitter_javascript as tsjavascript
from tree_sitter import Language, Node, Parser, Tree

logger = logging.getLogger(__name__)

# ── Constants ──

JS_LANGUAGE = Language(tsjavascript.language())

# Longest token text quoted back in a parse error message
_TOKEN_PREVIEW_MAX = 20


# ── Exceptions ──


class SyntaxTreeError(Exception):
    """Base exception for syntax tree errors."""


class ParseError(SyntaxTreeError):
    """Source text is not syntactically valid JavaScript.

    Attributes:
        message: Human-readable description, including ``(line:column)``.
        line: 1-based line of the offending token.
        column: 0-based character column of the offending token.
    """

    def __init__(self, message: str, line: int, column: int):
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column

    @property
    def location(self) -> dict:
        return {"line": self.line, "column": self.column}


# ── Helpers ──


def node_line(node: Node) -> int:
    """1-based source line on which ``node`` starts."""
    return node.start_point[0] + 1


def node_text(node: Node) -> str:
    return node.text.decode("utf-8", errors="replace") if node.text else ""


def _char_column(encoded: bytes, byte_offset: int, byte_column: int) -> int:
    """Character column of a tree-sitter position given as byte offsets."""
    line_start = byte_offset - byte_column
    return len(encoded[line_start:byte_offset].decode("utf-8", errors="replace"))


def _start_location(encoded: bytes, node: Node) -> tuple[int, int]:
    row, byte_column = node.start_point[0], node.start_point[1]
    return row + 1, _char_column(encoded, node.start_byte, byte_column)


def _end_location(encoded: bytes, node: Node) -> tuple[int, int]:
    row, byte_column = node.end_point[0], node.end_point[1]
    return row + 1, _char_column(encoded, node.end_byte, byte_column)


def _text_location(text: str, index: int) -> tuple[int, int]:
    """(line, column) of character ``index`` in ``text``."""
    line = text.count("\n", 0, index) + 1
    column = index - (text.rfind("\n", 0, index) + 1)
    return line, column


def max_depth(root: Node) -> tuple[int, Node]:
    """Deepest level of named nodes under ``root`` (root is 1), and that node."""
    deepest, deepest_node = 1, root
    stack: list[tuple[Node, int]] = [(root, 1)]
    while stack:
        node, depth = stack.pop()
        if depth > deepest:
            deepest, deepest_node = depth, node
        stack.extend((child, depth + 1) for child in node.named_children)
    return deepest, deepest_node


# ── Data Classes ──


@dataclass
class SyntaxTree:
    """A successfully parsed program.

    Attributes:
        source: The text that was parsed.
        tree: The underlying tree-sitter tree.
    """

    source: str
    tree: Tree

    @property
    def root(self) -> Node:
        return self.tree.root_node

    def location_of(self, node: Node) -> dict:
        """``{"line", "column"}`` of ``node``'s start, column in characters."""
        line, column = _start_location(self.source.encode("utf-8"), node)
        return {"line": line, "column": column}

    def to_dict(self) -> dict:
        """Render the tree as nested dicts of node types and positions."""
        encoded = self.source.encode("utf-8")
        result: dict = {}
        stack: list[tuple[Node, dict]] = [(self.root, result)]
        while stack:
            node, out = stack.pop()
            start_line, start_column = _start_location(encoded, node)
            end_line, end_column = _end_location(encoded, node)
            out["type"] = node.type
            out["start"] = {"line": start_line, "column": start_column}
            out["end"] = {"line": end_line, "column": end_column}
            children = node.named_children
            if children:
                out["children"] = [{} for _ in children]
                stack.extend(zip(reversed(children), reversed(out["children"])))
            else:
                out["text"] = node_text(node)
        return result


def _first_error(root: Node) -> Optional[Node]:
    """First ERROR or missing node in source order (pre-order walk)."""
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            return node
        stack.extend(
            child for child in reversed(node.children)
            if child.has_error or child.is_missing
        )
    return None


def _describe_error(node: Node, line: int, column: int) -> str:
    if node.is_missing:
        return f"Expected '{node.type}' ({line}:{column})"
    leaf = node
    while leaf.children:
        leaf = leaf.children[0]
    token = node_text(leaf).strip()
    if token and len(token) <= _TOKEN_PREVIEW_MAX:
        return f"Unexpected token '{token}' ({line}:{column})"
    return f"Unexpected token ({line}:{column})"


# ── Parsing ──


def parse(source: str) -> SyntaxTree:
    """Parse JavaScript ``source`` into a ``SyntaxTree``.

    A fresh ``Parser`` is built per call, so concurrent analyses never share
    parser state.

    Raises ParseError if the source contains any syntax error, or a
    character that cannot be encoded as UTF-8 (a lone surrogate).
    """
    try:
        encoded = source.encode("utf-8")
    except UnicodeEncodeError as exc:
        line, column = _text_location(source, exc.start)
        message = f"Invalid character '\\u{ord(source[exc.start]):04x}' ({line}:{column})"
        logger.debug("Parse failed: %s", message)
        raise ParseError(message, line, column) from None

    parser = Parser(JS_LANGUAGE)
    tree = parser.parse(encoded)
    root = tree.root_node
    if root.has_error:
        bad = _first_error(root) or root
        line, column = _start_location(encoded, bad)
        message = _describe_error(bad, line, column)
        logger.debug("Parse failed: %s", message)
        raise ParseError(message, line, column)
    return SyntaxTree(source=source, tree=tree)
