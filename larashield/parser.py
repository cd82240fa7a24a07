"""PHP source parsing on top of tree-sitter."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import tree_sitter_php as tsphp
from tree_sitter import Language, Node, Parser, Tree

from larashield.errors import ParseError

logger = logging.getLogger(__name__)

PHP_LANG = Language(tsphp.language_php())


@dataclass
class SourceFile:
    """A parsed PHP file. The tree is owned by this object and never shared."""
    path: str
    source: str
    tree: Tree
    lines: List[str] = field(default_factory=list)

    @property
    def root(self) -> Node:
        return self.tree.root_node

    def line(self, number: int) -> str:
        """1-based source line, or an empty string when out of range."""
        if 1 <= number <= len(self.lines):
            return self.lines[number - 1]
        return ""


def _first_error_line(node: Node) -> Optional[int]:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type == "ERROR" or current.is_missing:
            return current.start_point[0] + 1
        if current.has_error:
            stack.extend(reversed(current.children))
    return None


def _parse_tree(source: str, path: str = None) -> Tree:
    parser = Parser(PHP_LANG)
    tree = parser.parse(source.encode("utf-8"))
    if tree.root_node.has_error:
        line = _first_error_line(tree.root_node)
        where = f"{path}:{line}" if path else f"line {line}"
        raise ParseError(f"Syntax error at {where}", path=path, line=line)
    return tree


def parse_php(source: str) -> Node:
    """Parse PHP source text and return the root node.

    Raises:
        ParseError: if tree-sitter reports any syntax error in the tree.
    """
    return _parse_tree(source).root_node


def parse_source(source: str, path: str = "<string>") -> SourceFile:
    tree = _parse_tree(source, path)
    return SourceFile(path=path, source=source, tree=tree, lines=source.splitlines())


def parse_file(path: Union[str, Path]) -> SourceFile:
    """Read and parse a PHP file.

    Raises:
        ParseError: on unreadable files and syntax errors.
    """
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            source = f.read()
    except (IOError, OSError) as e:
        raise ParseError(f"Cannot read {path}: {e}", path=str(path)) from e
    return parse_source(source, str(path))
