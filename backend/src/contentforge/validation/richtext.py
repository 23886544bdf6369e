"""Rich text trees and the derivations computed from them.

Rich text is stored as a tree of typed nodes:

    [{"type": "paragraph", "children": [{"type": "text", "text": "Hi"}]}]

or wrapped editor-style as {"root": {"type": "root", "children": [...]}}.
Everything here is pure and deterministic so it can run inside hooks
without affecting hook ordering.
"""

import math
from typing import Any

DEFAULT_EXCERPT_LENGTH = 200
DEFAULT_WORDS_PER_MINUTE = 200


def root_nodes(tree: Any) -> list[Any] | None:
    """Return the top-level block list of a rich text value.

    Returns None if the value is not a recognisable rich text tree.
    """
    if isinstance(tree, list):
        return tree
    if isinstance(tree, dict):
        root = tree.get("root")
        if isinstance(root, dict):
            children = root.get("children", [])
            return children if isinstance(children, list) else None
        if isinstance(tree.get("type"), str):
            return [tree]
    return None


def node_problems(node: Any, path: str) -> list[str]:
    """Structural problems of a node and its descendants (empty if valid)."""
    if not isinstance(node, dict):
        return [f"{path}: node must be an object"]
    if not isinstance(node.get("type"), str):
        return [f"{path}: node is missing a 'type'"]

    problems: list[str] = []
    if node["type"] == "text" and not isinstance(node.get("text", ""), str):
        problems.append(f"{path}: text node 'text' must be a string")

    children = node.get("children")
    if children is None:
        return problems
    if not isinstance(children, list):
        problems.append(f"{path}: 'children' must be a list")
        return problems
    for i, child in enumerate(children):
        problems.extend(node_problems(child, f"{path}.{i}"))
    return problems


def _node_text(node: Any) -> str:
    if not isinstance(node, dict):
        return ""
    if node.get("type") == "text":
        text = node.get("text")
        return text if isinstance(text, str) else ""
    children = node.get("children")
    if not isinstance(children, list):
        return ""
    return "".join(_node_text(child) for child in children)


def extract_plain_text(tree: Any) -> str:
    """Concatenate all text node contents, depth-first.

    Text inside a block is joined as-is; top-level blocks are separated by a
    single space. Blocks without text are skipped.
    """
    nodes = root_nodes(tree) or []
    blocks = [_node_text(node) for node in nodes]
    return " ".join(block for block in blocks if block)


def is_empty(tree: Any) -> bool:
    if tree is None:
        return True
    nodes = root_nodes(tree)
    return nodes is not None and len(nodes) == 0


def make_excerpt(text: str, length: int = DEFAULT_EXCERPT_LENGTH) -> str:
    """Truncate text to length characters, marking truncation with '...'."""
    if len(text) <= length:
        return text
    return text[:length] + "..."


def reading_time_minutes(
    text: str, words_per_minute: int = DEFAULT_WORDS_PER_MINUTE
) -> int:
    """Whole minutes needed to read text, rounded up; 0 for empty text."""
    words = len(text.split())
    if words == 0:
        return 0
    return math.ceil(words / words_per_minute)
