"""Hierarchical metadata trees with deep merge."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Leaf:
    """Terminal metadata value (scalar, list or empty mapping)."""
    value: Any


@dataclass
class Node:
    """Non-empty metadata mapping."""
    children: dict[str, Union["Node", Leaf]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert back to a plain nested dict."""
        return {
            key: child.to_dict() if isinstance(child, Node) else child.value
            for key, child in self.children.items()
        }


MetadataTree = Union[Node, Leaf]


def to_tree(value: Any) -> MetadataTree:
    """
    Convert a plain value into its tagged representation.

    Non-empty mappings become nodes, everything else becomes a leaf.
    None values inside mappings are dropped.
    """
    if isinstance(value, Mapping) and value:
        return Node({
            str(key): to_tree(child)
            for key, child in value.items()
            if child is not None
        })
    return Leaf(value)


def merge_nodes(source: Node, destination: Node) -> Node:
    """
    Deep-merge source into a copy of destination.

    Where both sides hold a node for the same key the merge recurses,
    otherwise the source value wins.
    """
    merged = dict(destination.children)
    for key, child in source.children.items():
        existing = merged.get(key)
        if isinstance(child, Node) and isinstance(existing, Node):
            merged[key] = merge_nodes(child, existing)
        else:
            merged[key] = child
    return Node(merged)


def place_in_path(value: Any, path: Any) -> Any:
    """
    Build a nested skeleton with value at the end of path.

    place_in_path("x", ["first", "second"]) == {"first": {"second": "x"}}

    Args:
        value: Value to place at the innermost level
        path: A single key or a list of keys (None segments are skipped)

    Returns:
        Nested dict, or value itself for an empty path
    """
    if not isinstance(path, (list, tuple)):
        path = [path]

    nested = value
    for key in reversed(path):
        if key is None:
            continue
        nested = {key: nested}
    return nested


class MetadataStore:
    """
    Holds one hierarchical metadata mapping.

    The store only grows through merge() and is replaced through reset();
    None leaves are never stored.
    """

    def __init__(self, tree: Mapping[str, Any] | None = None) -> None:
        self._root = Node()
        if tree is not None:
            self.merge(tree)

    def merge(self, tree: Any) -> None:
        """Deep-merge tree into the store. Non-mapping input is ignored."""
        incoming = to_tree(tree)
        if not isinstance(incoming, Node):
            return
        self._root = merge_nodes(incoming, self._root)

    def collect(self) -> dict[str, Any]:
        """Return the merged tree as a plain dict."""
        return self._root.to_dict()

    def reset(self, tree: Mapping[str, Any] | None = None) -> None:
        """Discard all state and start again from tree."""
        self._root = Node()
        if tree is not None:
            self.merge(tree)

    def __bool__(self) -> bool:
        return bool(self._root.children)

    def __repr__(self) -> str:
        return f"MetadataStore({self.collect()!r})"
