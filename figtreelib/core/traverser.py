"""Depth-first traversal of document trees.

The traversal engine walks a node tree pre-order, in source child order,
and hands every node to a visitor together with its depth and the names of
its ancestors::

    root                depth 0, path ()
      A                 depth 1, path ('root',)
        B               depth 2, path ('root', 'A')
        C               depth 2, path ('root', 'A')

Visitors implement a single ``visit_node(node, depth, path)`` method, so
text extraction, statistics and search can all share one walker.
"""

from typing import Callable, Iterable, Iterator, List, Optional, Protocol, Tuple

from .document import Document
from .node import Node, NodeType


Path = Tuple[str, ...]


class NodeVisitor(Protocol):
    """Anything with a ``visit_node`` method can be passed to a traversal."""

    def visit_node(self, node: Node, depth: int, path: Path) -> None:
        ...


class FunctionVisitor:
    """Adapt a plain callable ``fn(node, depth, path)`` to ``NodeVisitor``."""

    def __init__(self, fn: Callable[[Node, int, Path], None]):
        self.fn = fn

    def visit_node(self, node: Node, depth: int, path: Path) -> None:
        self.fn(node, depth, path)


def traverse(root: Node, visitor: NodeVisitor, max_depth: Optional[int] = None) -> None:
    """Visit ``root`` and all of its descendants depth-first, pre-order.

    The ancestor path is extended with a node's name only when that node
    has children to descend into. The tree is never modified, so the same
    tree can be traversed any number of times.

    Args:
        root: Node to start from (visited at depth 0 with an empty path)
        visitor: Receives every node
        max_depth: Do not descend below this depth (None = unlimited)
    """
    path: List[str] = []

    def _traverse_recursive(node: Node, depth: int) -> None:
        visitor.visit_node(node, depth, tuple(path))

        children = node.children
        if not children:
            return
        if max_depth is not None and depth >= max_depth:
            return

        path.append(node.name)
        for child in children:
            _traverse_recursive(child, depth + 1)
        path.pop()

    _traverse_recursive(root, 0)


def traverse_document(document: Document, visitor: NodeVisitor,
                      max_depth: Optional[int] = None) -> None:
    """Traverse a whole document starting at its root node."""
    traverse(document.root, visitor, max_depth)


def traverse_pages(document: Document, page_ids: Iterable[str], visitor: NodeVisitor) -> None:
    """Traverse only the selected pages of a document.

    Pages are the ``CANVAS`` children of the root. Each selected page is
    visited at depth 1 with the root's name as its path, exactly as it would
    be during a full traversal; unselected pages and non-page children of the
    root are skipped.

    Args:
        document: Document to traverse
        page_ids: Ids of the pages to include
        visitor: Receives every node of the selected pages
    """
    selected = set(page_ids)
    path: List[str] = [document.root.name]

    def _traverse_recursive(node: Node, depth: int) -> None:
        visitor.visit_node(node, depth, tuple(path))
        children = node.children
        if not children:
            return
        path.append(node.name)
        for child in children:
            _traverse_recursive(child, depth + 1)
        path.pop()

    for child in document.root.children or ():
        if child.type == NodeType.CANVAS.value and child.id in selected:
            _traverse_recursive(child, 1)


def iter_nodes(root: Node, max_depth: Optional[int] = None) -> Iterator[Tuple[Node, int, Path]]:
    """Yield ``(node, depth, path)`` in the same order ``traverse`` visits.

    Iterative, so very deep trees do not hit the recursion limit.
    """
    # Stack holds (node, depth, path) with children pushed in reverse
    stack: List[Tuple[Node, int, Path]] = [(root, 0, ())]
    while stack:
        node, depth, path = stack.pop()
        yield (node, depth, path)

        children = node.children
        if not children or (max_depth is not None and depth >= max_depth):
            continue
        child_path = path + (node.name,)
        for child in reversed(children):
            stack.append((child, depth + 1, child_path))
