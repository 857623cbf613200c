"""Visitors that collect data from document trees.

Collectors are ``NodeVisitor`` implementations that keep state across a
traversal and expose an aggregated result afterwards. The same traversal
engine drives all of them.
"""

from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .document import Document
from .node import Node, NodeType
from .traverser import Path, traverse_document, traverse_pages


class DocumentCollector(ABC):
    """Abstract base class for stateful visitors.

    Subclasses implement ``visit_node``, ``reset`` and ``get_result``.
    ``collect`` runs a complete traversal and returns the result.
    """

    def __init__(self):
        """Initialize collector with empty state."""
        self.reset()

    @abstractmethod
    def visit_node(self, node: Node, depth: int, path: Path) -> None:
        """Process a single node.

        Args:
            node: Node being visited
            depth: Depth of the node (root is 0)
            path: Names of the node's ancestors, outermost first
        """
        pass

    @abstractmethod
    def reset(self) -> None:
        """Reset collector state.

        Called before starting a new traversal.
        """
        pass

    @abstractmethod
    def get_result(self) -> Any:
        """Get final collected result."""
        pass

    def collect(self, document: Document, page_ids: Optional[Sequence[str]] = None) -> Any:
        """Traverse ``document`` (or only the given pages) and return the result.

        Args:
            document: Document to traverse
            page_ids: If given, restrict the traversal to these pages

        Returns:
            Final collected result
        """
        self.reset()
        if page_ids is None:
            traverse_document(document, self)
        else:
            traverse_pages(document, page_ids, self)
        return self.get_result()


@dataclass(frozen=True)
class HierarchyPath:
    """Where a node sits in the page/frame/group hierarchy."""

    page_name: str
    frame_names: Tuple[str, ...] = ()
    group_names: Optional[Tuple[str, ...]] = None

    @classmethod
    def from_path(cls, path: Path) -> 'HierarchyPath':
        """Build from a traversal path ``(document, page, frame, ...)``.

        Names containing "Frame" or starting with an uppercase letter are
        treated as frames, the rest as groups.
        """
        if len(path) < 2:
            return cls(page_name="Unknown Page")

        frames: List[str] = []
        groups: List[str] = []
        for name in path[2:]:
            if "Frame" in name or name[:1].isupper():
                frames.append(name)
            else:
                groups.append(name)
        return cls(path[1], tuple(frames), tuple(groups) if groups else None)

    def to_path_string(self) -> str:
        parts = [self.page_name, *self.frame_names, *(self.group_names or ())]
        return " > ".join(parts)


@dataclass(frozen=True)
class TextStyleInfo:
    font_family: str = "Unknown"
    font_size: float = 16.0
    font_weight: float = 400


@dataclass(frozen=True)
class ExtractedText:
    """A piece of text found in the document."""

    node_id: str
    node_type: str                    # TEXT or STICKY
    text: str
    path: HierarchyPath
    sequence_number: int
    style: Optional[TextStyleInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'nodeId': self.node_id,
            'nodeType': self.node_type.lower(),
            'text': self.text,
            'path': self.path.to_path_string(),
            'sequenceNumber': self.sequence_number,
        }
        if self.style is not None:
            result['style'] = {
                'fontFamily': self.style.font_family,
                'fontSize': self.style.font_size,
                'fontWeight': self.style.font_weight,
            }
        return result


class TextExtractor(DocumentCollector):
    """Collects the text content of ``TEXT`` and ``STICKY`` nodes.

    Blank text is skipped. Results are numbered in traversal order.
    """

    def reset(self) -> None:
        self.texts: List[ExtractedText] = []

    def visit_node(self, node: Node, depth: int, path: Path) -> None:
        characters = node.characters
        if characters is None or not characters.strip():
            return

        style = None
        type_style = getattr(node.data, 'style', None)
        if type_style is not None:
            style = TextStyleInfo(
                font_family=type_style.font_family or "Unknown",
                font_size=type_style.font_size if type_style.font_size is not None else 16.0,
                font_weight=type_style.font_weight if type_style.font_weight is not None else 400,
            )

        self.texts.append(ExtractedText(
            node_id=node.id,
            node_type=node.type,
            text=characters,
            path=HierarchyPath.from_path(path),
            sequence_number=len(self.texts),
            style=style,
        ))

    def get_result(self) -> List[ExtractedText]:
        return list(self.texts)


class NodeTypeCounter(DocumentCollector):
    """Counts nodes by type and tracks the deepest level reached."""

    def reset(self) -> None:
        self.counts: Counter = Counter()
        self.max_depth = 0

    def visit_node(self, node: Node, depth: int, path: Path) -> None:
        self.counts[node.type] += 1
        self.max_depth = max(self.max_depth, depth)

    def get_result(self) -> Dict[str, Any]:
        return {
            'total_nodes': sum(self.counts.values()),
            'max_depth': self.max_depth,
            'by_type': dict(self.counts),
        }


class NodeFinder(DocumentCollector):
    """Collects every node matching a predicate, with depth and path."""

    def __init__(self, predicate: Callable[[Node], bool]):
        self.predicate = predicate
        super().__init__()

    def reset(self) -> None:
        self.matches: List[Tuple[Node, int, Path]] = []

    def visit_node(self, node: Node, depth: int, path: Path) -> None:
        if self.predicate(node):
            self.matches.append((node, depth, path))

    def get_result(self) -> List[Tuple[Node, int, Path]]:
        return list(self.matches)


@dataclass(frozen=True)
class PageSummary:
    """Overview of one page: its top-level frames and text nodes."""

    id: str
    name: str
    frame_count: int
    text_node_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'frameCount': self.frame_count,
            'textNodeCount': self.text_node_count,
        }


# Containers whose text nodes count towards their page
_TEXT_COUNT_CONTAINERS = frozenset({
    NodeType.FRAME.value, NodeType.GROUP.value,
    NodeType.COMPONENT.value, NodeType.INSTANCE.value,
})


def summarize_page(page: Node) -> PageSummary:
    """Summarize a ``CANVAS`` node.

    ``frame_count`` counts frames placed directly on the page;
    ``text_node_count`` counts text nodes on the page and inside frames,
    groups, components and instances.
    """
    children = page.children or ()
    frame_count = sum(1 for child in children if child.type == NodeType.FRAME.value)
    return PageSummary(page.id, page.name, frame_count, _count_text_nodes(children))


def _count_text_nodes(nodes: Sequence[Node]) -> int:
    count = 0
    for node in nodes:
        if node.type == NodeType.TEXT.value:
            count += 1
        elif node.type in _TEXT_COUNT_CONTAINERS:
            count += _count_text_nodes(node.children or ())
    return count
