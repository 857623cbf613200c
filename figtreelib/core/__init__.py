"""Core abstractions for FigTreeLib.

The typed document model, the traversal engine and the visitors built on
it. Nothing in this package performs I/O.
"""

from .node import (
    BoundingBox,
    Color,
    ExportSetting,
    Node,
    NodeBase,
    NodeType,
    Paint,
    TypeStyle,
    decode_node,
    encode_node,
    make_node,
)
from .document import Document, decode_document, encode_document
from .traverser import FunctionVisitor, NodeVisitor, iter_nodes, traverse, traverse_document, traverse_pages
from .collector import (
    DocumentCollector,
    ExtractedText,
    HierarchyPath,
    NodeFinder,
    NodeTypeCounter,
    PageSummary,
    TextExtractor,
    summarize_page,
)

__all__ = [
    "BoundingBox",
    "Color",
    "ExportSetting",
    "Node",
    "NodeBase",
    "NodeType",
    "Paint",
    "TypeStyle",
    "decode_node",
    "encode_node",
    "make_node",
    "Document",
    "decode_document",
    "encode_document",
    "FunctionVisitor",
    "NodeVisitor",
    "iter_nodes",
    "traverse",
    "traverse_document",
    "traverse_pages",
    "DocumentCollector",
    "ExtractedText",
    "HierarchyPath",
    "NodeFinder",
    "NodeTypeCounter",
    "PageSummary",
    "TextExtractor",
    "summarize_page",
]
