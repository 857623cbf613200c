"""Document wrapper around the node tree.

A ``Document`` is an immutable snapshot of one design file (or of a
selection of nodes from it). Instances are shared read-only between the
cache, traversals and queries.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from ..errors import MalformedDocument
from .node import (
    STRING,
    DocumentData,
    Node,
    NodeBase,
    NodeType,
    _type_name,
    decode_node,
    encode_node,
)


# Root synthesized for node-targeted responses (never a service-issued node id)
SELECTION_ROOT_ID = "selection"
SELECTION_ROOT_NAME = "Document"

_WRAPPER_KEYS = frozenset({'name', 'version', 'lastModified', 'document'})


@dataclass(frozen=True)
class Document:
    """An immutable design document.

    Attributes:
        root: Root node (a ``DOCUMENT`` node for whole-file responses)
        name: File name
        version: Version identifier reported by the service
        last_modified: Raw ISO-8601 modification timestamp
        extra: Remaining wrapper keys (components, styles, schemaVersion, ...).
            Decoding and encoding copy these values, so neither the source
            payload nor an encoded result aliases the document.
    """

    root: Node
    name: str
    version: Optional[str] = None
    last_modified: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def last_modified_at(self) -> Optional[datetime]:
        """``last_modified`` parsed as a datetime, or None if absent/unparseable."""
        if not self.last_modified:
            return None
        try:
            return datetime.fromisoformat(self.last_modified.replace('Z', '+00:00'))
        except ValueError:
            return None

    @property
    def pages(self) -> Tuple[Node, ...]:
        """The ``CANVAS`` children of the root, in source order."""
        return tuple(
            child for child in (self.root.children or ())
            if child.type == NodeType.CANVAS.value
        )

    def iter_nodes(self) -> Iterator[Node]:
        """Yield every node in pre-order, source child order."""
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node
            children = node.children
            if children:
                stack.extend(reversed(children))

    def find(self, node_id: str) -> Optional[Node]:
        """Return the node with ``node_id``, or None."""
        for node in self.iter_nodes():
            if node.id == node_id:
                return node
        return None

    @property
    def is_selection(self) -> bool:
        """True for documents built from a node-targeted response."""
        return self.root.id == SELECTION_ROOT_ID

    def validate_ids(self) -> None:
        """Check that node ids are unique.

        For a selection document the check runs per selected subtree, since
        a selection may name a node and one of its ancestors.

        Raises:
            MalformedDocument: If two nodes share an id
        """
        if self.is_selection:
            for child in self.root.children or ():
                _check_unique_ids(child)
        else:
            _check_unique_ids(self.root)

    def node_count(self) -> int:
        return sum(1 for _ in self.iter_nodes())


def decode_document(raw: Any) -> Document:
    """Decode a service response into a ``Document``.

    Two response shapes are accepted: the whole-file shape with a
    ``document`` key, and the node-targeted shape with a ``nodes`` map. The
    latter is normalized under a synthetic ``DOCUMENT`` root so consumers
    always see a single tree.

    Raises:
        MalformedDocument: If the payload does not match the schema
    """
    if not isinstance(raw, Mapping):
        raise MalformedDocument(f"expected document object, got {_type_name(raw)}")

    name = _wrapper_string(raw, 'name', required=True)
    version = _wrapper_string(raw, 'version')
    last_modified = _wrapper_string(raw, 'lastModified')

    if raw.get('document') is not None:
        root = decode_node(raw['document'], 'document')
        extra = {k: copy.deepcopy(v) for k, v in raw.items() if k not in _WRAPPER_KEYS}
    elif raw.get('nodes') is not None:
        root, remaining = _decode_selection(raw['nodes'])
        extra = {k: copy.deepcopy(v) for k, v in raw.items() if k not in _WRAPPER_KEYS and k != 'nodes'}
        extra['nodes'] = remaining
    else:
        raise MalformedDocument("missing required field 'document'", 'document')

    document = Document(root, name, version, last_modified, extra)
    document.validate_ids()
    return document


def encode_document(document: Document) -> Dict[str, Any]:
    """Encode a document to the whole-file JSON shape."""
    out: Dict[str, Any] = {'name': document.name}
    if document.version is not None:
        out['version'] = document.version
    if document.last_modified is not None:
        out['lastModified'] = document.last_modified
    out['document'] = encode_node(document.root)
    for key, value in document.extra.items():
        out.setdefault(key, copy.deepcopy(value))
    return out


def _decode_selection(nodes: Any) -> Tuple[Node, Dict[str, Any]]:
    if not isinstance(nodes, Mapping):
        raise MalformedDocument(f"expected object, got {_type_name(nodes)}", 'nodes')

    children = []
    remaining: Dict[str, Any] = {}
    for node_id, entry in nodes.items():
        path = f"nodes.{node_id}"
        if entry is None:
            # The service reports unknown ids as null entries
            remaining[node_id] = None
            continue
        if not isinstance(entry, Mapping):
            raise MalformedDocument(f"expected object, got {_type_name(entry)}", path)
        if entry.get('document') is not None:
            children.append(decode_node(entry['document'], f"{path}.document"))
        remaining[node_id] = {k: copy.deepcopy(v) for k, v in entry.items() if k != 'document'}

    root = Node(
        NodeBase(NodeType.DOCUMENT.value, SELECTION_ROOT_ID, SELECTION_ROOT_NAME),
        DocumentData(children=tuple(children)),
    )
    return root, remaining


def _wrapper_string(raw: Mapping[str, Any], key: str, required: bool = False) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        if required:
            raise MalformedDocument(f"missing required field '{key}'", key)
        return None
    return STRING.decode(value, key)


def _check_unique_ids(root: Node) -> None:
    seen = set()
    stack = [root]
    while stack:
        node = stack.pop()
        if node.id in seen:
            raise MalformedDocument(f"duplicate node id {node.id!r}")
        seen.add(node.id)
        stack.extend(node.children or ())
