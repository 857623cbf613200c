"""Typed node model for design documents.

A design file is a tree of heterogeneous nodes (pages, frames, text, vector
shapes, ...). Each ``Node`` is composed of two parts:

* ``NodeBase`` - the record every variant shares (``type``, ``id``, ``name``,
  ``visible``, ``locked``)
* a payload dataclass chosen by the ``type`` discriminant (``FrameData``,
  ``TextData``, ...), holding the variant-specific fields

The variant set is closed: decoding a node whose ``type`` is not a member of
``NodeType`` fails with ``MalformedDocument``. Code that walks the tree uses
the uniform accessors on ``Node`` (``id``, ``name``, ``children``) and never
needs to look at the payload class.

Optional fields that are missing from the source decode to ``None`` and are
omitted again when encoding, so "no background color" stays distinct from a
transparent one and a decode/encode round trip reproduces the source shape.
Keys the model does not know about are copied into ``extra`` and written back
verbatim.

Example::

    node = decode_node({"type": "TEXT", "id": "1:2", "name": "Title",
                        "characters": "Hello"})
    node.characters            # 'Hello'
    node.children              # None - text nodes have no children
    encode_node(node)          # the original mapping
"""

import copy
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Type, Union

from ..errors import MalformedDocument


class NodeType(str, Enum):
    """The closed set of node discriminants."""
    DOCUMENT = "DOCUMENT"
    CANVAS = "CANVAS"
    SECTION = "SECTION"
    FRAME = "FRAME"
    GROUP = "GROUP"
    COMPONENT = "COMPONENT"
    COMPONENT_SET = "COMPONENT_SET"
    INSTANCE = "INSTANCE"
    BOOLEAN_OPERATION = "BOOLEAN_OPERATION"
    TABLE = "TABLE"
    TABLE_CELL = "TABLE_CELL"
    TEXT = "TEXT"
    STICKY = "STICKY"
    RECTANGLE = "RECTANGLE"
    VECTOR = "VECTOR"
    ELLIPSE = "ELLIPSE"
    LINE = "LINE"
    REGULAR_POLYGON = "REGULAR_POLYGON"
    STAR = "STAR"
    SHAPE_WITH_TEXT = "SHAPE_WITH_TEXT"
    CONNECTOR = "CONNECTOR"
    WIDGET = "WIDGET"
    SLICE = "SLICE"


# Field codecs

@dataclass(frozen=True)
class _Codec:
    """Decode/encode pair for one JSON value shape."""
    name: str
    decode: Callable[[Any, str], Any]
    encode: Callable[[Any], Any]


def _type_name(value: Any) -> str:
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'boolean'
    if isinstance(value, (int, float)):
        return 'number'
    if isinstance(value, str):
        return 'string'
    if isinstance(value, list):
        return 'array'
    if isinstance(value, Mapping):
        return 'object'
    return type(value).__name__


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _scalar(name: str, check: Callable[[Any], bool]) -> _Codec:
    def decode(value: Any, path: str) -> Any:
        if not check(value):
            raise MalformedDocument(f"expected {name}, got {_type_name(value)}", path)
        return value
    return _Codec(name, decode, lambda value: value)


STRING = _scalar('string', lambda v: isinstance(v, str))
BOOLEAN = _scalar('boolean', lambda v: isinstance(v, bool))
# bool is a subclass of int and must not pass as a coordinate
NUMBER = _scalar('number', lambda v: isinstance(v, (int, float)) and not isinstance(v, bool))
# Uninterpreted JSON, copied both ways so documents never share it with callers
RAW = _Codec('any', lambda value, path: copy.deepcopy(value), copy.deepcopy)


def list_of(item: _Codec) -> _Codec:
    """Codec for a JSON array whose items all use ``item``."""
    def decode(value: Any, path: str) -> Tuple[Any, ...]:
        if not isinstance(value, list):
            raise MalformedDocument(f"expected array, got {_type_name(value)}", path)
        return tuple(item.decode(v, f"{path}[{i}]") for i, v in enumerate(value))

    def encode(value: Tuple[Any, ...]) -> list:
        return [item.encode(v) for v in value]

    return _Codec(f"array of {item.name}", decode, encode)


def record(cls: type) -> _Codec:
    """Codec for a JSON object mapped onto a value dataclass with ``extra``."""
    def decode(value: Any, path: str) -> Any:
        if not isinstance(value, Mapping):
            raise MalformedDocument(f"expected object, got {_type_name(value)}", path)
        kwargs, known = _decode_fields(cls, value, path)
        kwargs['extra'] = {k: copy.deepcopy(v) for k, v in value.items() if k not in known}
        return cls(**kwargs)

    def encode(value: Any) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        _encode_fields(value, out)
        for key, item in value.extra.items():
            out.setdefault(key, copy.deepcopy(item))
        return out

    return _Codec(cls.__name__, decode, encode)


def _json_field(key: str, codec: _Codec, required: bool = False) -> Any:
    """Declare a dataclass field backed by JSON key ``key``."""
    metadata = {'key': key, 'codec': codec, 'required': required}
    if required:
        return field(metadata=metadata)
    return field(default=None, metadata=metadata)


def _extra_field() -> Any:
    return field(default_factory=dict)


def _codec_fields(cls: type):
    return [f for f in fields(cls) if 'codec' in f.metadata]


def _decode_fields(cls: type, raw: Mapping[str, Any], path: str):
    """Decode the JSON-backed fields of ``cls`` from ``raw``.

    Returns:
        Tuple of (constructor kwargs, set of JSON keys consumed)
    """
    kwargs: Dict[str, Any] = {}
    known = set()
    for f in _codec_fields(cls):
        key = f.metadata['key']
        known.add(key)
        value = raw.get(key)
        if value is None:
            if f.metadata['required']:
                raise MalformedDocument(f"missing required field '{key}'", _join(path, key))
            kwargs[f.name] = None
            continue
        kwargs[f.name] = f.metadata['codec'].decode(value, _join(path, key))
    return kwargs, known


def _encode_fields(obj: Any, out: Dict[str, Any]) -> None:
    for f in _codec_fields(type(obj)):
        value = getattr(obj, f.name)
        if value is None:
            continue
        out[f.metadata['key']] = f.metadata['codec'].encode(value)


# Shared value types

@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in canvas coordinates."""
    x: float = _json_field('x', NUMBER, required=True)
    y: float = _json_field('y', NUMBER, required=True)
    width: float = _json_field('width', NUMBER, required=True)
    height: float = _json_field('height', NUMBER, required=True)
    extra: Mapping[str, Any] = _extra_field()


@dataclass(frozen=True)
class Color:
    """RGBA color with channels in the 0..1 range."""
    r: float = _json_field('r', NUMBER, required=True)
    g: float = _json_field('g', NUMBER, required=True)
    b: float = _json_field('b', NUMBER, required=True)
    a: float = _json_field('a', NUMBER, required=True)
    extra: Mapping[str, Any] = _extra_field()


@dataclass(frozen=True)
class Paint:
    """A fill or stroke layer (solid, gradient or image)."""
    type: str = _json_field('type', STRING, required=True)
    visible: Optional[bool] = _json_field('visible', BOOLEAN)
    opacity: Optional[float] = _json_field('opacity', NUMBER)
    color: Optional[Color] = _json_field('color', record(Color))
    blend_mode: Optional[str] = _json_field('blendMode', STRING)
    image_ref: Optional[str] = _json_field('imageRef', STRING)
    extra: Mapping[str, Any] = _extra_field()


@dataclass(frozen=True)
class TypeStyle:
    """Typography of a text node."""
    font_family: Optional[str] = _json_field('fontFamily', STRING)
    font_post_script_name: Optional[str] = _json_field('fontPostScriptName', STRING)
    font_size: Optional[float] = _json_field('fontSize', NUMBER)
    font_weight: Optional[float] = _json_field('fontWeight', NUMBER)
    italic: Optional[bool] = _json_field('italic', BOOLEAN)
    text_align_horizontal: Optional[str] = _json_field('textAlignHorizontal', STRING)
    letter_spacing: Optional[float] = _json_field('letterSpacing', NUMBER)
    line_height_px: Optional[float] = _json_field('lineHeightPx', NUMBER)
    extra: Mapping[str, Any] = _extra_field()


@dataclass(frozen=True)
class ExportSetting:
    """Export preset attached to a node."""
    suffix: str = _json_field('suffix', STRING, required=True)
    format: str = _json_field('format', STRING, required=True)
    constraint: Optional[Mapping[str, Any]] = _json_field('constraint', RAW)
    extra: Mapping[str, Any] = _extra_field()


BOUNDING_BOX = record(BoundingBox)
COLOR = record(Color)
PAINTS = list_of(record(Paint))
NODES = _Codec('array of Node', lambda value, path: _decode_children(value, path),
               lambda value: [encode_node(child) for child in value])


def _bbox(key: str = 'absoluteBoundingBox') -> Any:
    return _json_field(key, BOUNDING_BOX)


def _children() -> Any:
    return _json_field('children', NODES)


# Variant payloads

@dataclass(frozen=True)
class DocumentData:
    children: Optional[Tuple['Node', ...]] = _children()
    scroll_behavior: Optional[str] = _json_field('scrollBehavior', STRING)


@dataclass(frozen=True)
class CanvasData:
    children: Optional[Tuple['Node', ...]] = _children()
    background_color: Optional[Color] = _json_field('backgroundColor', COLOR)
    export_settings: Optional[Tuple[ExportSetting, ...]] = _json_field(
        'exportSettings', list_of(record(ExportSetting)))
    prototype_start_node_id: Optional[str] = _json_field('prototypeStartNodeID', STRING)
    flow_starting_points: Optional[Any] = _json_field('flowStartingPoints', RAW)


@dataclass(frozen=True)
class SectionData:
    children: Optional[Tuple['Node', ...]] = _children()
    absolute_bounding_box: Optional[BoundingBox] = _bbox()
    absolute_render_bounds: Optional[BoundingBox] = _bbox('absoluteRenderBounds')
    fills: Optional[Tuple[Paint, ...]] = _json_field('fills', PAINTS)
    strokes: Optional[Tuple[Paint, ...]] = _json_field('strokes', PAINTS)
    stroke_weight: Optional[float] = _json_field('strokeWeight', NUMBER)
    stroke_align: Optional[str] = _json_field('strokeAlign', STRING)
    section_contents_hidden: Optional[bool] = _json_field('sectionContentsHidden', BOOLEAN)


@dataclass(frozen=True)
class FrameData:
    children: Optional[Tuple['Node', ...]] = _children()
    absolute_bounding_box: Optional[BoundingBox] = _bbox()
    absolute_render_bounds: Optional[BoundingBox] = _bbox('absoluteRenderBounds')
    fills: Optional[Tuple[Paint, ...]] = _json_field('fills', PAINTS)
    strokes: Optional[Tuple[Paint, ...]] = _json_field('strokes', PAINTS)
    stroke_weight: Optional[float] = _json_field('strokeWeight', NUMBER)
    corner_radius: Optional[float] = _json_field('cornerRadius', NUMBER)
    clips_content: Optional[bool] = _json_field('clipsContent', BOOLEAN)
    background_color: Optional[Color] = _json_field('backgroundColor', COLOR)
    layout_mode: Optional[str] = _json_field('layoutMode', STRING)


@dataclass(frozen=True)
class GroupData:
    children: Optional[Tuple['Node', ...]] = _children()
    absolute_bounding_box: Optional[BoundingBox] = _bbox()
    absolute_render_bounds: Optional[BoundingBox] = _bbox('absoluteRenderBounds')


@dataclass(frozen=True)
class ComponentData:
    """Payload of ``COMPONENT`` and ``COMPONENT_SET`` nodes."""
    children: Optional[Tuple['Node', ...]] = _children()
    absolute_bounding_box: Optional[BoundingBox] = _bbox()
    fills: Optional[Tuple[Paint, ...]] = _json_field('fills', PAINTS)
    component_key: Optional[str] = _json_field('componentKey', STRING)


@dataclass(frozen=True)
class InstanceData:
    children: Optional[Tuple['Node', ...]] = _children()
    absolute_bounding_box: Optional[BoundingBox] = _bbox()
    fills: Optional[Tuple[Paint, ...]] = _json_field('fills', PAINTS)
    component_id: Optional[str] = _json_field('componentId', STRING)


@dataclass(frozen=True)
class BooleanOperationData:
    children: Optional[Tuple['Node', ...]] = _children()
    absolute_bounding_box: Optional[BoundingBox] = _bbox()
    fills: Optional[Tuple[Paint, ...]] = _json_field('fills', PAINTS)
    boolean_operation: Optional[str] = _json_field('booleanOperation', STRING)


@dataclass(frozen=True)
class TableData:
    """Payload of ``TABLE`` and ``TABLE_CELL`` nodes."""
    children: Optional[Tuple['Node', ...]] = _children()
    absolute_bounding_box: Optional[BoundingBox] = _bbox()
    fills: Optional[Tuple[Paint, ...]] = _json_field('fills', PAINTS)


@dataclass(frozen=True)
class TextData:
    characters: str = _json_field('characters', STRING, required=True)
    style: Optional[TypeStyle] = _json_field('style', record(TypeStyle))
    absolute_bounding_box: Optional[BoundingBox] = _bbox()
    fills: Optional[Tuple[Paint, ...]] = _json_field('fills', PAINTS)


@dataclass(frozen=True)
class StickyData:
    characters: str = _json_field('characters', STRING, required=True)
    absolute_bounding_box: Optional[BoundingBox] = _bbox()
    fills: Optional[Tuple[Paint, ...]] = _json_field('fills', PAINTS)


@dataclass(frozen=True)
class ShapeData:
    """Payload shared by the leaf shape variants (rectangle, vector, star, ...)."""
    absolute_bounding_box: Optional[BoundingBox] = _bbox()
    absolute_render_bounds: Optional[BoundingBox] = _bbox('absoluteRenderBounds')
    fills: Optional[Tuple[Paint, ...]] = _json_field('fills', PAINTS)
    strokes: Optional[Tuple[Paint, ...]] = _json_field('strokes', PAINTS)
    stroke_weight: Optional[float] = _json_field('strokeWeight', NUMBER)
    corner_radius: Optional[float] = _json_field('cornerRadius', NUMBER)


NodePayload = Union[
    DocumentData, CanvasData, SectionData, FrameData, GroupData, ComponentData,
    InstanceData, BooleanOperationData, TableData, TextData, StickyData, ShapeData,
]

PAYLOAD_TYPES: Dict[NodeType, Type[Any]] = {
    NodeType.DOCUMENT: DocumentData,
    NodeType.CANVAS: CanvasData,
    NodeType.SECTION: SectionData,
    NodeType.FRAME: FrameData,
    NodeType.GROUP: GroupData,
    NodeType.COMPONENT: ComponentData,
    NodeType.COMPONENT_SET: ComponentData,
    NodeType.INSTANCE: InstanceData,
    NodeType.BOOLEAN_OPERATION: BooleanOperationData,
    NodeType.TABLE: TableData,
    NodeType.TABLE_CELL: TableData,
    NodeType.TEXT: TextData,
    NodeType.STICKY: StickyData,
    NodeType.RECTANGLE: ShapeData,
    NodeType.VECTOR: ShapeData,
    NodeType.ELLIPSE: ShapeData,
    NodeType.LINE: ShapeData,
    NodeType.REGULAR_POLYGON: ShapeData,
    NodeType.STAR: ShapeData,
    NodeType.SHAPE_WITH_TEXT: ShapeData,
    NodeType.CONNECTOR: ShapeData,
    NodeType.WIDGET: ShapeData,
    NodeType.SLICE: ShapeData,
}

_CONTAINER_PAYLOADS = (
    DocumentData, CanvasData, SectionData, FrameData, GroupData, ComponentData,
    InstanceData, BooleanOperationData, TableData,
)
_TEXT_PAYLOADS = (TextData, StickyData)

_BASE_KEYS = frozenset({'type', 'id', 'name', 'visible', 'locked'})


@dataclass(frozen=True)
class NodeBase:
    """Fields shared by every node variant."""
    type: str
    id: str
    name: str
    visible: bool = True
    locked: bool = False


@dataclass(frozen=True)
class Node:
    """One element of the design tree: shared base plus variant payload.

    Attributes:
        base: Shared record (type, id, name, visible, locked)
        data: Variant payload; its class is fixed by ``base.type``
        extra: Source keys the model does not interpret, kept verbatim
    """
    base: NodeBase
    data: NodePayload
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        try:
            node_type = NodeType(self.base.type)
        except ValueError:
            raise TypeError(f"Unknown node type: {self.base.type!r}") from None
        expected = PAYLOAD_TYPES[node_type]
        if not isinstance(self.data, expected):
            raise TypeError(
                f"{node_type.value} nodes carry {expected.__name__}, "
                f"got {type(self.data).__name__}"
            )

    @property
    def id(self) -> str:
        return self.base.id

    @property
    def name(self) -> str:
        return self.base.name

    @property
    def type(self) -> str:
        return self.base.type

    @property
    def node_type(self) -> NodeType:
        return NodeType(self.base.type)

    @property
    def visible(self) -> bool:
        return self.base.visible

    @property
    def locked(self) -> bool:
        return self.base.locked

    @property
    def children(self) -> Optional[Tuple['Node', ...]]:
        """Ordered children, or ``None`` for leaf variants and absent lists."""
        if isinstance(self.data, _CONTAINER_PAYLOADS):
            return self.data.children
        return None

    @property
    def has_children(self) -> bool:
        return bool(self.children)

    @property
    def characters(self) -> Optional[str]:
        """Text content of ``TEXT`` and ``STICKY`` nodes."""
        if isinstance(self.data, _TEXT_PAYLOADS):
            return self.data.characters
        return None

    @property
    def bounding_box(self) -> Optional[BoundingBox]:
        return getattr(self.data, 'absolute_bounding_box', None)

    def __repr__(self) -> str:
        return f"Node({self.base.type} {self.base.id!r} {self.base.name!r})"


def make_node(node_type: Union[NodeType, str], node_id: str, name: str,
              children: Optional[list] = None, visible: bool = True,
              locked: bool = False, **payload: Any) -> Node:
    """Build a node programmatically.

    Args:
        node_type: Discriminant (``NodeType`` member or its string value)
        node_id: Node id
        name: Node name
        children: Child nodes (only valid for container variants)
        **payload: Payload fields by their Python names

    Example:
        >>> page = make_node("CANVAS", "0:1", "Page 1", children=[
        ...     make_node("TEXT", "1:1", "Title", characters="Hello")])
        >>> [child.name for child in page.children]
        ['Title']
    """
    node_type = NodeType(node_type)
    payload_cls = PAYLOAD_TYPES[node_type]
    if children is not None:
        payload['children'] = tuple(children)
    return Node(NodeBase(node_type.value, node_id, name, visible, locked), payload_cls(**payload))


def decode_node(raw: Any, path: str = '') -> Node:
    """Decode one node (and its subtree) from the service's JSON shape.

    Args:
        raw: Mapping parsed from JSON
        path: JSON path of ``raw``, used in error messages

    Raises:
        MalformedDocument: Unknown discriminant, missing required field,
            or a field with the wrong shape
    """
    if not isinstance(raw, Mapping):
        raise MalformedDocument(f"expected node object, got {_type_name(raw)}", path)

    raw_type = raw.get('type')
    if raw_type is None:
        raise MalformedDocument("missing required field 'type'", _join(path, 'type'))
    try:
        node_type = NodeType(raw_type)
    except ValueError:
        raise MalformedDocument(f"unknown node type {raw_type!r}", _join(path, 'type')) from None

    base = NodeBase(
        type=node_type.value,
        id=_required(raw, 'id', STRING, path),
        name=_required(raw, 'name', STRING, path),
        visible=_optional(raw, 'visible', BOOLEAN, path, True),
        locked=_optional(raw, 'locked', BOOLEAN, path, False),
    )

    payload_cls = PAYLOAD_TYPES[node_type]
    kwargs, known = _decode_fields(payload_cls, raw, path)
    extra = {k: copy.deepcopy(v) for k, v in raw.items() if k not in known and k not in _BASE_KEYS}
    return Node(base, payload_cls(**kwargs), extra)


def encode_node(node: Node) -> Dict[str, Any]:
    """Encode a node (and its subtree) back to the service's JSON shape."""
    out: Dict[str, Any] = {
        'id': node.base.id,
        'name': node.base.name,
        'type': node.base.type,
    }
    # The service omits default visibility/lock flags
    if not node.base.visible:
        out['visible'] = False
    if node.base.locked:
        out['locked'] = True
    _encode_fields(node.data, out)
    for key, value in node.extra.items():
        out.setdefault(key, copy.deepcopy(value))
    return out


def _decode_children(value: Any, path: str) -> Tuple[Node, ...]:
    if not isinstance(value, list):
        raise MalformedDocument(f"expected array, got {_type_name(value)}", path)
    return tuple(decode_node(child, f"{path}[{i}]") for i, child in enumerate(value))


def _required(raw: Mapping[str, Any], key: str, codec: _Codec, path: str) -> Any:
    value = raw.get(key)
    if value is None:
        raise MalformedDocument(f"missing required field '{key}'", _join(path, key))
    return codec.decode(value, _join(path, key))


def _optional(raw: Mapping[str, Any], key: str, codec: _Codec, path: str, default: Any) -> Any:
    value = raw.get(key)
    if value is None:
        return default
    return codec.decode(value, _join(path, key))
