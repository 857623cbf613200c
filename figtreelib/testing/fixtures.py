"""Test fixtures for FigTreeLib consumers.

These helpers let test suites exercise the pipeline without a network
connection: canned document payloads, a scripted in-memory transport, and
a controllable clock for cache expiry.
"""

import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..aio.transport import Transport


FILE_KEY = "AbCdEfGhIjKlMnOpQrStUv"


def sample_file_payload(name: str = "Sample File") -> Dict[str, Any]:
    """A small whole-file response with two pages.

    Structure::

        Document
          Page 1 (0:1)
            Header Frame (1:1)
              Title (1:2)            TEXT "Welcome"
              icons (1:3)            GROUP
                Icon (1:4)           VECTOR
            Note (1:5)               STICKY "Remember the margins"
          Page 2 (0:2)
            Card (2:1)               FRAME
              Body (2:2)             TEXT "Second page body"
              Blank (2:3)            TEXT "   "
    """
    return {
        "name": name,
        "version": "1234567890",
        "lastModified": "2024-05-01T12:30:00Z",
        "schemaVersion": 0,
        "thumbnailUrl": "https://example.invalid/thumb.png",
        "editorType": "figma",
        "components": {},
        "styles": {},
        "document": {
            "id": "0:0",
            "name": "Document",
            "type": "DOCUMENT",
            "children": [
                {
                    "id": "0:1",
                    "name": "Page 1",
                    "type": "CANVAS",
                    "backgroundColor": {"r": 0.96, "g": 0.96, "b": 0.96, "a": 1},
                    "children": [
                        {
                            "id": "1:1",
                            "name": "Header Frame",
                            "type": "FRAME",
                            "absoluteBoundingBox": {"x": 0, "y": 0, "width": 1440, "height": 120},
                            "fills": [{"type": "SOLID", "color": {"r": 1, "g": 1, "b": 1, "a": 1}}],
                            "clipsContent": True,
                            "children": [
                                {
                                    "id": "1:2",
                                    "name": "Title",
                                    "type": "TEXT",
                                    "characters": "Welcome",
                                    "style": {"fontFamily": "Inter", "fontSize": 32, "fontWeight": 700},
                                },
                                {
                                    "id": "1:3",
                                    "name": "icons",
                                    "type": "GROUP",
                                    "children": [
                                        {
                                            "id": "1:4",
                                            "name": "Icon",
                                            "type": "VECTOR",
                                            "absoluteBoundingBox": {"x": 10.5, "y": 12.25,
                                                                    "width": 24, "height": 24},
                                        },
                                    ],
                                },
                            ],
                        },
                        {
                            "id": "1:5",
                            "name": "Note",
                            "type": "STICKY",
                            "characters": "Remember the margins",
                        },
                    ],
                },
                {
                    "id": "0:2",
                    "name": "Page 2",
                    "type": "CANVAS",
                    "children": [
                        {
                            "id": "2:1",
                            "name": "Card",
                            "type": "FRAME",
                            "children": [
                                {
                                    "id": "2:2",
                                    "name": "Body",
                                    "type": "TEXT",
                                    "characters": "Second page body",
                                },
                                {
                                    "id": "2:3",
                                    "name": "Blank",
                                    "type": "TEXT",
                                    "characters": "   ",
                                },
                            ],
                        },
                    ],
                },
            ],
        },
    }


def sample_nodes_payload() -> Dict[str, Any]:
    """A node-targeted response selecting one frame and one unknown id."""
    frame = copy.deepcopy(sample_file_payload()["document"]["children"][0]["children"][0])
    return {
        "name": "Sample File",
        "lastModified": "2024-05-01T12:30:00Z",
        "version": "1234567890",
        "nodes": {
            "1:1": {"document": frame, "components": {}, "styles": {}},
            "9:9": None,
        },
    }


Response = Union[Mapping[str, Any], BaseException]


class ScriptedTransport(Transport):
    """In-memory transport replaying scripted responses.

    Each call to ``fetch`` pops the next item from the script: exceptions
    are raised, mappings are returned (deep-copied). When the script runs
    out, ``default`` is returned if given.

    Example:
        transport = ScriptedTransport([NetworkError("boom"), sample_file_payload()])
        await transport.fetch(FILE_KEY, None, ())    # raises NetworkError
        await transport.fetch(FILE_KEY, None, ())    # returns the payload
        transport.calls                              # [(FILE_KEY, None, ()), ...]
    """

    def __init__(self, script: Optional[Sequence[Response]] = None,
                 default: Optional[Mapping[str, Any]] = None):
        self.script: List[Response] = list(script or [])
        self.default = default
        self.calls: List[Tuple[str, Optional[int], Tuple[str, ...]]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False
        self.gate = None          # Optional asyncio.Event awaited inside fetch

    async def fetch(self, origin_id: str, depth: Optional[int],
                    node_ids: Sequence[str]) -> Mapping[str, Any]:
        self.calls.append((origin_id, depth, tuple(node_ids)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.script:
                response = self.script.pop(0)
            elif self.default is not None:
                response = self.default
            else:
                raise AssertionError(f"Unexpected fetch of {origin_id}")
            if isinstance(response, BaseException):
                raise response
            return copy.deepcopy(response)
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingSleep:
    """Awaitable replacement for ``asyncio.sleep`` that records delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
