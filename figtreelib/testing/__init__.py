"""Testing utilities for FigTreeLib consumers."""

from .fixtures import (
    FILE_KEY,
    FrozenClock,
    RecordingSleep,
    ScriptedTransport,
    sample_file_payload,
    sample_nodes_payload,
)

__all__ = [
    'FILE_KEY',
    'FrozenClock',
    'RecordingSleep',
    'ScriptedTransport',
    'sample_file_payload',
    'sample_nodes_payload',
]
