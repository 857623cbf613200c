"""Validation and parsing of user-supplied identifiers.

File keys identify documents; node ids identify nodes within a document
and appear in URLs in hyphenated form (``node-id=12-34``) but in the API
in colon form (``12:34``).
"""

import re
from typing import List, Optional, Tuple

from .errors import ValidationError


FILE_KEY_PATTERN = re.compile(r'^[a-zA-Z0-9]{22,}$')
FILE_URL_PATTERN = re.compile(r'figma\.com/(?:file|design)/([a-zA-Z0-9]{22,})')
NODE_ID_URL_PATTERN = re.compile(r'node-id=([0-9]+-[0-9]+)')
NODE_ID_PATTERN = re.compile(r'^[0-9]+[-:][0-9]+$')


def validate_file_key(file_key: str) -> None:
    """Raise ``ValidationError`` unless ``file_key`` looks like a file key."""
    if not file_key:
        raise ValidationError('file_key', "File key cannot be empty")
    if not FILE_KEY_PATTERN.match(file_key):
        raise ValidationError(
            'file_key',
            f"Invalid file key format: {file_key!r}. "
            "Expected alphanumeric string of at least 22 characters",
        )


def parse_file_key_from_url(value: str) -> str:
    """Extract the file key from a document URL, or validate a bare key.

    Raises:
        ValidationError: If no valid key can be found
    """
    value = value.strip()
    if 'figma.com' in value:
        match = FILE_URL_PATTERN.search(value)
        if match is None:
            raise ValidationError('url', f"Could not extract file key from URL: {value}")
        return match.group(1)

    validate_file_key(value)
    return value


def normalize_node_id(value: str) -> Optional[str]:
    """Return the colon form of a node id taken from a URL or typed by hand.

    Examples:
        >>> normalize_node_id("https://www.figma.com/design/KEY/Name?node-id=12-34")
        '12:34'
        >>> normalize_node_id("12-34")
        '12:34'
        >>> normalize_node_id("Page 1") is None
        True
    """
    match = NODE_ID_URL_PATTERN.search(value)
    if match is not None:
        return match.group(1).replace('-', ':')

    value = value.strip()
    if NODE_ID_PATTERN.match(value):
        return value.replace('-', ':')
    return None


def parse_node_ids(value: str) -> List[str]:
    """Parse a comma separated list of node ids.

    Raises:
        ValidationError: If an item is not a node id
    """
    node_ids = []
    for item in parse_list(value):
        node_id = normalize_node_id(item)
        if node_id is None:
            raise ValidationError('node_ids', f"Invalid node id: {item!r}")
        node_ids.append(node_id)
    return node_ids


def parse_list(value: str) -> List[str]:
    """Split a comma separated list, dropping blanks."""
    return [item.strip() for item in value.split(',') if item.strip()]


def parse_file_and_nodes_from_url(url: str) -> Tuple[str, List[str]]:
    """Extract the file key and the selected node id (if any) from a URL."""
    file_key = parse_file_key_from_url(url)
    node_id = normalize_node_id(url) if 'node-id=' in url else None
    return file_key, [node_id] if node_id else []
