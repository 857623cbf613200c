"""
Transport contract for fetching raw documents from the remote service.

The library does not speak HTTP itself. An application supplies a
``Transport`` that performs the request and reports failures using the
transport error taxonomy; ``error_from_status`` turns an HTTP status code
into the right error.

Example:
    class HttpTransport(Transport):
        async def fetch(self, origin_id, depth, node_ids):
            response = await session.get(build_url(origin_id, depth, node_ids))
            if response.status != 200:
                raise error_from_status(
                    response.status,
                    await response.text(),
                    parse_retry_after(response.headers.get("Retry-After")),
                )
            return await response.json()
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional, Sequence

from ..config import StatusMapping
from ..errors import NetworkError, NotFound, RateLimited, TransportError, Unauthorized


class Transport(ABC):
    """Abstract base class for document transports."""

    @abstractmethod
    async def fetch(self, origin_id: str, depth: Optional[int],
                    node_ids: Sequence[str]) -> Mapping[str, Any]:
        """Fetch the raw JSON payload for a document or node selection.

        Args:
            origin_id: File key of the document
            depth: Maximum tree depth to return (None = full tree)
            node_ids: Nodes to return; empty for the whole file

        Returns:
            Parsed JSON response

        Raises:
            RateLimited, NetworkError: Transient failures (retried)
            Unauthorized, NotFound: Fatal failures (not retried)
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the transport."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return None


def error_from_status(status: int, message: str = '',
                      retry_after: Optional[float] = None,
                      mapping: Optional[StatusMapping] = None) -> TransportError:
    """Build the transport error for a failed HTTP status.

    Args:
        status: HTTP status code (must be >= 400)
        message: Response body or reason phrase
        retry_after: Seconds the server asked us to wait, if any
        mapping: Status classification (defaults to ``StatusMapping()``)

    Returns:
        The error to raise (not raised here)
    """
    if status < 400:
        raise ValueError(f"HTTP status {status} is not an error")

    mapping = mapping or StatusMapping()
    detail = f"HTTP {status}: {message}" if message else f"HTTP {status}"

    if status in mapping.unauthorized:
        return Unauthorized(detail, status)
    if status in mapping.not_found:
        return NotFound(detail, status)
    if status in mapping.rate_limited:
        if retry_after is None:
            retry_after = mapping.default_retry_after
        return RateLimited(detail, retry_after, status)
    # 5xx and anything unclassified may succeed later
    return NetworkError(detail, status)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parse a ``Retry-After`` header (delta seconds or HTTP date).

    Returns:
        Seconds to wait, or None if the header is absent or unparseable
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())
