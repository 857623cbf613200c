"""Error taxonomy for FigTreeLib.

Every error raised across the public API derives from ``CoreError`` and
carries a ``kind`` tag plus a suggested process ``exit_code`` so a CLI layer
can render an appropriate message without inspecting exception types.

Hierarchy::

    CoreError
    ├── MalformedDocument        decode failure (fatal, never retried)
    ├── CacheError
    │   ├── CacheCorrupt         unreadable payload (recovered inside the store)
    │   └── CacheWriteError      payload/index could not be written
    ├── TransportError
    │   ├── TransportTransient   retried with backoff
    │   │   ├── RateLimited
    │   │   └── NetworkError
    │   └── TransportFatal       surfaced immediately
    │       ├── Unauthorized
    │       └── NotFound
    ├── QueryError
    │   ├── InvalidExpression
    │   └── EvaluationError
    ├── ConfigError
    └── ValidationError
"""

from typing import Optional


class CoreError(Exception):
    """Base class for all FigTreeLib errors."""

    kind = 'core'
    exit_code = 1


class MalformedDocument(CoreError):
    """Raised when a payload does not match the document schema.

    Attributes:
        path: JSON path of the offending value (e.g. ``document.children[0].id``)
    """

    kind = 'malformed_document'
    exit_code = 65

    def __init__(self, message: str, path: str = ''):
        self.path = path
        if path:
            message = f"{message} (at '{path}')"
        super().__init__(message)


class CacheError(CoreError):
    """Base class for cache store failures."""

    kind = 'cache'
    exit_code = 74


class CacheCorrupt(CacheError):
    """A payload file exists but cannot be read or decoded."""

    kind = 'cache_corrupt'

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Cache entry {key} is corrupt: {reason}")


class CacheWriteError(CacheError):
    """A payload or index file could not be written."""

    kind = 'cache_write'


class TransportError(CoreError):
    """Base class for failures reported by the transport collaborator."""

    kind = 'transport'
    exit_code = 69

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        # Set by the orchestrator once retries are exhausted
        self.attempts = 0
        super().__init__(message)


class TransportTransient(TransportError):
    """A failure that may succeed if retried later."""

    kind = 'transport_transient'


class RateLimited(TransportTransient):
    """The remote service asked us to slow down."""

    kind = 'rate_limited'

    def __init__(self, message: str = 'rate limited', retry_after: Optional[float] = None,
                 status: Optional[int] = 429):
        self.retry_after = retry_after
        super().__init__(message, status)


class NetworkError(TransportTransient):
    """Connection failure, timeout or server-side (5xx) error."""

    kind = 'network'


class TransportFatal(TransportError):
    """A failure that retrying cannot fix."""

    kind = 'transport_fatal'


class Unauthorized(TransportFatal):
    """Missing, invalid or insufficient credentials."""

    kind = 'unauthorized'
    exit_code = 77


class NotFound(TransportFatal):
    """The requested document or node does not exist."""

    kind = 'not_found'
    exit_code = 66


class QueryError(CoreError):
    """Base class for query failures.

    Attributes:
        expression: The query text that failed
    """

    kind = 'query'
    exit_code = 2

    def __init__(self, message: str, expression: str):
        self.expression = expression
        super().__init__(f"{message}: {expression!r}")


class InvalidExpression(QueryError):
    """The expression could not be parsed."""

    kind = 'invalid_expression'


class EvaluationError(QueryError):
    """The expression parsed but failed while being evaluated."""

    kind = 'evaluation'


class ConfigError(CoreError):
    """Invalid or unreadable configuration."""

    kind = 'config'
    exit_code = 78


class ValidationError(CoreError):
    """Invalid user-supplied input such as a malformed file key."""

    kind = 'validation'
    exit_code = 2

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")
