"""
Fetch orchestration: cache lookup, remote fetch with retry, cache population.

Every request moves through a small state machine::

    IDLE -> CACHE_LOOKUP -> CACHE_HIT
                         -> FETCHING -> DECODE -> CACHE_POPULATE -> DONE
                            FETCHING -> RETRY_WAIT -> FETCHING
                            (any)    -> FAIL_TERMINAL

Transient transport failures are retried with backoff; fatal ones and
decode failures end the request immediately. A semaphore bounds the number
of transport calls in flight, and backoff waits happen outside it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence

from ..caching.store import CacheKey, DocumentCache
from ..config import CoreConfig
from ..core.document import Document, decode_document
from ..errors import CacheError, MalformedDocument, TransportFatal, TransportTransient
from .retry import RetryPolicy
from .transport import Transport


logger = logging.getLogger(__name__)


class FetchState(Enum):
    IDLE = 'idle'
    CACHE_LOOKUP = 'cache_lookup'
    CACHE_HIT = 'cache_hit'
    FETCHING = 'fetching'
    RETRY_WAIT = 'retry_wait'
    DECODE = 'decode'
    CACHE_POPULATE = 'cache_populate'
    DONE = 'done'
    FAIL_TERMINAL = 'fail_terminal'


TERMINAL_STATES: FrozenSet[FetchState] = frozenset({
    FetchState.CACHE_HIT, FetchState.DONE, FetchState.FAIL_TERMINAL,
})

# FAIL_TERMINAL is reachable from every non-terminal state
_TRANSITIONS: Dict[FetchState, FrozenSet[FetchState]] = {
    FetchState.IDLE: frozenset({FetchState.CACHE_LOOKUP, FetchState.FETCHING}),
    FetchState.CACHE_LOOKUP: frozenset({FetchState.CACHE_HIT, FetchState.FETCHING}),
    FetchState.FETCHING: frozenset({FetchState.DECODE, FetchState.RETRY_WAIT}),
    FetchState.RETRY_WAIT: frozenset({FetchState.FETCHING}),
    FetchState.DECODE: frozenset({FetchState.CACHE_POPULATE, FetchState.DONE}),
    FetchState.CACHE_POPULATE: frozenset({FetchState.DONE}),
}


@dataclass
class FetchRequest:
    """
    One document fetch and the states it went through.

    Attributes:
        key: Cache key identifying the request
        state: Current state
        history: Every state entered, in order (starts with IDLE)
        attempts: Transport calls made so far
        delays: Backoff delays waited, in seconds
        document: Result once the request succeeded
        error: Terminal error once the request failed
    """

    key: CacheKey
    state: FetchState = FetchState.IDLE
    history: List[FetchState] = field(default_factory=lambda: [FetchState.IDLE])
    attempts: int = 0
    delays: List[float] = field(default_factory=list)
    document: Optional[Document] = None
    error: Optional[BaseException] = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def from_cache(self) -> bool:
        return self.state is FetchState.CACHE_HIT

    def transition(self, state: FetchState) -> None:
        if self.done:
            raise RuntimeError(f"{self.key}: request already finished in {self.state.name}")
        if state is not FetchState.FAIL_TERMINAL and state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"{self.key}: invalid transition {self.state.name} -> {state.name}")
        logger.debug("%s: %s -> %s", self.key, self.state.name, state.name)
        self.state = state
        self.history.append(state)

    def result(self) -> Document:
        """Return the document, or raise the terminal error."""
        if self.error is not None:
            raise self.error
        if self.document is None:
            raise RuntimeError(f"{self.key}: request has not finished")
        return self.document


class FetchOrchestrator:
    """
    Drives document fetches through the cache and the transport.

    Example:
        cache = DocumentCache.from_config(config.cache)
        orchestrator = FetchOrchestrator(transport, cache, config)
        document = await orchestrator.fetch_document("AbCdEf...")
    """

    def __init__(self,
                 transport: Transport,
                 cache: Optional[DocumentCache] = None,
                 config: Optional[CoreConfig] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 retry_policy: Optional[RetryPolicy] = None):
        """
        Initialize orchestrator.

        Args:
            transport: Performs the remote fetches
            cache: Document cache (None disables caching)
            config: Retry and concurrency settings
            sleep: Awaitable used for backoff waits (injectable for tests)
            retry_policy: Overrides the policy built from ``config.retry``
        """
        self.transport = transport
        self.config = config or CoreConfig()
        self.cache = cache if self.config.cache.enabled else None
        self.retry_policy = retry_policy or RetryPolicy(self.config.retry)
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(self.config.performance.max_concurrent)

    async def fetch_document(self, origin_id: str, depth: Optional[int] = None,
                             node_ids: Optional[Sequence[str]] = None) -> Document:
        """Fetch a document, from the cache when possible.

        Raises:
            TransportError: Fatal failure, or transient failure after all retries
            MalformedDocument: The response did not match the document schema
        """
        request = await self.fetch(origin_id, depth, node_ids)
        return request.result()

    async def fetch(self, origin_id: str, depth: Optional[int] = None,
                    node_ids: Optional[Sequence[str]] = None) -> FetchRequest:
        """Run one request to completion and return it.

        Failures are recorded on the returned request rather than raised.
        Cancellation propagates.
        """
        if depth is None:
            depth = self.config.performance.default_depth
        request = FetchRequest(CacheKey(origin_id, depth, node_ids or ()))

        try:
            await self._run(request)
        except asyncio.CancelledError:
            if not request.done:
                request.transition(FetchState.FAIL_TERMINAL)
            raise
        return request

    async def fetch_many(self, origin_ids: Iterable[str],
                         depth: Optional[int] = None) -> List[FetchRequest]:
        """Fetch several documents concurrently (bounded by ``max_concurrent``)."""
        return list(await asyncio.gather(*(self.fetch(origin_id, depth) for origin_id in origin_ids)))

    async def _run(self, request: FetchRequest) -> None:
        key = request.key

        if self.cache is not None:
            request.transition(FetchState.CACHE_LOOKUP)
            document = self.cache.get(key)
            if document is not None:
                request.document = document
                request.transition(FetchState.CACHE_HIT)
                return

        raw = await self._fetch_with_retry(request)
        if request.done:
            return

        request.transition(FetchState.DECODE)
        try:
            document = decode_document(raw)
        except MalformedDocument as e:
            logger.error("Response for %s is malformed: %s", key, e)
            self._fail(request, e)
            return

        if self.cache is not None:
            request.transition(FetchState.CACHE_POPULATE)
            try:
                self.cache.put(key, document)
            except CacheError as e:
                logger.warning("Failed to cache %s: %s", key, e)

        request.document = document
        request.transition(FetchState.DONE)

    async def _fetch_with_retry(self, request: FetchRequest) -> Optional[Any]:
        key = request.key
        policy = self.retry_policy

        while True:
            request.transition(FetchState.FETCHING)
            request.attempts += 1
            try:
                async with self._semaphore:
                    return await self.transport.fetch(key.origin_id, key.depth, key.node_ids)
            except TransportFatal as e:
                e.attempts = request.attempts
                logger.error("Fetch of %s failed: %s", key, e)
                self._fail(request, e)
                return None
            except TransportTransient as e:
                retries_done = request.attempts - 1
                if not policy.should_retry(e, retries_done):
                    e.attempts = request.attempts
                    logger.error("Giving up on %s after %d attempts: %s", key, request.attempts, e)
                    self._fail(request, e)
                    return None

                delay = policy.compute_delay(retries_done, e)
                request.transition(FetchState.RETRY_WAIT)
                request.delays.append(delay)
                logger.warning("Fetch of %s failed (attempt %d/%d): %s. Retrying in %.2fs",
                               key, request.attempts, policy.max_attempts, e, delay)
                await self._sleep(delay)

    def _fail(self, request: FetchRequest, error: BaseException) -> None:
        request.error = error
        request.transition(FetchState.FAIL_TERMINAL)
