"""Configuration system for FigTreeLib.

This module defines the read-only inputs of the cached document pipeline:
where the cache lives and how long entries stay valid, how fetches are
retried, how many run concurrently, and how transport status codes are
classified.

Configuration can be built directly, from a TOML file, from a plain mapping
or from ``FIGTREE_*`` environment variables::

    config = CoreConfig.from_toml(Path("~/.config/figtree/config.toml"))
    config = CoreConfig.from_env()
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from .errors import ConfigError


DEFAULT_CACHE_DIR = Path.home() / '.cache' / 'figtree'
SECONDS_PER_HOUR = 60 * 60
DEFAULT_TTL_HOURS = 24
DEFAULT_TTL_SECONDS = DEFAULT_TTL_HOURS * SECONDS_PER_HOUR


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the on-disk document cache."""

    directory: Path = DEFAULT_CACHE_DIR
    ttl_seconds: float = DEFAULT_TTL_SECONDS
    memory_entries: int = 32        # Decoded documents kept in memory
    enabled: bool = True


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff settings for transient transport failures.

    The delay before retry ``n`` (0-based) is ``base_delay * backoff_factor ** n``
    capped at ``max_delay`` and scaled by a random factor from ``jitter``.
    """

    max_retries: int = 3
    base_delay: float = 1.0          # Seconds
    max_delay: float = 32.0          # Seconds
    backoff_factor: float = 2.0
    jitter: tuple = (0.75, 1.25)

    @classmethod
    def no_delay(cls, max_retries: int = 3) -> 'RetryConfig':
        """Create a config that retries immediately (useful in tests).

        Args:
            max_retries: Maximum number of retries after the first attempt

        Returns:
            RetryConfig with zero delays and no jitter
        """
        return cls(max_retries=max_retries, base_delay=0.0, max_delay=0.0, jitter=(1.0, 1.0))


@dataclass(frozen=True)
class PerformanceConfig:
    """Configuration for concurrent fetching."""

    max_concurrent: int = 50         # In-flight transport calls
    default_depth: Optional[int] = None


@dataclass(frozen=True)
class StatusMapping:
    """How HTTP status codes map onto transport error categories.

    Codes not listed in any set are treated as transient network errors,
    and every 5xx code is transient unless listed in ``not_found`` or
    ``unauthorized``.
    """

    unauthorized: FrozenSet[int] = frozenset({401, 403})
    not_found: FrozenSet[int] = frozenset({404})
    rate_limited: FrozenSet[int] = frozenset({429})
    default_retry_after: Optional[float] = 60.0


@dataclass(frozen=True)
class CoreConfig:
    """Complete configuration for the cached document pipeline."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    status: StatusMapping = field(default_factory=StatusMapping)

    # Convenience constructors for common configurations

    @classmethod
    def for_directory(cls, directory: Path, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> 'CoreConfig':
        """Create config with a cache rooted at ``directory``.

        Args:
            directory: Cache directory
            ttl_seconds: Default time-to-live for new entries

        Returns:
            CoreConfig using that cache location
        """
        return cls(cache=CacheConfig(directory=Path(directory), ttl_seconds=ttl_seconds))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'CoreConfig':
        """Build config from a nested mapping (e.g. a parsed TOML document).

        Recognised tables are ``cache``, ``http``, ``performance``,
        ``extraction`` and ``status``. Unknown keys are ignored so the same
        file can carry settings for other tools. ``[cache] ttl`` is in hours.

        Raises:
            ConfigError: If a value has the wrong type
        """
        cache_data = _table(data, 'cache')
        http_data = _table(data, 'http')
        perf_data = _table(data, 'performance')
        extraction_data = _table(data, 'extraction')
        status_data = _table(data, 'status')

        try:
            cache = CacheConfig(
                directory=Path(cache_data.get('path', DEFAULT_CACHE_DIR)).expanduser(),
                ttl_seconds=float(cache_data.get('ttl', DEFAULT_TTL_HOURS)) * SECONDS_PER_HOUR,
                memory_entries=int(cache_data.get('memory_entries', 32)),
                enabled=bool(cache_data.get('enabled', True)),
            )
            # Delays are written in milliseconds in the config file
            retry = RetryConfig(
                max_retries=int(http_data.get('retries', 3)),
                base_delay=float(http_data.get('retry_delay', 1000)) / 1000.0,
                max_delay=float(http_data.get('max_delay', 32000)) / 1000.0,
                backoff_factor=float(http_data.get('backoff', 2.0)),
            )
            performance = PerformanceConfig(
                max_concurrent=int(perf_data.get('concurrent', 50)),
                default_depth=_optional_int(extraction_data.get('depth')),
            )
            defaults = StatusMapping()
            status = StatusMapping(
                unauthorized=_status_codes(status_data, 'unauthorized', defaults.unauthorized),
                not_found=_status_codes(status_data, 'not_found', defaults.not_found),
                rate_limited=_status_codes(status_data, 'rate_limited', defaults.rate_limited),
                default_retry_after=_optional_float(
                    status_data.get('default_retry_after', defaults.default_retry_after)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

        config = cls(cache=cache, retry=retry, performance=performance, status=status)
        config.raise_if_invalid()
        return config

    @classmethod
    def from_toml(cls, path: Path) -> 'CoreConfig':
        """Load config from a TOML file.

        A missing file yields the default configuration.

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        path = Path(path).expanduser()
        if not path.exists():
            return cls()
        try:
            with path.open('rb') as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}") from e
        return cls.from_mapping(data)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 base: Optional['CoreConfig'] = None) -> 'CoreConfig':
        """Overlay ``FIGTREE_*`` environment variables onto a base config.

        Variables: ``FIGTREE_CACHE_DIR``, ``FIGTREE_CACHE_TTL`` (seconds),
        ``FIGTREE_MAX_RETRIES``, ``FIGTREE_MAX_CONCURRENT``.
        """
        env = os.environ if environ is None else environ
        config = base or cls()

        cache = config.cache
        retry = config.retry
        performance = config.performance
        try:
            if 'FIGTREE_CACHE_DIR' in env:
                cache = CacheConfig(Path(env['FIGTREE_CACHE_DIR']).expanduser(), cache.ttl_seconds,
                                    cache.memory_entries, cache.enabled)
            if 'FIGTREE_CACHE_TTL' in env:
                cache = CacheConfig(cache.directory, float(env['FIGTREE_CACHE_TTL']),
                                    cache.memory_entries, cache.enabled)
            if 'FIGTREE_MAX_RETRIES' in env:
                retry = RetryConfig(int(env['FIGTREE_MAX_RETRIES']), retry.base_delay,
                                    retry.max_delay, retry.backoff_factor, retry.jitter)
            if 'FIGTREE_MAX_CONCURRENT' in env:
                performance = PerformanceConfig(int(env['FIGTREE_MAX_CONCURRENT']),
                                                performance.default_depth)
        except ValueError as e:
            raise ConfigError(f"Invalid environment override: {e}") from e

        result = cls(cache=cache, retry=retry, performance=performance, status=config.status)
        result.raise_if_invalid()
        return result

    def validate(self) -> List[str]:
        """Validate configuration for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.cache.ttl_seconds < 0:
            errors.append("cache ttl cannot be negative")
        if self.cache.memory_entries < 0:
            errors.append("memory_entries cannot be negative")

        if self.retry.max_retries < 0:
            errors.append("max_retries cannot be negative")
        if self.retry.base_delay < 0 or self.retry.max_delay < 0:
            errors.append("retry delays cannot be negative")
        if self.retry.max_delay < self.retry.base_delay:
            errors.append("max_delay cannot be less than base_delay")
        if self.retry.backoff_factor < 1:
            errors.append("backoff_factor must be at least 1")
        low, high = self.retry.jitter
        if low < 0 or high < low:
            errors.append("jitter must be a (low, high) range with 0 <= low <= high")

        if self.performance.max_concurrent <= 0:
            errors.append("max_concurrent must be positive")
        if self.performance.default_depth is not None and self.performance.default_depth <= 0:
            errors.append("default_depth must be positive")

        return errors

    def raise_if_invalid(self) -> None:
        """Raise ``ConfigError`` listing every validation problem."""
        errors = self.validate()
        if errors:
            raise ConfigError("; ".join(errors))


def _table(data: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, Mapping):
        raise ConfigError(f"[{name}] must be a table")
    return dict(value)


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _status_codes(data: Mapping[str, Any], key: str, default: FrozenSet[int]) -> FrozenSet[int]:
    if key not in data:
        return default
    value = data[key]
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
        raise TypeError(f"[status] {key} must be a list of status codes")
    return frozenset(int(code) for code in value)
