"""
In-memory response cache with TTL, ETags and size-bounded eviction.
"""
import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A stored payload."""
    fingerprint: str
    payload: Any
    created_at: float
    etag: str
    ttl_seconds: float

    def is_fresh(self, now: float) -> bool:
        return now - self.created_at < self.ttl_seconds


class CacheLookup(NamedTuple):
    """Result of get_or_compute."""
    payload: Any
    hit: bool
    etag: str


def make_fingerprint(
    path: str,
    query_params: Mapping[str, str],
    vary_query: Sequence[str] = (),
    headers: Optional[Mapping[str, str]] = None,
    vary_headers: Sequence[str] = (),
) -> str:
    """
    Build a deterministic cache key from a request.

    Only the declared query parameters and headers take part, in the order
    they are declared; absent values contribute an empty string.
    """
    parts = [path]
    parts.extend(f"{name}={query_params.get(name, '')}" for name in vary_query)
    if vary_headers:
        headers = headers or {}
        parts.extend(f"h:{name.lower()}={headers.get(name, '')}" for name in vary_headers)
    return "|".join(parts)


def compute_etag(payload: Any) -> str:
    """Strong ETag (quoted content hash) for a payload."""
    if isinstance(payload, (bytes, bytearray)):
        raw = bytes(payload)
    elif isinstance(payload, str):
        raw = payload.encode("utf-8")
    else:
        raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return f'"{hashlib.sha256(raw).hexdigest()[:32]}"'


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """Evaluate an If-None-Match header against an ETag."""
    if not if_none_match:
        return False
    candidates = [value.strip() for value in if_none_match.split(",")]
    return "*" in candidates or etag in candidates or f"W/{etag}" in candidates


class ResponseCache:
    """
    Process-wide map from request fingerprint to payload.

    When the entry count exceeds ``max_size`` the oldest ``eviction_ratio``
    share of entries, by write time, is evicted.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 300,
        eviction_ratio: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.eviction_ratio = eviction_ratio
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, fingerprint: str) -> Optional[CacheEntry]:
        """Fresh entry for a fingerprint; stale entries are evicted."""
        entry = self._entries.get(fingerprint)
        if entry is None:
            return None
        if not entry.is_fresh(self.clock()):
            logger.debug(f"Cache expired for {fingerprint}")
            self._entries.pop(fingerprint, None)
            return None
        return entry

    def set(self, fingerprint: str, payload: Any, ttl_seconds: Optional[float] = None) -> CacheEntry:
        """Store a payload, evicting old entries when over capacity."""
        entry = CacheEntry(
            fingerprint=fingerprint,
            payload=payload,
            created_at=self.clock(),
            etag=compute_etag(payload),
            ttl_seconds=self.default_ttl if ttl_seconds is None else ttl_seconds,
        )
        self._entries[fingerprint] = entry
        if len(self._entries) > self.max_size:
            self._evict_oldest()
        return entry

    def _evict_oldest(self) -> None:
        count = max(1, int(len(self._entries) * self.eviction_ratio))
        oldest = sorted(self._entries.values(), key=lambda e: e.created_at)[:count]
        for entry in oldest:
            del self._entries[entry.fingerprint]
        logger.info(f"Evicted {count} cache entries, {len(self._entries)} remaining")

    async def get_or_compute(
        self,
        fingerprint: str,
        compute_fn: Callable[[], Awaitable[Any]],
        ttl_seconds: Optional[float] = None,
    ) -> CacheLookup:
        """
        Return the cached payload or compute and store a new one.

        Concurrent misses for one fingerprint share a single compute_fn
        call: the first caller computes, the others wait for its result
        and report a hit. Errors raised by compute_fn propagate to every
        waiting caller and nothing is stored. A failure while storing the
        result is logged and the computed payload is still returned.

        Args:
            fingerprint: Request fingerprint
            compute_fn: Coroutine function producing the payload
            ttl_seconds: Time to live (defaults to the cache default)

        Returns:
            CacheLookup(payload, hit, etag)
        """
        while True:
            entry = self.get(fingerprint)
            if entry is not None:
                self.hits += 1
                logger.debug(f"Cache HIT for {fingerprint}")
                return CacheLookup(entry.payload, True, entry.etag)

            in_flight = self._in_flight.get(fingerprint)
            if in_flight is None:
                break

            try:
                payload, etag = await asyncio.shield(in_flight)
            except asyncio.CancelledError:
                if in_flight.cancelled():
                    # the computing caller went away; try again
                    continue
                raise
            self.hits += 1
            logger.debug(f"Cache HIT for {fingerprint} (shared compute)")
            return CacheLookup(payload, True, etag)

        self.misses += 1
        logger.debug(f"Cache MISS for {fingerprint}")
        in_flight = asyncio.get_running_loop().create_future()
        self._in_flight[fingerprint] = in_flight
        try:
            try:
                payload = await compute_fn()
            except asyncio.CancelledError:
                in_flight.cancel()
                raise
            except Exception as e:
                in_flight.set_exception(e)
                # waiters, if any, re-raise it; nobody else needs to see it
                in_flight.exception()
                raise

            try:
                entry = self.set(fingerprint, payload, ttl_seconds)
                etag = entry.etag
            except Exception as e:
                logger.warning(f"Error caching response for {fingerprint}: {e}")
                etag = compute_etag(payload)

            in_flight.set_result((payload, etag))
            return CacheLookup(payload, False, etag)
        finally:
            self._in_flight.pop(fingerprint, None)

    def invalidate(self, prefix: str = "") -> int:
        """Remove entries whose fingerprint starts with prefix."""
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.info(f"Invalidated {len(keys)} cache entries matching prefix: {prefix!r}")
        return len(keys)

    def stats(self) -> Dict[str, Any]:
        """Cache statistics."""
        return {
            "entries": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
        }
