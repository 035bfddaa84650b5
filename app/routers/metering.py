"""
Cached, metered responses for API-key endpoints.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

from fastapi import Request, Response, status
from fastapi.encoders import jsonable_encoder

from app.database.models import UsageStatus
from app.models.schemas import APIKeyContext
from app.services.cache_service import etag_matches, make_fingerprint
from app.services.container import ServiceContainer

logger = logging.getLogger(__name__)


async def metered_response(
    request: Request,
    api_key: APIKeyContext,
    services: ServiceContainer,
    compute: Callable[[], Awaitable[Any]],
    vary_query: Sequence[str] = (),
    vary_headers: Sequence[str] = (),
    ttl_seconds: Optional[int] = None,
) -> Response:
    """
    Serve a payload through the response cache and log the call.

    Cache hits and 304 responses are logged as successful usage like any
    other call. Errors raised by ``compute`` are logged with an error
    status and re-raised.

    Args:
        request: Incoming request
        api_key: Validated caller
        services: Service container
        compute: Coroutine function producing the JSON-able payload
        vary_query: Query parameters that distinguish cache entries
        vary_headers: Headers that distinguish cache entries
        ttl_seconds: Cache lifetime (defaults to CACHE_TTL_SECONDS)

    Returns:
        JSON response with X-Cache, ETag and Cache-Control headers, or 304
    """
    endpoint = request.url.path
    ttl = ttl_seconds if ttl_seconds is not None else services.settings.CACHE_TTL_SECONDS
    fingerprint = make_fingerprint(
        endpoint, request.query_params, vary_query, request.headers, vary_headers
    )

    async def compute_payload() -> bytes:
        data = await compute()
        return json.dumps(jsonable_encoder(data), separators=(",", ":")).encode("utf-8")

    try:
        lookup = await services.response_cache.get_or_compute(fingerprint, compute_payload, ttl)
    except Exception:
        services.log_queue.enqueue(api_key.user_id, api_key.key_id, endpoint, UsageStatus.ERROR)
        raise

    services.log_queue.enqueue(api_key.user_id, api_key.key_id, endpoint, UsageStatus.SUCCESS)

    headers = {
        "X-Cache": "HIT" if lookup.hit else "MISS",
        "ETag": lookup.etag,
        "Cache-Control": f"public, max-age={int(ttl)}",
    }

    if etag_matches(request.headers.get("if-none-match"), lookup.etag):
        logger.debug(f"ETag match for {fingerprint}, returning 304")
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)

    return Response(content=lookup.payload, media_type="application/json", headers=headers)
