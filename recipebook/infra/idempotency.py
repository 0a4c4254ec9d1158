"""Idempotency-Key support for retried POSTs.

The first request under a key stores its response in Redis; a replay with
the same payload gets the stored response back instead of a second write.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Union

from fastapi import Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from ..errors import Conflict
from .redis_client import get_redis

logger = logging.getLogger("recipebook.idempotency")

DONE_TTL_SEC = 60 * 60 * 24
PROCESSING_TTL_SEC = 60
HEADER = "Idempotency-Key"


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _hash_request(method: str, path: str, body_bytes: bytes) -> str:
    h = hashlib.sha256()
    h.update(method.encode("utf-8"))
    h.update(b"|")
    h.update(path.encode("utf-8"))
    h.update(b"|")
    h.update(body_bytes or b"")
    return h.hexdigest()


def _idemp_redis_key(subject: int, route_key: str, idem_key: str) -> str:
    return f"recipebook:idemp:{subject}:{route_key}:{idem_key}"


async def idempotency_precheck(
    request: Request, *, subject: int, route_key: str
) -> Union[None, tuple[str, str], JSONResponse]:
    """Decide how to handle a possibly repeated request.

    Returns:
        None: no Idempotency-Key header, proceed without tracking
        (redis_key, request_hash): proceed, then store the result
        JSONResponse: replay of the stored response

    Raises:
        Conflict: key reused with a different payload, or still processing
    """
    idem_key = request.headers.get(HEADER)
    if not idem_key:
        return None

    body_bytes = await request.body()
    req_hash = _hash_request(request.method, request.url.path, body_bytes)

    rkey = _idemp_redis_key(subject, route_key, idem_key)
    r = await get_redis()

    raw = await r.get(rkey)
    if raw:
        data = json.loads(raw)
        if data.get("request_hash") and data["request_hash"] != req_hash:
            raise Conflict("Idempotency-Key reused with different request payload")
        if data.get("state") == "done":
            return JSONResponse(content=data.get("body"), status_code=int(data.get("status", 200)))
        raise Conflict("Request with this Idempotency-Key is still processing. Retry shortly.")

    processing_payload = {
        "state": "processing",
        "status": None,
        "body": None,
        "created_at": _iso_now(),
        "completed_at": None,
        "request_hash": req_hash,
    }
    # SET NX: only one request may own the key
    ok = await r.set(rkey, json.dumps(processing_payload), ex=PROCESSING_TTL_SEC, nx=True)
    if not ok:
        raise Conflict("Request with this Idempotency-Key is still processing. Retry shortly.")

    return (rkey, req_hash)


async def idempotency_store_result(redis_key: str, req_hash: str, *, status: int, body: dict):
    r = await get_redis()
    payload = {
        "state": "done",
        "status": int(status),
        "body": body,
        "created_at": None,
        "completed_at": _iso_now(),
        "request_hash": req_hash,
    }
    await r.set(redis_key, json.dumps(payload), ex=DONE_TTL_SEC)


async def idempotency_clear_key(redis_key: str) -> None:
    """Release the key after a failed request so the client can retry.

    Redis errors are logged, never raised: the caller is already handling
    the request's own failure.
    """
    try:
        r = await get_redis()
        await r.delete(redis_key)
    except (RedisError, OSError) as e:
        logger.error(f"Could not release idempotency key {redis_key}: {e}")
