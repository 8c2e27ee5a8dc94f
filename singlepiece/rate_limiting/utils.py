import asyncio
import time
from typing import Optional, Tuple

from fastapi import Request

from singlepiece.cache._cache import redis_client
from singlepiece.rate_limiting.constants import _in_memory_counters, _in_memory_lock, logger
from singlepiece.rate_limiting.lua_scripts import LUA_FIXED_WINDOW_INCR_AND_PEXPIRE

_script_sha: Optional[str] = None
_script_lock = asyncio.Lock()


async def _ensure_lua_loaded() -> Optional[str]:
    """Load the fixed window script into the redis script cache once; None means fall back to EVAL."""
    global _script_sha
    if _script_sha:
        return _script_sha
    async with _script_lock:
        if _script_sha:
            return _script_sha
        try:
            _script_sha = await redis_client.script_load(LUA_FIXED_WINDOW_INCR_AND_PEXPIRE)
        except Exception as exc:
            logger.warning("rate_limit.script_load_failed", extra={"error": str(exc)})
            _script_sha = None
        return _script_sha


def _identifier_from_request(request: Request) -> Tuple[str, str]:
    """
    authenticated buyer id or fallback to ip
    """
    user_identifier = getattr(request.state, "user_identifier", None)
    if user_identifier:
        return str(user_identifier), "user"
    # X-Forwarded-For: trust only when behind a proper proxy
    xff = request.headers.get("X-Forwarded-For")
    if xff:
        client_host = xff.split(",")[0].strip()
    else:
        client_host = request.client.host if request.client else "unknown"
    return client_host or "unknown", "ip"


# non distributed fallback for redis unavailability, use only for short outages
async def _in_memory_allow(key: str, limit: int, window: int) -> Tuple[bool, int, int]:
    async with _in_memory_lock:
        now = int(time.time())
        existing = _in_memory_counters.get(key)
        if not existing or existing["expires_at"] <= now:
            _in_memory_counters[key] = {"count": 1, "expires_at": now + window}
            return True, max(0, limit - 1), now + window
        if existing["count"] >= limit:
            return False, 0, existing["expires_at"]
        existing["count"] += 1
        return True, max(0, limit - existing["count"]), existing["expires_at"]
