import asyncio
import time
from typing import Tuple

from singlepiece.cache._cache import redis_client
from singlepiece.rate_limiting import utils as rl_utils
from singlepiece.rate_limiting.constants import FAIL_OPEN, REDIS_TIMEOUT_SECONDS, USE_IN_MEMORY_FALLBACK, logger
from singlepiece.rate_limiting.lua_scripts import LUA_FIXED_WINDOW_INCR_AND_PEXPIRE


async def redis_allow(key: str, limit: int, window: int) -> Tuple[bool, int, int]:
    """
    Returns (allowed: bool, remaining: int, reset_ts: int)
    """
    pexpire_ms = int(window * 1000)

    try:
        sha = await asyncio.wait_for(rl_utils._ensure_lua_loaded(), timeout=REDIS_TIMEOUT_SECONDS)
        if sha:
            call = redis_client.evalsha(sha, 1, key, pexpire_ms)
        else:
            call = redis_client.eval(LUA_FIXED_WINDOW_INCR_AND_PEXPIRE, 1, key, pexpire_ms)
        res = await asyncio.wait_for(call, timeout=REDIS_TIMEOUT_SECONDS)

        now = int(time.time())
        if not res or len(res) < 2:
            # conservative fallback: allow
            return True, max(0, limit - 1), now + window
        count = int(res[0])
        ttl_ms = int(res[1])
        reset_ts = now + (ttl_ms // 1000) if ttl_ms > 0 else now + window
        allowed = count <= limit
        remaining = max(0, limit - count) if allowed else 0
        return allowed, remaining, reset_ts
    except Exception as exc:
        # redis operation failed (timeout, network, auth)
        logger.warning("rate_limit.redis_error", extra={"error": str(exc)})
        if USE_IN_MEMORY_FALLBACK:
            return await rl_utils._in_memory_allow(key, limit, window)
        now = int(time.time())
        if FAIL_OPEN:
            return True, max(0, limit - 1), now + window
        return False, 0, now + window
