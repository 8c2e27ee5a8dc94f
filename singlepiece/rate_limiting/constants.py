import asyncio
from typing import Any, Dict

from singlepiece.common.logging_setup import get_logger

logger = get_logger("singlepiece.rate_limiting")

RATE_LIMIT_PREFIX = "rl"    # redis key prefix
REDIS_TIMEOUT_SECONDS = 0.5
FAIL_OPEN = True                  # if redis is unavailable, allow requests (True) or deny (False)
USE_IN_MEMORY_FALLBACK = True     # per-process fallback when redis fails (not distributed)

_in_memory_counters: Dict[str, Dict[str, Any]] = {}
_in_memory_lock = asyncio.Lock()
