import time
from typing import Optional

from fastapi import HTTPException, Request, status

from singlepiece.config.settings import config_settings
from singlepiece.rate_limiting.constants import RATE_LIMIT_PREFIX, logger
from singlepiece.rate_limiting.rate_limit_fixed_window import redis_allow
from singlepiece.rate_limiting.utils import _identifier_from_request


def rate_limit_dependency(limit: Optional[int] = None, window: Optional[int] = None,
                          route_key: Optional[str] = None):
    async def _dep(request: Request):
        if not config_settings.RATE_LIMIT_ENABLED:
            return
        _limit = limit or config_settings.CLAIM_RATE_LIMIT
        _window = window or config_settings.CLAIM_RATE_WINDOW
        identifier, scope = _identifier_from_request(request)
        key = f"{RATE_LIMIT_PREFIX}:{scope}:{identifier}:{route_key or request.url.path}"

        allowed, remaining, reset = await redis_allow(key, _limit, _window)
        request.state.rate_limit = {"limit": _limit, "remaining": remaining, "reset": reset}
        if not allowed:
            retry_after = max(0, reset - int(time.time()))
            logger.info("rate_limit.denied", extra={"scope": scope, "route": route_key or request.url.path})
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests",
                headers={"Retry-After": str(retry_after)}
            )
    return _dep
