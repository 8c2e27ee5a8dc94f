from typing import Iterable

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware

from singlepiece.auth.dependencies import Authentication
from singlepiece.common.utils import build_error, json_error
from singlepiece.middlewares.constants import logger


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Resolves the bearer token into `request.state.user_identifier`; `paths` are skipped."""

    def __init__(self, app, *, paths: Iterable[str]):
        super().__init__(app)
        self.paths = tuple(paths)

    async def dispatch(self, request: Request, call_next):

        path = request.url.path
        if any(path.startswith(p) for p in self.paths):
            return await call_next(request)

        try:
            auth_token = await Authentication()(request)
        except Exception as e:
            reason = getattr(e, "detail", "Missing or Invalid Auth Headers")
            logger.warning("auth.middleware.failed", extra={
                "reason": reason,
                "path": path,
                "method": request.method
            })
            payload = build_error(code="INVALID_AUTH", details={"message": "Missing or Invalid Auth Headers"})
            return json_error(payload, status_code=status.HTTP_401_UNAUTHORIZED)

        request.state.user_identifier = str(auth_token.get("sub"))
        request.state.user_roles = auth_token.get("roles") or []

        logger.debug("auth.middleware.success", extra={"buyer_id": request.state.user_identifier, "path": path})
        return await call_next(request)
