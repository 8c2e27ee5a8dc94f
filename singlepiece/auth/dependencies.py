import secrets
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPBearer

from singlepiece.auth.utils import decode_token
from singlepiece.config.admin_config import admin_config


class Authentication(HTTPBearer):
    def __init__(self, auto_error=True):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request: Request) -> Optional[Dict[str, Any]]:
        auth_creds = await super().__call__(request)
        if auth_creds is None:
            return None

        decoded_token = decode_token(auth_creds.credentials)
        if not decoded_token or not decoded_token.get("sub"):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token provided.")
        return decoded_token


def current_buyer(request: Request) -> str:
    buyer_id = getattr(request.state, "user_identifier", None)
    if not buyer_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not authenticated")
    return buyer_id


async def require_admin(request: Request) -> str:
    """Admin identity for the request: the `X-Admin-Key` shared secret, or a bearer token carrying the admin role."""
    admin_key = request.headers.get("X-Admin-Key")
    if admin_config.ADMIN_SECRET and admin_key and secrets.compare_digest(admin_key, admin_config.ADMIN_SECRET):
        request.state.admin_id = "admin-key"
        return request.state.admin_id

    claims = await Authentication(auto_error=False)(request)
    if not claims:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing or Invalid Auth Headers")
    if admin_config.ADMIN_ROLE not in (claims.get("roles") or []):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")

    request.state.admin_id = str(claims["sub"])
    return request.state.admin_id
