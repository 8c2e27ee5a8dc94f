import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from jose import JWTError, jwt

from singlepiece.config.settings import config_settings


def create_access_token(buyer_id: str, roles: Optional[List[str]] = None,
                        expires_dur: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    expiry = now + timedelta(minutes=expires_dur or config_settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(buyer_id),
        "iat": int(now.timestamp()),
        "exp": int(expiry.timestamp()),
        "jti": secrets.token_hex(16),
        "roles": roles or [],
    }
    return jwt.encode(claims=payload, key=config_settings.JWT_SECRET, algorithm=config_settings.JWT_ALGO)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """To verify the signature, expiration and claims of token"""
    try:
        return jwt.decode(token, key=config_settings.JWT_SECRET, algorithms=[config_settings.JWT_ALGO])
    except JWTError:
        return None
