import random
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from fastapi.responses import JSONResponse

from singlepiece.common.constants import ORDER_REF_PREFIX, request_id_ctx

_REF_ALPHABET = string.ascii_uppercase + string.digits


def now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps may come back naive (sqlite); they are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def seconds_left(deadline: Optional[datetime], at: datetime) -> int:
    deadline = as_utc(deadline)
    if deadline is None:
        return 0
    return max(0, int((deadline - at).total_seconds()))


def make_order_ref() -> str:
    # GZ + epoch millis + 5 random chars, e.g. GZ1718000000000K3F9Q
    suffix = "".join(random.choices(_REF_ALPHABET, k=5))
    return f"{ORDER_REF_PREFIX}{int(time.time() * 1000)}{suffix}"


def iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def build_success(data: Dict[str, Any],
                  trace_id: Optional[str] = None, request_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "status": "ok",
        "data": data,
        "error": None,
        "trace_id": trace_id,
        "request_id": request_id or request_id_ctx.get(),
    }

def build_error(code: Union[str, int] = "UNKNOWN_ERROR",
                details: Optional[Any] = None,
                request_id: Optional[str] = None,
                trace_id: Optional[str] = None) -> Dict[str, Any]:

    return {
        "status": "error",
        "data": None,
        "error": {"code": code, "details": details},
        "trace_id": trace_id,
        "request_id": request_id or request_id_ctx.get(),
    }

def json_ok(content: Dict[str, Any], status_code: int = 200, headers=None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=headers)

def json_error(content: Dict[str, Any], status_code: int = 500, headers=None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=headers)

def success_response(data: Dict[str, Any], status_code: int = 200,
                     headers: Optional[Dict[str, Any]] = None) -> JSONResponse:
    return json_ok(build_success(data), status_code=status_code, headers=headers)
