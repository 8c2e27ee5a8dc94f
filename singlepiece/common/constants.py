import contextvars
from typing import Optional

# Context variables for request and trace id
request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)

ORDER_REF_PREFIX = "GZ"
PAYMENT_METHODS = ("upi", "bank_transfer")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
