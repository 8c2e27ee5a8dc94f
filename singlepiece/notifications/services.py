import asyncio
from typing import Any, Dict, Optional

import httpx

from singlepiece.common.logging_setup import get_logger
from singlepiece.config.settings import config_settings

logger = get_logger("singlepiece.notifications")

TRANSIENT_EXCEPTIONS = (httpx.ConnectError, httpx.ReadTimeout, httpx.RemoteProtocolError, httpx.NetworkError)
DEFAULT_RETRIES = 2
DEFAULT_BACKOFF_BASE = 0.2


class Notifier:
    """Best-effort delivery of buyer/admin notifications to a webhook (mailer, chat bot, ...).

    `send` never raises: the owning flow has already been committed and a failed
    notification must not undo it.
    """

    def __init__(self, webhook_url: Optional[str] = None, *, timeout: Optional[float] = None,
                 retries: int = DEFAULT_RETRIES, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = webhook_url if webhook_url is not None else config_settings.NOTIFY_WEBHOOK_URL
        self.timeout = timeout if timeout is not None else config_settings.NOTIFY_TIMEOUT_SECONDS
        self.retries = retries
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, recipient: str, template_data: Dict[str, Any]) -> bool:
        if not self.enabled:
            logger.debug("notify.skipped", extra={"template": template_data.get("template")})
            return False

        payload = {"recipient": recipient, "data": template_data}
        for attempt in range(1, self.retries + 2):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(self.webhook_url, json=payload)
                    resp.raise_for_status()
                logger.info("notify.sent", extra={"template": template_data.get("template"), "attempt": attempt})
                return True
            except TRANSIENT_EXCEPTIONS as exc:
                logger.warning("notify.transient_error", extra={"attempt": attempt, "error": str(exc)})
                if attempt <= self.retries:
                    await asyncio.sleep(DEFAULT_BACKOFF_BASE * (2 ** (attempt - 1)))
            except httpx.HTTPError as exc:
                logger.warning("notify.failed", extra={"error": str(exc)})
                return False
        return False


_default_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _default_notifier
    if _default_notifier is None:
        _default_notifier = Notifier()
    return _default_notifier
