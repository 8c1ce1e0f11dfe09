"""
Pushover delivery client.

https://pushover.net/api
"""

from typing import Protocol

import httpx
from structlog import get_logger

from appstore_notifier.exceptions import PushDeliveryError
from appstore_notifier.models.domain import PushTarget

logger = get_logger(__name__)

PUSHOVER_MESSAGES_URL = "https://api.pushover.net/1/messages.json"


class PushChannel(Protocol):
    """Downstream alert channel."""

    async def send(self, title: str, message: str, target: PushTarget) -> None:
        """Deliver one alert. Raises PushDeliveryError on failure."""
        ...


class PushoverClient:
    """Sends alerts through the Pushover messages API."""

    def __init__(
        self,
        app_token: str,
        api_url: str = PUSHOVER_MESSAGES_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            app_token: Pushover application token (never logged)
            api_url: Messages endpoint
            timeout: Request timeout in seconds
            transport: Optional transport override
        """
        if not app_token:
            raise ValueError("Pushover app token is required")
        self._app_token = app_token
        self._api_url = api_url
        self._timeout = timeout
        self._transport = transport

    async def send(self, title: str, message: str, target: PushTarget) -> None:
        """
        Post one message.

        Raises:
            PushDeliveryError: On transport failure or a non-2xx response
        """
        form = {
            "token": self._app_token,
            "user": target.user_key,
            "title": title,
            "message": message,
            "priority": "0",
        }
        if target.device:
            form["device"] = target.device

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.post(self._api_url, data=form)
        except httpx.HTTPError as exc:
            logger.error("pushover_request_failed", error=str(exc))
            raise PushDeliveryError(f"request error: {exc}") from exc

        if response.status_code >= 400:
            logger.error(
                "pushover_api_error",
                status=response.status_code,
                error=response.text[:500],
            )
            raise PushDeliveryError(
                f"Pushover API request failed ({response.status_code})",
                status_code=response.status_code,
            )

        logger.info("pushover_message_sent", title=title, device=target.device)
