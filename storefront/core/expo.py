"""Expo push gateway client."""

import logging
from functools import lru_cache
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from storefront.core.config import get_settings

logger = logging.getLogger(__name__)

# Expo accepts at most 100 messages per request
MAX_BATCH_SIZE = 100

MAX_RETRIES = 3
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 5


class ExpoPushClient:
    """Sends message batches to the Expo push API."""

    def __init__(
        self,
        url: str = "https://exp.host/--/api/v2/push/send",
        access_token: str = "",
        batch_size: int = MAX_BATCH_SIZE,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.access_token = access_token
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
        reraise=True,
    )
    async def send_batch(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Send one batch and return the per-message tickets.

        Raises:
            httpx.HTTPError: On transport failure (after retries) or non-2xx status.
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.url, json=messages, headers=self._headers())
            response.raise_for_status()
            body = response.json()
        return body.get("data") or []

    async def send(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        """Send messages in batches.

        A failing batch is logged and counted; the remaining batches are
        still sent.

        Returns:
            dict: ``sent`` and ``failed`` counts plus the collected tickets.
        """
        sent = 0
        failed = 0
        tickets: list[dict[str, Any]] = []

        for start in range(0, len(messages), self.batch_size):
            batch = messages[start : start + self.batch_size]
            try:
                batch_tickets = await self.send_batch(batch)
            except (httpx.HTTPError, ValueError) as e:
                logger.error("Expo push batch of %d failed: %s", len(batch), str(e))
                failed += len(batch)
                continue

            tickets.extend(batch_tickets)
            rejected = [ticket for ticket in batch_tickets if ticket.get("status") == "error"]
            for ticket in rejected:
                logger.warning("Expo rejected push: %s", ticket.get("message"))
            failed += len(rejected)
            sent += len(batch) - len(rejected)

        return {"sent": sent, "failed": failed, "tickets": tickets}


@lru_cache
def get_expo_client() -> ExpoPushClient:
    """Get cached Expo push client singleton."""
    settings = get_settings()
    return ExpoPushClient(
        url=settings.expo_push_url,
        access_token=settings.expo_access_token,
        batch_size=settings.push_batch_size,
        timeout=settings.http_timeout_seconds,
    )
