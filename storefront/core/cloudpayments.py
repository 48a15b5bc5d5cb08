"""CloudPayments signature verification and REST API client."""

import base64
import hashlib
import hmac
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

SIGNATURE_HEADER = "Content-HMAC"

# Retry configuration
MAX_RETRIES = 3
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 5


class CloudPaymentsError(Exception):
    """Raised when the CloudPayments API cannot be reached or rejects a call."""


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Base64-encoded HMAC-SHA256 of the raw request body."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None) -> bool:
    """Check a callback signature in constant time.

    Args:
        raw_body: Exact bytes received on the wire, before any parsing.
        signature: Value of the Content-HMAC header.
        secret: CloudPayments API secret.

    Returns:
        bool: True only if a secret is configured and the signature matches.
    """
    if not secret or not signature:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", "replace"))


class CloudPaymentsClient:
    """Minimal async client for the CloudPayments REST API.

    Authenticates with HTTP basic auth (public id / API secret).
    """

    def __init__(
        self,
        public_id: str,
        api_secret: str,
        base_url: str = "https://api.cloudpayments.ru",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.public_id = public_id
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.public_id and self.api_secret)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
        reraise=True,
    )
    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.public_id, self.api_secret),
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(path, json=payload)
            response.raise_for_status()
            return response.json()

    async def find_payment(self, invoice_id: str) -> dict[str, Any] | None:
        """Look up the latest transaction for an invoice.

        Args:
            invoice_id: Order document_id the payment was opened with.

        Returns:
            dict | None: The transaction model, or None if the gateway has
            no payment for this invoice.

        Raises:
            CloudPaymentsError: If the API is unreachable or answers with an error.
        """
        if not self.is_configured:
            raise CloudPaymentsError("CloudPayments API credentials are not configured")

        try:
            body = await self._post("/payments/find", {"InvoiceId": invoice_id})
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("CloudPayments find failed for invoice %s: %s", invoice_id, str(e))
            raise CloudPaymentsError(f"CloudPayments request failed: {e}") from e

        if not body.get("Success"):
            # the API reports "not found" as an unsuccessful response with a message
            logger.info("CloudPayments has no payment for invoice %s: %s", invoice_id, body.get("Message"))
            return None
        return body.get("Model")


@lru_cache
def get_cloudpayments_client() -> CloudPaymentsClient:
    """Get cached CloudPayments client singleton."""
    settings = get_settings()
    return CloudPaymentsClient(
        public_id=settings.cloudpayments_public_id,
        api_secret=settings.cloudpayments_api_secret,
        base_url=settings.cloudpayments_api_url,
        timeout=settings.http_timeout_seconds,
    )
