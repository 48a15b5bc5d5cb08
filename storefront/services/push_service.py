"""Push notification service: device registry and Expo delivery."""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from storefront.core.config import Settings, get_settings
from storefront.core.expo import ExpoPushClient, get_expo_client
from storefront.repositories.push_devices import PushDeviceRepository
from storefront.services.push_templates import order_message

logger = logging.getLogger(__name__)

_EXPO_TOKEN = re.compile(r"^Expo(nent)?PushToken\[.+\]$")
_EXPO_UUID_TOKEN = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE)

DEFAULT_TTL_SECONDS = 3600


def is_expo_push_token(token: Any) -> bool:
    """Check whether a string looks like an Expo push token."""
    if not isinstance(token, str):
        return False
    return bool(_EXPO_TOKEN.match(token) or _EXPO_UUID_TOKEN.match(token))


def unique_valid_tokens(tokens: list[str]) -> list[str]:
    """Deduplicate tokens (keeping order) and drop anything that is not an Expo token."""
    seen: set[str] = set()
    result = []
    for token in tokens:
        if token in seen or not is_expo_push_token(token):
            continue
        seen.add(token)
        result.append(token)
    return result


class PushService:
    """Resolves push audiences and sends through the Expo gateway."""

    def __init__(
        self,
        repository: PushDeviceRepository | None = None,
        client: ExpoPushClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.repository = repository or PushDeviceRepository()
        self.client = client or get_expo_client()
        self.settings = settings or get_settings()

    async def register_device(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create or refresh a device registration.

        Args:
            data: Registration fields; ``token`` is the identity.

        Returns:
            dict: The stored device row.
        """
        fields = {key: value for key, value in data.items() if key != "token"}
        device = await self.repository.upsert(data["token"], fields, datetime.now(timezone.utc))
        logger.info("Push device registered (user=%s, platform=%s)", data.get("user_id"), data.get("platform"))
        return device

    async def resolve_tokens(self, target: dict[str, Any], opted_in_only: bool = False) -> list[str]:
        """Collect tokens for explicit tokens, user ids and a segment.

        Args:
            target: Dict with optional ``tokens``, ``user_ids`` and ``segment``.
            opted_in_only: Restrict user-id lookups to marketing opt-ins.

        Returns:
            list[str]: Deduplicated valid Expo tokens.
        """
        tokens = list(target.get("tokens") or [])

        user_ids = target.get("user_ids") or []
        if user_ids:
            tokens.extend(await self.repository.tokens_for_users(user_ids, opted_in_only=opted_in_only))

        segment = target.get("segment")
        if segment is not None:
            tokens.extend(
                await self.repository.tokens_for_segment(
                    countries=segment.get("countries"),
                    langs=segment.get("langs"),
                    tags=segment.get("tags"),
                    marketing=segment.get("marketing"),
                )
            )

        return unique_valid_tokens(tokens)

    @staticmethod
    def build_messages(tokens: list[str], payload: dict[str, Any]) -> list[dict[str, Any]]:
        messages = []
        for token in tokens:
            message: dict[str, Any] = {
                "to": token,
                "title": payload["title"],
                "body": payload["body"],
                "data": payload.get("data") or {},
                "sound": payload.get("sound", "default"),
                "ttl": payload.get("ttl") or DEFAULT_TTL_SECONDS,
                "priority": payload.get("priority") or "high",
            }
            if payload.get("badge") is not None:
                message["badge"] = payload["badge"]
            if payload.get("channel_id"):
                message["channelId"] = payload["channel_id"]
            messages.append(message)
        return messages

    async def send(self, tokens: list[str], payload: dict[str, Any]) -> dict[str, int]:
        """Send one payload to a list of tokens.

        Returns:
            dict: ``requested``, ``sent`` and ``failed`` counts.
        """
        tokens = unique_valid_tokens(tokens)
        if not tokens:
            return {"requested": 0, "sent": 0, "failed": 0}

        result = await self.client.send(self.build_messages(tokens, payload))
        logger.info(
            "Push '%s' to %d devices: sent=%d failed=%d",
            payload.get("title"),
            len(tokens),
            result["sent"],
            result["failed"],
        )
        return {"requested": len(tokens), "sent": result["sent"], "failed": result["failed"]}

    async def send_to_target(self, target: dict[str, Any], payload: dict[str, Any]) -> dict[str, int]:
        """Resolve a target and send to it."""
        tokens = await self.resolve_tokens(target)
        return await self.send(tokens, payload)

    async def send_promo(self, request: dict[str, Any]) -> dict[str, int]:
        """Send a marketing push to opted-in devices.

        Explicit tokens are used as given; users and segment filters only
        match devices with marketing opt-in. With no filters at all the
        promo goes to every opted-in device.
        """
        segment = None
        if request.get("countries") or request.get("langs") or request.get("tags") or not (
            request.get("tokens") or request.get("user_ids")
        ):
            segment = {
                "countries": request.get("countries"),
                "langs": request.get("langs"),
                "tags": request.get("tags"),
                "marketing": True,
            }
        target = {"tokens": request.get("tokens"), "user_ids": request.get("user_ids"), "segment": segment}
        tokens = await self.resolve_tokens(target, opted_in_only=True)

        payload = {
            "title": request["title"],
            "body": request["body"],
            "data": request.get("data") or {},
            "ttl": request.get("ttl"),
            "priority": request.get("priority"),
        }
        return await self.send(tokens, payload)

    async def send_test(self, token: str, title: str, body: str) -> dict[str, int]:
        return await self.send([token], {"title": title, "body": body, "data": {"test": True}})

    async def send_order_push(self, order: dict[str, Any], kind: str) -> dict[str, int]:
        """Send a localized order event push to the order owner's devices.

        Order pushes are transactional and ignore marketing opt-in.
        """
        user_id = order.get("user_id")
        if not user_id:
            return {"requested": 0, "sent": 0, "failed": 0}

        tokens = await self.resolve_tokens({"user_ids": [str(user_id)]})
        message = order_message(kind, order.get("language"), order.get("order_number"), self.settings.brand_name)
        payload = {
            **message,
            "data": {
                "type": kind,
                "document_id": order.get("document_id"),
                "order_number": order.get("order_number"),
            },
        }
        return await self.send(tokens, payload)
