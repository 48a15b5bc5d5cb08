"""Unit tests for the push service and its Expo client."""

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from storefront.core.expo import ExpoPushClient
from storefront.services.push_service import PushService, is_expo_push_token, unique_valid_tokens
from storefront.services.push_templates import order_message

TOKEN_A = "ExponentPushToken[aaaaaaaaaaaaaaaaaaaaaa]"
TOKEN_B = "ExpoPushToken[bbbbbbbbbbbbbbbbbbbbbb]"


@pytest.fixture
def device_repository() -> MagicMock:
    repository = MagicMock()
    repository.tokens_for_users = AsyncMock(return_value=[])
    repository.tokens_for_segment = AsyncMock(return_value=[])
    repository.upsert = AsyncMock(side_effect=lambda token, fields, now: {"token": token, **fields})
    return repository


@pytest.fixture
def expo_client() -> MagicMock:
    client = MagicMock()
    client.send = AsyncMock(side_effect=lambda messages: {"sent": len(messages), "failed": 0, "tickets": []})
    return client


@pytest.fixture
def push(device_repository: MagicMock, expo_client: MagicMock, settings: Any) -> PushService:
    return PushService(repository=device_repository, client=expo_client, settings=settings)


class TestTokens:
    """Tests for token validation."""

    @pytest.mark.parametrize(
        ("token", "valid"),
        [
            (TOKEN_A, True),
            (TOKEN_B, True),
            ("1b7a3c2d-4e5f-6a7b-8c9d-0e1f2a3b4c5d", True),
            ("ExponentPushToken[]", False),
            ("fcm-token", False),
            ("", False),
            (None, False),
        ],
    )
    def test_is_expo_push_token(self, token: Any, valid: bool) -> None:
        assert is_expo_push_token(token) is valid

    def test_unique_valid_tokens_keeps_order(self) -> None:
        assert unique_valid_tokens([TOKEN_B, "junk", TOKEN_A, TOKEN_B]) == [TOKEN_B, TOKEN_A]


class TestTemplates:
    """Tests for localized order push texts."""

    def test_localized_message(self) -> None:
        message = order_message("order_shipped", "ru", "TWIW-1")

        assert message == {"title": "Заказ отправлен", "body": "Заказ №TWIW-1 передан службе доставки."}

    def test_unknown_language_falls_back_to_english(self) -> None:
        assert order_message("order_paid", "de", "TWIW-1")["title"] == "Payment confirmed"

    def test_unknown_kind_raises(self) -> None:
        with pytest.raises(KeyError):
            order_message("order_lost", "en", "TWIW-1")


class TestPushService:
    """Tests for PushService."""

    @pytest.mark.asyncio
    async def test_register_device(self, push: PushService, device_repository: MagicMock) -> None:
        device = await push.register_device({"token": TOKEN_A, "user_id": "42", "platform": "ios"})

        assert device == {"token": TOKEN_A, "user_id": "42", "platform": "ios"}
        token, fields, _ = device_repository.upsert.call_args.args
        assert token == TOKEN_A
        assert "token" not in fields

    @pytest.mark.asyncio
    async def test_resolve_merges_and_dedupes(self, push: PushService, device_repository: MagicMock) -> None:
        device_repository.tokens_for_users.return_value = [TOKEN_A, TOKEN_B]
        device_repository.tokens_for_segment.return_value = [TOKEN_B]

        tokens = await push.resolve_tokens({"tokens": [TOKEN_A, "junk"], "user_ids": ["42"], "segment": {"langs": ["ru"]}})

        assert tokens == [TOKEN_A, TOKEN_B]
        device_repository.tokens_for_segment.assert_awaited_once_with(
            countries=None, langs=["ru"], tags=None, marketing=None
        )

    @pytest.mark.asyncio
    async def test_send_without_tokens_skips_gateway(self, push: PushService, expo_client: MagicMock) -> None:
        result = await push.send(["junk"], {"title": "Hi", "body": "There"})

        assert result == {"requested": 0, "sent": 0, "failed": 0}
        expo_client.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_message_shape(self, push: PushService, expo_client: MagicMock) -> None:
        await push.send([TOKEN_A], {"title": "Hi", "body": "There", "badge": 2, "channel_id": "orders"})

        [message] = expo_client.send.call_args.args[0]
        assert message == {
            "to": TOKEN_A,
            "title": "Hi",
            "body": "There",
            "data": {},
            "sound": "default",
            "ttl": 3600,
            "priority": "high",
            "badge": 2,
            "channelId": "orders",
        }

    @pytest.mark.asyncio
    async def test_promo_without_filters_targets_opted_in_devices(
        self,
        push: PushService,
        device_repository: MagicMock,
    ) -> None:
        """Test that a bare promo goes to every marketing opt-in."""
        device_repository.tokens_for_segment.return_value = [TOKEN_A]

        result = await push.send_promo({"title": "Sale", "body": "-20%"})

        assert result == {"requested": 1, "sent": 1, "failed": 0}
        device_repository.tokens_for_segment.assert_awaited_once_with(
            countries=None, langs=None, tags=None, marketing=True
        )

    @pytest.mark.asyncio
    async def test_promo_to_users_respects_opt_in(self, push: PushService, device_repository: MagicMock) -> None:
        await push.send_promo({"title": "Sale", "body": "-20%", "user_ids": ["42"]})

        device_repository.tokens_for_users.assert_awaited_once_with(["42"], opted_in_only=True)
        device_repository.tokens_for_segment.assert_not_called()

    @pytest.mark.asyncio
    async def test_order_push_ignores_opt_in(
        self,
        push: PushService,
        device_repository: MagicMock,
        expo_client: MagicMock,
    ) -> None:
        """Test that order updates reach the owner's devices regardless of marketing consent."""
        device_repository.tokens_for_users.return_value = [TOKEN_A]
        order = {"user_id": 42, "language": "en", "order_number": "TWIW-1", "document_id": "doc-1"}

        result = await push.send_order_push(order, "order_paid")

        assert result["sent"] == 1
        device_repository.tokens_for_users.assert_awaited_once_with(["42"], opted_in_only=False)
        [message] = expo_client.send.call_args.args[0]
        assert message["title"] == "Payment confirmed"
        assert message["data"] == {"type": "order_paid", "document_id": "doc-1", "order_number": "TWIW-1"}

    @pytest.mark.asyncio
    async def test_guest_order_push_is_a_no_op(self, push: PushService, device_repository: MagicMock) -> None:
        result = await push.send_order_push({"order_number": "TWIW-1"}, "order_paid")

        assert result == {"requested": 0, "sent": 0, "failed": 0}
        device_repository.tokens_for_users.assert_not_called()


class TestExpoPushClient:
    """Tests for the Expo HTTP client."""

    @pytest.mark.asyncio
    async def test_sends_in_batches(self) -> None:
        batches = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            batches.append(body)
            return httpx.Response(200, json={"data": [{"status": "ok", "id": "t"} for _ in body]})

        client = ExpoPushClient(batch_size=2, access_token="expo-token", transport=httpx.MockTransport(handler))
        messages = [{"to": f"ExpoPushToken[{i}]", "title": "t", "body": "b"} for i in range(5)]

        result = await client.send(messages)

        assert [len(batch) for batch in batches] == [2, 2, 1]
        assert result["sent"] == 5
        assert result["failed"] == 0

    @pytest.mark.asyncio
    async def test_counts_error_tickets(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer expo-token"
            return httpx.Response(
                200,
                json={"data": [{"status": "ok"}, {"status": "error", "message": "DeviceNotRegistered"}]},
            )

        client = ExpoPushClient(access_token="expo-token", transport=httpx.MockTransport(handler))

        result = await client.send([{"to": TOKEN_A}, {"to": TOKEN_B}])

        assert result["sent"] == 1
        assert result["failed"] == 1

    @pytest.mark.asyncio
    async def test_failed_batch_does_not_stop_others(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(500, json={"errors": [{"message": "boom"}]})
            return httpx.Response(200, json={"data": [{"status": "ok"}]})

        client = ExpoPushClient(batch_size=1, transport=httpx.MockTransport(handler))

        result = await client.send([{"to": TOKEN_A}, {"to": TOKEN_B}])

        assert result == {"sent": 1, "failed": 1, "tickets": [{"status": "ok"}]}
        assert "Authorization" not in calls[0].headers

    def test_batch_size_is_capped(self) -> None:
        assert ExpoPushClient(batch_size=500).batch_size == 100
        assert ExpoPushClient(batch_size=0).batch_size == 1
