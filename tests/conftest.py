"""Pytest configuration and fixtures."""

import copy
import os
from collections.abc import Generator
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("CLOUDPAYMENTS_PUBLIC_ID", "pk_test_public_id")
os.environ.setdefault("CLOUDPAYMENTS_API_SECRET", "test-api-secret")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")
os.environ.setdefault("ORDER_NOTIFY_EMAIL", "orders@twiw.store")
os.environ.setdefault("NOTIFICATION_WORKER_ENABLED", "false")

from storefront.core.supabase import to_json_value  # noqa: E402
from storefront.models.order import PAID_PAYMENT_STATUSES  # noqa: E402

TEST_JWT_SECRET = "test-jwt-secret"
TEST_ADMIN_KEY = "test-admin-key"
TEST_API_SECRET = "test-api-secret"


class UniqueViolation(Exception):
    """Mimics the PostgREST error raised on a unique constraint."""

    code = "23505"


class InMemoryOrderRepository:
    """Order repository keeping rows in a dict, with the same conditional writes."""

    def __init__(self) -> None:
        self.rows: dict[int, dict[str, Any]] = {}
        self.preferences: dict[str, dict[str, Any]] = {}
        self.forced_collisions = 0
        self.updates: list[tuple[int, dict[str, Any]]] = []
        self._next_id = 1

    async def get_by_document_id(self, document_id: str) -> dict[str, Any] | None:
        for row in self.rows.values():
            if row["document_id"] == document_id:
                return copy.deepcopy(row)
        return None

    async def get_by_id(self, order_id: int) -> dict[str, Any] | None:
        row = self.rows.get(order_id)
        return copy.deepcopy(row) if row else None

    async def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        rows = [row for row in self.rows.values() if row.get("user_id") == user_id]
        return [copy.deepcopy(row) for row in sorted(rows, key=lambda row: row["id"], reverse=True)]

    async def insert(self, data: dict[str, Any]) -> dict[str, Any]:
        if self.forced_collisions:
            self.forced_collisions -= 1
            raise UniqueViolation('duplicate key value violates unique constraint "orders_order_number_key"')
        for row in self.rows.values():
            if row["order_number"] == data["order_number"] or row["document_id"] == data["document_id"]:
                raise UniqueViolation("duplicate key value violates unique constraint")

        row = {
            "id": self._next_id,
            "transaction_id": None,
            "email_sent_at": None,
            "created_at": datetime.now(timezone.utc).isoformat(),
            **to_json_value(data),
        }
        self.rows[row["id"]] = row
        self._next_id += 1
        return copy.deepcopy(row)

    async def update(self, order_id: int, data: dict[str, Any]) -> dict[str, Any] | None:
        row = self.rows.get(order_id)
        if row is None:
            return None
        self.updates.append((order_id, data))
        row.update(to_json_value(data))
        return copy.deepcopy(row)

    async def update_if_unpaid(self, document_id: str, data: dict[str, Any]) -> dict[str, Any] | None:
        for row in self.rows.values():
            if row["document_id"] == document_id and row.get("payment_status") not in PAID_PAYMENT_STATUSES:
                self.updates.append((row["id"], data))
                row.update(to_json_value(data))
                return copy.deepcopy(row)
        return None

    async def mark_email_sent(self, order_id: int, sent_at: datetime) -> dict[str, Any] | None:
        row = self.rows.get(order_id)
        if row is None or row.get("email_sent_at") is not None:
            return None
        row["email_sent_at"] = sent_at.isoformat()
        return copy.deepcopy(row)

    async def get_user_preferences(self, user_id: str) -> dict[str, Any] | None:
        return self.preferences.get(user_id)


class InMemoryNotificationRepository:
    """Outbox repository keeping records in a dict."""

    def __init__(self) -> None:
        self.rows: dict[int, dict[str, Any]] = {}
        self._next_id = 1

    def for_order(self, order_id: int, kind: str | None = None) -> list[dict[str, Any]]:
        return [
            row for row in self.rows.values()
            if row["order_id"] == order_id and (kind is None or row["kind"] == kind)
        ]

    async def create_once(
        self,
        order_id: int,
        kind: str,
        channels: list[str],
        now: datetime,
    ) -> dict[str, Any] | None:
        if self.for_order(order_id, kind):
            return None
        row = {
            "id": self._next_id,
            "order_id": order_id,
            "kind": kind,
            "status": "pending",
            "channels": list(channels),
            "delivered_channels": [],
            "attempts": 0,
            "next_attempt_at": now,
            "claimed_at": None,
            "last_error": None,
            "sent_at": None,
        }
        self.rows[row["id"]] = row
        self._next_id += 1
        return copy.deepcopy(row)

    async def claim(self, record_id: int, attempts: int, now: datetime) -> dict[str, Any] | None:
        row = self.rows.get(record_id)
        if row is None or row["status"] != "pending" or row["attempts"] != attempts:
            return None
        row.update({"status": "processing", "attempts": attempts + 1, "claimed_at": now})
        return copy.deepcopy(row)

    async def mark_sent(self, record_id: int, delivered: list[str], now: datetime) -> None:
        self.rows[record_id].update(
            {"status": "sent", "delivered_channels": list(delivered), "sent_at": now, "last_error": None}
        )

    async def schedule_retry(
        self,
        record_id: int,
        delivered: list[str],
        error: str,
        next_attempt_at: datetime,
    ) -> None:
        self.rows[record_id].update(
            {
                "status": "pending",
                "delivered_channels": list(delivered),
                "last_error": error,
                "next_attempt_at": next_attempt_at,
            }
        )

    async def mark_failed(self, record_id: int, delivered: list[str], error: str) -> None:
        self.rows[record_id].update({"status": "failed", "delivered_channels": list(delivered), "last_error": error})

    async def fetch_due(self, now: datetime, limit: int = 50) -> list[dict[str, Any]]:
        due = [
            row for row in self.rows.values()
            if row["status"] == "pending" and row["next_attempt_at"] <= now
        ]
        due.sort(key=lambda row: row["next_attempt_at"])
        return [copy.deepcopy(row) for row in due[:limit]]

    async def release_stale(self, claimed_before: datetime) -> int:
        released = 0
        for row in self.rows.values():
            if row["status"] == "processing" and row["claimed_at"] and row["claimed_at"] < claimed_before:
                row["status"] = "pending"
                released += 1
        return released


class FakeEmailService:
    """Records sends; ``failures`` maps a channel to how many times it fails next."""

    def __init__(self) -> None:
        self.receipts: list[dict[str, Any]] = []
        self.summaries: list[dict[str, Any]] = []
        self.failures: dict[str, int] = {}

    def _result(self, channel: str) -> dict[str, Any]:
        if self.failures.get(channel):
            self.failures[channel] -= 1
            return {"success": False, "error": f"{channel} unavailable"}
        return {"success": True, "email_id": f"email-{channel}"}

    async def send_order_receipt(self, order: dict[str, Any]) -> dict[str, Any]:
        result = self._result("customer_email")
        if result["success"]:
            self.receipts.append(order)
        return result

    async def send_ops_summary(self, order: dict[str, Any]) -> dict[str, Any]:
        result = self._result("ops_email")
        if result["success"]:
            self.summaries.append(order)
        return result


class FakePushService:
    """Records order pushes instead of calling Expo."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str | None]] = []
        self.failures = 0

    async def send_order_push(self, order: dict[str, Any], kind: str) -> dict[str, int]:
        if self.failures:
            self.failures -= 1
            return {"requested": 1, "sent": 0, "failed": 1}
        self.sent.append((kind, order.get("document_id")))
        return {"requested": 1, "sent": 1, "failed": 0}


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from storefront.core.config import get_settings

    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    get_settings.cache_clear()


@pytest.fixture
def settings() -> Any:
    """Settings for service-level tests with a short retry schedule."""
    from storefront.core.config import Settings

    return Settings(
        order_notify_email="orders@twiw.store",
        notification_max_attempts=3,
        notification_backoff_base_seconds=30,
        notification_backoff_max_seconds=300,
    )


@pytest.fixture
def order_repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def notification_repository() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def email_service() -> FakeEmailService:
    return FakeEmailService()


@pytest.fixture
def push_service() -> FakePushService:
    return FakePushService()


@pytest.fixture
def notification_service(
    notification_repository: InMemoryNotificationRepository,
    order_repository: InMemoryOrderRepository,
    email_service: FakeEmailService,
    push_service: FakePushService,
    settings: Any,
) -> Any:
    from storefront.services.notification_service import NotificationService

    return NotificationService(
        repository=notification_repository,
        orders=order_repository,
        email_service=email_service,
        push_service=push_service,
        settings=settings,
    )


@pytest.fixture
def order_service(order_repository: InMemoryOrderRepository, notification_service: Any, settings: Any) -> Any:
    from storefront.services.order_lifecycle import OrderLifecycle
    from storefront.services.order_service import OrderService

    lifecycle = OrderLifecycle(repository=order_repository, notifications=notification_service, settings=settings)
    return OrderService(repository=order_repository, lifecycle=lifecycle)


@pytest.fixture
def gateway() -> MagicMock:
    """Mocked CloudPayments API client."""
    client = MagicMock()
    client.find_payment = AsyncMock(return_value=None)
    return client


@pytest.fixture
def payment_service(order_service: Any, gateway: MagicMock, settings: Any) -> Any:
    from storefront.services.payment_service import PaymentService

    return PaymentService(orders=order_service, gateway=gateway, settings=settings)


@pytest.fixture
def sample_draft() -> dict[str, Any]:
    """Checkout payload with two line items and a wrong client total."""
    return {
        "line_items": [
            {"title": "Hoodie", "price": 1000, "quantity": 2},
            {"title": "Cap", "price": 500, "quantity": 1},
        ],
        "total": 0,
        "currency": "RUB",
        "language": "ru",
        "customer_email": "Buyer@Example.com",
    }


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("storefront.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(
    order_service: Any,
    payment_service: Any,
) -> Generator[TestClient, None, None]:
    """Provide a test client wired to in-memory services.

    Yields:
        TestClient: FastAPI test client.
    """
    from storefront.api.deps import get_order_service, get_payment_service
    from storefront.main import app

    app.dependency_overrides[get_order_service] = lambda: order_service
    app.dependency_overrides[get_payment_service] = lambda: payment_service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
