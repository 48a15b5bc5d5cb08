"""Unit tests for the Supabase repositories."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from storefront.core.supabase import is_unique_violation, to_json_value
from storefront.repositories.notifications import NotificationRepository
from storefront.repositories.orders import OrderRepository
from storefront.repositories.push_devices import PushDeviceRepository

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_supabase() -> MagicMock:
    """Create a mock Supabase client."""
    return MagicMock()


def response(data: list | dict | None) -> MagicMock:
    mock_response = MagicMock()
    mock_response.data = data
    return mock_response


class TestSupabaseHelpers:
    """Tests for value conversion helpers."""

    def test_to_json_value(self) -> None:
        value = to_json_value({"total": Decimal("2500.00"), "items": [{"price": Decimal("1.5")}], "at": NOW})

        assert value == {"total": "2500.00", "items": [{"price": "1.5"}], "at": "2026-10-19T12:00:00+00:00"}

    def test_is_unique_violation(self) -> None:
        error = Exception("duplicate key")
        error.code = "23505"

        assert is_unique_violation(error)
        assert is_unique_violation(Exception("{'code': '23505', 'message': 'duplicate key'}"))
        assert not is_unique_violation(Exception("connection reset"))


class TestOrderRepository:
    """Tests for OrderRepository."""

    @pytest.mark.asyncio
    async def test_update_if_unpaid_filters_paid_statuses(self, mock_supabase: MagicMock) -> None:
        """Test that the conditional update excludes both paid states."""
        chain = mock_supabase.table.return_value.update.return_value.eq.return_value
        chain.not_.in_.return_value.execute.return_value = response([{"id": 1, "payment_status": "paid"}])
        repository = OrderRepository(client=mock_supabase)

        result = await repository.update_if_unpaid("doc-1", {"payment_status": "paid", "total": Decimal("2500")})

        assert result == {"id": 1, "payment_status": "paid"}
        mock_supabase.table.assert_called_with("orders")
        mock_supabase.table.return_value.update.assert_called_once_with({"payment_status": "paid", "total": "2500"})
        mock_supabase.table.return_value.update.return_value.eq.assert_called_once_with("document_id", "doc-1")
        chain.not_.in_.assert_called_once_with("payment_status", ["paid", "paid_captured"])

    @pytest.mark.asyncio
    async def test_update_if_unpaid_reports_lost_race(self, mock_supabase: MagicMock) -> None:
        chain = mock_supabase.table.return_value.update.return_value.eq.return_value
        chain.not_.in_.return_value.execute.return_value = response([])
        repository = OrderRepository(client=mock_supabase)

        assert await repository.update_if_unpaid("doc-1", {"payment_status": "paid"}) is None

    @pytest.mark.asyncio
    async def test_mark_email_sent_requires_empty_stamp(self, mock_supabase: MagicMock) -> None:
        chain = mock_supabase.table.return_value.update.return_value.eq.return_value
        chain.is_.return_value.execute.return_value = response([])
        repository = OrderRepository(client=mock_supabase)

        result = await repository.mark_email_sent(1, NOW)

        assert result is None
        chain.is_.assert_called_once_with("email_sent_at", "null")
        mock_supabase.table.return_value.update.assert_called_once_with(
            {"email_sent_at": "2026-10-19T12:00:00+00:00"}
        )

    @pytest.mark.asyncio
    async def test_get_by_document_id_handles_missing_row(self, mock_supabase: MagicMock) -> None:
        """Test that maybe_single returning None means not found."""
        mock_supabase.table.return_value.select.return_value.eq.return_value.maybe_single.return_value.execute.return_value = (
            None
        )
        repository = OrderRepository(client=mock_supabase)

        assert await repository.get_by_document_id("missing") is None

    @pytest.mark.asyncio
    async def test_preferences_failure_is_not_fatal(self, mock_supabase: MagicMock) -> None:
        mock_supabase.table.return_value.select.return_value.eq.return_value.maybe_single.return_value.execute.side_effect = (
            Exception("relation users does not exist")
        )
        repository = OrderRepository(client=mock_supabase)

        assert await repository.get_user_preferences("42") is None


class TestNotificationRepository:
    """Tests for NotificationRepository."""

    @pytest.mark.asyncio
    async def test_create_once_ignores_duplicates(self, mock_supabase: MagicMock) -> None:
        mock_supabase.table.return_value.upsert.return_value.execute.return_value = response([])
        repository = NotificationRepository(client=mock_supabase)

        result = await repository.create_once(1, "order_paid", ["customer_email"], NOW)

        assert result is None
        row = mock_supabase.table.return_value.upsert.call_args.args[0]
        assert row["next_attempt_at"] == "2026-10-19T12:00:00+00:00"
        assert mock_supabase.table.return_value.upsert.call_args.kwargs == {
            "on_conflict": "order_id,kind",
            "ignore_duplicates": True,
        }

    @pytest.mark.asyncio
    async def test_claim_uses_attempts_as_version(self, mock_supabase: MagicMock) -> None:
        update = mock_supabase.table.return_value.update
        chain = update.return_value.eq.return_value.eq.return_value.eq.return_value
        chain.execute.return_value = response([{"id": 7, "attempts": 3}])
        repository = NotificationRepository(client=mock_supabase)

        result = await repository.claim(7, 2, NOW)

        assert result == {"id": 7, "attempts": 3}
        assert update.call_args.args[0]["attempts"] == 3
        update.return_value.eq.assert_called_once_with("id", 7)
        update.return_value.eq.return_value.eq.assert_called_once_with("status", "pending")
        update.return_value.eq.return_value.eq.return_value.eq.assert_called_once_with("attempts", 2)

    @pytest.mark.asyncio
    async def test_release_stale_counts_rows(self, mock_supabase: MagicMock) -> None:
        chain = mock_supabase.table.return_value.update.return_value.eq.return_value
        chain.lt.return_value.execute.return_value = response([{"id": 1}, {"id": 2}])
        repository = NotificationRepository(client=mock_supabase)

        assert await repository.release_stale(NOW) == 2
        chain.lt.assert_called_once_with("claimed_at", "2026-10-19T12:00:00+00:00")


class TestPushDeviceRepository:
    """Tests for PushDeviceRepository."""

    @pytest.mark.asyncio
    async def test_opted_in_user_tokens(self, mock_supabase: MagicMock) -> None:
        query = mock_supabase.table.return_value.select.return_value.in_.return_value
        query.eq.return_value.limit.return_value.execute.return_value = response(
            [{"token": "ExpoPushToken[a]"}, {"token": None}]
        )
        repository = PushDeviceRepository(client=mock_supabase)

        tokens = await repository.tokens_for_users(["42"], opted_in_only=True)

        assert tokens == ["ExpoPushToken[a]"]
        query.eq.assert_called_once_with("marketing_opt_in", True)

    @pytest.mark.asyncio
    async def test_no_users_skips_query(self, mock_supabase: MagicMock) -> None:
        repository = PushDeviceRepository(client=mock_supabase)

        assert await repository.tokens_for_users([]) == []
        mock_supabase.table.assert_not_called()

    @pytest.mark.asyncio
    async def test_segment_filters(self, mock_supabase: MagicMock) -> None:
        query = mock_supabase.table.return_value.select.return_value
        query.eq.return_value = query
        query.in_.return_value = query
        query.contains.return_value = query
        query.limit.return_value.execute.return_value = response([{"token": "ExpoPushToken[a]"}])
        repository = PushDeviceRepository(client=mock_supabase)

        tokens = await repository.tokens_for_segment(countries=["RU"], langs=["ru"], tags=["vip"], marketing=True)

        assert tokens == ["ExpoPushToken[a]"]
        query.eq.assert_called_once_with("marketing_opt_in", True)
        assert [call.args for call in query.in_.call_args_list] == [("country", ["RU"]), ("lang", ["ru"])]
        query.contains.assert_called_once_with("tags", ["vip"])

    @pytest.mark.asyncio
    async def test_upsert_by_token(self, mock_supabase: MagicMock) -> None:
        mock_supabase.table.return_value.upsert.return_value.execute.return_value = response([])
        repository = PushDeviceRepository(client=mock_supabase)

        device = await repository.upsert("ExpoPushToken[a]", {"user_id": "42"}, NOW)

        assert device["token"] == "ExpoPushToken[a]"
        assert mock_supabase.table.return_value.upsert.call_args.kwargs == {"on_conflict": "token"}
