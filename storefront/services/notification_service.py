"""Order notification outbox and its background worker."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from storefront.core.config import Settings, get_settings
from storefront.repositories.notifications import NotificationRepository
from storefront.repositories.orders import OrderRepository
from storefront.services.email_service import EmailService
from storefront.services.push_service import PushService

logger = logging.getLogger(__name__)

# Records stuck in processing longer than this are considered abandoned
STALE_CLAIM_SECONDS = 600


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NotificationService:
    """Delivers order notifications through a persistent outbox.

    Each (order, kind) pair gets one outbox record. Delivery is attempted
    inline right after the record is written; whatever fails is retried by
    ``NotificationWorker`` with exponential backoff. Channels that already
    succeeded are remembered and never sent twice.
    """

    def __init__(
        self,
        repository: NotificationRepository | None = None,
        orders: OrderRepository | None = None,
        email_service: EmailService | None = None,
        push_service: PushService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.repository = repository or NotificationRepository()
        self.orders = orders or OrderRepository()
        self.email_service = email_service or EmailService(self.settings)
        self.push_service = push_service or PushService(settings=self.settings)

    def channels_for(self, order: dict[str, Any], kind: str) -> list[str]:
        """Channels a notification kind goes out on for this order."""
        channels = []
        if kind == "order_paid":
            if order.get("customer_email"):
                channels.append("customer_email")
            if self.settings.order_notify_email:
                channels.append("ops_email")
        if order.get("user_id"):
            channels.append("push")
        return channels

    def backoff_seconds(self, attempts: int) -> int:
        """Delay before the next attempt after ``attempts`` failed ones."""
        base = self.settings.notification_backoff_base_seconds
        delay = base * 2 ** max(attempts - 1, 0)
        return min(delay, self.settings.notification_backoff_max_seconds)

    async def enqueue(self, order: dict[str, Any], kind: str) -> dict[str, Any] | None:
        """Persist the outbox record for (order, kind) once.

        Returns:
            dict | None: The new record, or None if it already existed or
            there is nothing to deliver.
        """
        channels = self.channels_for(order, kind)
        if not channels:
            logger.info("No channels for %s of order %s", kind, order.get("order_number"))
            return None

        record = await self.repository.create_once(order["id"], kind, channels, _utc_now())
        if record is None:
            logger.info("%s for order %s already queued", kind, order.get("order_number"))
        return record

    async def notify(self, order: dict[str, Any], kind: str) -> dict[str, Any] | None:
        """Queue a notification and try to deliver it right away."""
        record = await self.enqueue(order, kind)
        if record is None:
            return None
        return await self.deliver(record, order)

    async def _send_channel(self, channel: str, kind: str, order: dict[str, Any]) -> str | None:
        """Send one channel. Returns an error message, or None on success."""
        if channel == "customer_email":
            result = await self.email_service.send_order_receipt(order)
            return None if result.get("success") else result.get("error", "receipt not sent")

        if channel == "ops_email":
            result = await self.email_service.send_ops_summary(order)
            return None if result.get("success") else result.get("error", "ops summary not sent")

        if channel == "push":
            result = await self.push_service.send_order_push(order, kind)
            # only retry when nothing reached any device
            if result["failed"] and not result["sent"]:
                return f"push failed for {result['failed']} devices"
            return None

        return f"unknown channel {channel}"

    async def deliver(self, record: dict[str, Any], order: dict[str, Any] | None = None) -> dict[str, Any] | None:
        """Claim a record and send its outstanding channels.

        Args:
            record: Pending outbox record.
            order: The order, if the caller already has it.

        Returns:
            dict | None: ``status`` and ``delivered`` channels, or None if
            another worker claimed the record first.
        """
        now = _utc_now()
        claimed = await self.repository.claim(record["id"], record.get("attempts", 0), now)
        if claimed is None:
            logger.debug("Notification %s already claimed", record["id"])
            return None

        if order is None:
            order = await self.orders.get_by_id(claimed["order_id"])
        if order is None:
            await self.repository.mark_failed(claimed["id"], claimed.get("delivered_channels") or [], "order not found")
            return {"status": "failed", "delivered": []}

        kind = claimed["kind"]
        delivered = list(claimed.get("delivered_channels") or [])
        errors = []
        for channel in claimed.get("channels") or []:
            if channel in delivered:
                continue
            try:
                error = await self._send_channel(channel, kind, order)
            except Exception as e:
                logger.error("%s %s channel raised for order %s: %s", kind, channel, order.get("order_number"), str(e))
                error = str(e)
            if error is None:
                delivered.append(channel)
            else:
                errors.append(f"{channel}: {error}")

        attempts = claimed.get("attempts", 1)
        if not errors:
            await self.repository.mark_sent(claimed["id"], delivered, _utc_now())
            logger.info("%s for order %s delivered via %s", kind, order.get("order_number"), ", ".join(delivered))
            return {"status": "sent", "delivered": delivered}

        message = "; ".join(errors)
        if attempts >= self.settings.notification_max_attempts:
            await self.repository.mark_failed(claimed["id"], delivered, message)
            logger.error(
                "%s for order %s failed after %d attempts: %s",
                kind,
                order.get("order_number"),
                attempts,
                message,
            )
            return {"status": "failed", "delivered": delivered}

        retry_at = _utc_now() + timedelta(seconds=self.backoff_seconds(attempts))
        await self.repository.schedule_retry(claimed["id"], delivered, message, retry_at)
        logger.warning(
            "%s for order %s attempt %d failed (%s), retrying at %s",
            kind,
            order.get("order_number"),
            attempts,
            message,
            retry_at.isoformat(),
        )
        return {"status": "pending", "delivered": delivered}

    async def process_due(self, limit: int = 50) -> dict[str, int]:
        """Deliver every due record once.

        Returns:
            dict: Counts by resulting status.
        """
        released = await self.repository.release_stale(_utc_now() - timedelta(seconds=STALE_CLAIM_SECONDS))
        if released:
            logger.warning("Released %d stale notification claims", released)

        counts = {"sent": 0, "pending": 0, "failed": 0, "skipped": 0}
        for record in await self.repository.fetch_due(_utc_now(), limit=limit):
            result = await self.deliver(record)
            counts[result["status"] if result else "skipped"] += 1
        return counts


class NotificationWorker:
    """Background loop that drains the outbox periodically."""

    def __init__(self, service: NotificationService | None = None, interval_seconds: int | None = None) -> None:
        self._service = service
        self.interval_seconds = interval_seconds or get_settings().notification_poll_interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def service(self) -> NotificationService:
        if self._service is None:
            self._service = NotificationService()
        return self._service

    async def start(self) -> None:
        """Start the background task."""
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
            logger.info("Notification worker started (interval %ds)", self.interval_seconds)

    async def stop(self) -> None:
        """Stop the background task."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Notification worker stopped")

    async def run_once(self) -> dict[str, int]:
        counts = await self.service.process_due()
        if any(counts.values()):
            logger.info("Notification outbox processed: %s", counts)
        return counts

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception as e:
                # keep the loop alive; the next tick retries
                logger.error("Notification worker iteration failed: %s", str(e))


# Global singleton instance
_notification_worker: NotificationWorker | None = None


def get_notification_worker() -> NotificationWorker:
    """Get or create the global notification worker."""
    global _notification_worker
    if _notification_worker is None:
        _notification_worker = NotificationWorker()
    return _notification_worker


async def init_notification_worker() -> NotificationWorker:
    """Start the outbox worker. Call at app startup."""
    worker = get_notification_worker()
    await worker.start()
    return worker


async def shutdown_notification_worker() -> None:
    """Stop the outbox worker. Call at app shutdown."""
    global _notification_worker
    if _notification_worker:
        await _notification_worker.stop()
        _notification_worker = None
