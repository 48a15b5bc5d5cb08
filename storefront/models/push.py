"""Push device and notification outbox type definitions."""

from datetime import datetime
from typing import Literal, TypedDict

NotificationKind = Literal["order_created", "order_paid", "order_shipped", "order_delivered"]
NotificationStatus = Literal["pending", "processing", "sent", "failed"]
NotificationChannel = Literal["customer_email", "ops_email", "push"]


class PushDevice(TypedDict):
    """Push device table row.

    One row per Expo token; registration overwrites by token.
    """

    id: int
    token: str
    platform: str | None
    user_id: str | None
    lang: str | None
    country: str | None
    tags: list[str]
    marketing_opt_in: bool
    last_seen_at: datetime


class OrderNotification(TypedDict):
    """Outbox row for an order notification.

    Unique per (order_id, kind). Channels already delivered are remembered
    so a retry never sends them twice.
    """

    id: int
    order_id: int
    kind: NotificationKind
    status: NotificationStatus
    channels: list[NotificationChannel]
    delivered_channels: list[NotificationChannel]
    attempts: int
    next_attempt_at: datetime
    claimed_at: datetime | None
    last_error: str | None
    sent_at: datetime | None
    created_at: datetime
