"""Data contracts and error taxonomy for push delivery."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Protocol

# Boolean columns on a subscription that a broadcast may filter on.
PREFERENCE_FLAGS = frozenset({"daily_reminders", "profit_alerts", "order_updates", "low_stock_alerts", "new_order_alerts", "delivery_updates", "promotional_alerts"})

ROLE_ADMINS = "admins"
ROLE_DELIVERY = "delivery"


@dataclass(frozen=True)
class PushSubscription:
  """A device registration; the endpoint is its identity."""

  endpoint: str
  p256dh: str
  auth: str
  user_id: str
  preferences: dict[str, bool] = field(default_factory=dict)
  reminder_time: datetime.time | None = None
  notification_count: int = 0
  last_notification_at: datetime.datetime | None = None

  def prefers(self, flag: str) -> bool:
    return bool(self.preferences.get(flag, False))


@dataclass(frozen=True)
class DeliveryRequest:
  """One notification to fan out; never persisted."""

  title: str
  body: str
  notification_type: str = "general"
  user_ids: tuple[str, ...] = ()
  send_to_admins: bool = False
  send_to_delivery: bool = False
  preference_filter: str | None = None
  url: str | None = None
  icon: str | None = None
  image_url: str | None = None
  data: dict[str, Any] = field(default_factory=dict)
  broadcast_id: str | None = None

  def __post_init__(self) -> None:
    if self.preference_filter is not None and self.preference_filter not in PREFERENCE_FLAGS:
      raise ValueError(f"Unknown preference filter: {self.preference_filter}")

  @property
  def has_explicit_target(self) -> bool:
    return bool(self.user_ids) or self.send_to_admins or self.send_to_delivery


@dataclass(frozen=True)
class DeliveryOutcome:
  """Audit record for one subscription within one request."""

  endpoint: str
  user_id: str
  notification_type: str
  status: str
  title: str
  body: str
  created_at: datetime.datetime
  error_message: str | None = None
  url: str | None = None
  icon: str | None = None
  image_url: str | None = None
  broadcast_id: str | None = None

  @property
  def sent(self) -> bool:
    return self.status == "sent"


@dataclass(frozen=True)
class DeliverySummary:
  """Aggregate result of `DeliveryOrchestrator.deliver`."""

  sent: int
  failed: int
  outcomes: tuple[DeliveryOutcome, ...] = ()

  @property
  def total(self) -> int:
    return self.sent + self.failed


@dataclass(frozen=True)
class PendingNotification:
  """A queued notification row written by storefront triggers."""

  id: str
  title: str
  body: str
  notification_type: str
  user_id: str | None = None
  url: str | None = None


@dataclass(frozen=True)
class BroadcastJob:
  """An admin-authored broadcast, possibly scheduled for later."""

  id: str
  title: str
  body: str
  status: str
  target_audience: str = "all"
  target_user_ids: tuple[str, ...] = ()
  scheduled_at: datetime.datetime | None = None
  url: str | None = None
  icon: str | None = None
  image_url: str | None = None
  sent_count: int = 0
  failed_count: int = 0


class NotificationError(Exception):
  """Base class for all notification delivery failures."""


class SigningError(NotificationError):
  """The VAPID key pair or claims could not produce a signature."""


class EncryptionError(NotificationError):
  """The payload could not be encrypted for a subscription's key material."""


class TransportError(NotificationError):
  """The push relay could not be reached or did not accept the message."""

  def __init__(self, message: str, *, status_code: int | None = None, response_text: str | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code
    self.response_text = response_text


class InvalidPushSubscriptionError(TransportError):
  """The relay reported the endpoint as permanently gone (404/410)."""


class SubscriptionLookupError(NotificationError):
  """Subscriptions or audiences could not be read from the store."""


class SubscriptionStore(Protocol):
  async def list_for_users(self, user_ids: list[str]) -> list[PushSubscription]: ...

  async def list_all(self, *, preference_filter: str | None = None) -> list[PushSubscription]: ...

  async def list_with_reminders_enabled(self) -> list[PushSubscription]: ...

  async def record_delivery(self, *, endpoint: str, delivered_at: datetime.datetime) -> None: ...

  async def delete_by_endpoint(self, *, endpoint: str) -> None: ...


class AudienceResolver(Protocol):
  async def resolve_audience(self, role: str) -> list[str]: ...


class DeliveryLogStore(Protocol):
  async def append_outcome(self, outcome: DeliveryOutcome) -> None: ...

  async def list_pending(self, *, limit: int) -> list[PendingNotification]: ...

  async def mark_sent(self, *, log_id: str, sent_at: datetime.datetime) -> None: ...


class BroadcastStore(Protocol):
  async def list_due(self, *, now: datetime.datetime) -> list[BroadcastJob]: ...

  async def claim(self, *, broadcast_id: str) -> bool: ...

  async def release(self, *, broadcast_id: str) -> None: ...

  async def complete(self, *, broadcast_id: str, sent: int, failed: int, completed_at: datetime.datetime) -> bool: ...


class StoreStats(Protocol):
  async def delivered_revenue_since(self, start: datetime.datetime) -> tuple[float, int]: ...

  async def expenses_since(self, day: datetime.date) -> float: ...

  async def count_pending_orders(self) -> int: ...
