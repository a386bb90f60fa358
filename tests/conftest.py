"""Shared fixtures and in-memory stand-ins for the delivery engine's stores."""

from __future__ import annotations

import datetime
import os
from dataclasses import replace

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from storefront_push.notifications.contracts import BroadcastJob, DeliveryOutcome, DeliveryRequest, DeliverySummary, PendingNotification, PushSubscription
from storefront_push.notifications.encoding import b64url_encode
from storefront_push.notifications.transport import PushMessage
from storefront_push.notifications.vapid import VapidKeyPair, VapidSigner


@pytest.fixture
def anyio_backend():
  return "asyncio"


class FakeSubscriptionStore:
  def __init__(self, subscriptions: list[PushSubscription] | None = None) -> None:
    self.subscriptions = list(subscriptions or [])
    self.deleted: list[str] = []
    self.delivered: list[str] = []
    self.fail_reads = False

  def _check(self) -> None:
    if self.fail_reads:
      raise ConnectionError("database unreachable")

  async def list_for_users(self, user_ids: list[str]) -> list[PushSubscription]:
    self._check()
    wanted = set(user_ids)
    return [subscription for subscription in self.subscriptions if subscription.user_id in wanted]

  async def list_all(self, *, preference_filter: str | None = None) -> list[PushSubscription]:
    self._check()
    if preference_filter is None:
      return list(self.subscriptions)
    return [subscription for subscription in self.subscriptions if subscription.prefers(preference_filter)]

  async def list_with_reminders_enabled(self) -> list[PushSubscription]:
    self._check()
    return [subscription for subscription in self.subscriptions if subscription.prefers("daily_reminders") and subscription.reminder_time is not None]

  async def record_delivery(self, *, endpoint: str, delivered_at: datetime.datetime) -> None:
    self.delivered.append(endpoint)
    self.subscriptions = [
      replace(subscription, notification_count=subscription.notification_count + 1, last_notification_at=delivered_at) if subscription.endpoint == endpoint else subscription
      for subscription in self.subscriptions
    ]

  async def delete_by_endpoint(self, *, endpoint: str) -> None:
    self.deleted.append(endpoint)
    self.subscriptions = [subscription for subscription in self.subscriptions if subscription.endpoint != endpoint]


class FakeAudienceResolver:
  def __init__(self, audiences: dict[str, list[str]] | None = None) -> None:
    self.audiences = audiences or {}
    self.calls: list[str] = []

  async def resolve_audience(self, role: str) -> list[str]:
    self.calls.append(role)
    return list(self.audiences.get(role, []))


class FakeDeliveryLogStore:
  def __init__(self, pending: list[PendingNotification] | None = None) -> None:
    self.outcomes: list[DeliveryOutcome] = []
    self.pending = list(pending or [])
    self.marked: list[str] = []

  async def append_outcome(self, outcome: DeliveryOutcome) -> None:
    self.outcomes.append(outcome)

  async def list_pending(self, *, limit: int) -> list[PendingNotification]:
    return [row for row in self.pending if row.id not in self.marked][:limit]

  async def mark_sent(self, *, log_id: str, sent_at: datetime.datetime) -> None:
    self.marked.append(log_id)


class FakeBroadcastStore:
  def __init__(self, jobs: list[BroadcastJob] | None = None) -> None:
    self.jobs = {job.id: job for job in jobs or []}
    self.completions: list[tuple[str, int, int]] = []
    self.released: list[str] = []

  async def list_due(self, *, now: datetime.datetime) -> list[BroadcastJob]:
    return [job for job in self.jobs.values() if job.status == "scheduled" and job.scheduled_at is not None and job.scheduled_at <= now]

  async def claim(self, *, broadcast_id: str) -> bool:
    job = self.jobs.get(broadcast_id)
    if job is None or job.status != "scheduled":
      return False
    self.jobs[broadcast_id] = replace(job, status="sending")
    return True

  async def release(self, *, broadcast_id: str) -> None:
    self.released.append(broadcast_id)
    job = self.jobs.get(broadcast_id)
    if job is not None and job.status == "sending":
      self.jobs[broadcast_id] = replace(job, status="scheduled")

  async def complete(self, *, broadcast_id: str, sent: int, failed: int, completed_at: datetime.datetime) -> bool:
    job = self.jobs.get(broadcast_id)
    if job is None or job.status == "sent":
      return False
    self.jobs[broadcast_id] = replace(job, status="sent", sent_count=sent, failed_count=failed)
    self.completions.append((broadcast_id, sent, failed))
    return True


class FakeStoreStats:
  def __init__(self, *, revenue: float = 0.0, order_count: int = 0, expenses: float = 0.0, pending_orders: int = 0) -> None:
    self.revenue = revenue
    self.order_count = order_count
    self.expenses = expenses
    self.pending_orders = pending_orders
    self.revenue_since: list[datetime.datetime] = []

  async def delivered_revenue_since(self, start: datetime.datetime) -> tuple[float, int]:
    self.revenue_since.append(start)
    return self.revenue, self.order_count

  async def expenses_since(self, day: datetime.date) -> float:
    return self.expenses

  async def count_pending_orders(self) -> int:
    return self.pending_orders


class RecordingDelivery:
  """Captures requests instead of sending; `on_deliver` may raise or mutate stores."""

  def __init__(self, on_deliver=None) -> None:
    self.requests: list[DeliveryRequest] = []
    self.on_deliver = on_deliver

  async def deliver(self, request: DeliveryRequest) -> DeliverySummary:
    self.requests.append(request)
    if self.on_deliver is not None:
      result = self.on_deliver(request)
      if hasattr(result, "__await__"):
        await result
    return DeliverySummary(sent=1, failed=0)


class FakeTransport:
  """Answers with a per-endpoint status (default 201) or raises a configured exception."""

  def __init__(self, responses: dict[str, int | Exception] | None = None) -> None:
    self.responses = responses or {}
    self.messages: list[PushMessage] = []

  async def send(self, message: PushMessage) -> int:
    self.messages.append(message)
    response = self.responses.get(message.endpoint, 201)
    if isinstance(response, Exception):
      raise response
    return response


@pytest.fixture(scope="session")
def subscriber_key():
  """A browser-side key pair and auth secret as a subscription would carry them."""
  private_key = ec.generate_private_key(ec.SECP256R1())
  public_raw = private_key.public_key().public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint)
  auth_secret = os.urandom(16)
  return private_key, b64url_encode(public_raw), b64url_encode(auth_secret)


@pytest.fixture
def make_subscription(subscriber_key):
  _, p256dh, auth = subscriber_key

  def _make(user_id: str, index: int = 0, **preferences: bool) -> PushSubscription:
    return PushSubscription(endpoint=f"https://fcm.googleapis.com/fcm/send/{user_id}-{index}", p256dh=p256dh, auth=auth, user_id=user_id, preferences=dict(preferences))

  return _make


@pytest.fixture(scope="session")
def vapid_key_pair():
  return VapidKeyPair.generate()


@pytest.fixture
def vapid_signer(vapid_key_pair):
  return VapidSigner(key_pair=vapid_key_pair, subject="mailto:ops@example.com", clock=lambda: 1_700_000_000.0)
