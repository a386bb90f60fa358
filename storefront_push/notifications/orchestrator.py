"""Fan a delivery request out to every resolved subscription and settle the results."""

from __future__ import annotations

import asyncio
import datetime
import json
import logging
from collections.abc import Callable
from typing import Any, Protocol

from storefront_push.notifications.contracts import (
  BroadcastStore,
  DeliveryLogStore,
  DeliveryOutcome,
  DeliveryRequest,
  DeliverySummary,
  InvalidPushSubscriptionError,
  NotificationError,
  PushSubscription,
  SubscriptionStore,
)
from storefront_push.notifications.encryption import MessageEncryptor
from storefront_push.notifications.resolver import SubscriptionResolver
from storefront_push.notifications.transport import GONE_STATUSES, PushMessage, PushTransport, redact_endpoint
from storefront_push.notifications.vapid import VapidSigner
from storefront_push.resilience.circuit_breaker import CircuitBreakerError, CircuitBreakerRegistry

logger = logging.getLogger(__name__)

PUSH_TRANSPORT_CIRCUIT = "push-transport"
ENDPOINT_GONE = "endpoint gone"
DEFAULT_ICON = "bell"
DEFAULT_URL = "/"


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def build_payload(request: DeliveryRequest, *, now: datetime.datetime) -> dict[str, Any]:
  """Build the JSON document the receiving device renders."""
  payload: dict[str, Any] = {
    "title": request.title,
    "body": request.body,
    "icon": request.icon or DEFAULT_ICON,
    "url": request.url or DEFAULT_URL,
    "type": request.notification_type or "general",
    "data": dict(request.data),
    "timestamp": int(now.timestamp() * 1000),
  }
  if request.image_url:
    payload["image"] = request.image_url
  return payload


class DeliveryService(Protocol):
  async def deliver(self, request: DeliveryRequest) -> DeliverySummary: ...


class DeliveryOrchestrator(DeliveryService):
  """Sign, encrypt and send one request to all of its subscriptions concurrently."""

  def __init__(
    self,
    *,
    resolver: SubscriptionResolver,
    signer: VapidSigner,
    encryptor: MessageEncryptor,
    transport: PushTransport,
    subscriptions: SubscriptionStore,
    logs: DeliveryLogStore,
    broadcasts: BroadcastStore,
    breakers: CircuitBreakerRegistry,
    max_concurrency: int = 50,
    ttl_seconds: int = 86400,
    urgency: str = "high",
    clock: Callable[[], datetime.datetime] = _utc_now,
  ) -> None:
    if max_concurrency < 1:
      raise ValueError("max_concurrency must be at least 1.")
    self._resolver = resolver
    self._signer = signer
    self._encryptor = encryptor
    self._transport = transport
    self._subscriptions = subscriptions
    self._logs = logs
    self._broadcasts = broadcasts
    self._breakers = breakers
    self._max_concurrency = max_concurrency
    self._ttl_seconds = ttl_seconds
    self._urgency = urgency
    self._clock = clock

  async def deliver(self, request: DeliveryRequest) -> DeliverySummary:
    """Deliver `request`; only subscription lookup failures propagate."""
    targets = await self._resolver.resolve(request)
    plaintext = json.dumps(build_payload(request, now=self._clock()), ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    outcomes: list[DeliveryOutcome] = []
    if targets:
      semaphore = asyncio.Semaphore(self._max_concurrency)
      # Tasks never raise, so the group always waits for every send to settle.
      async with asyncio.TaskGroup() as group:
        tasks = [group.create_task(self._deliver_one(subscription, request, plaintext, semaphore)) for subscription in targets]
      outcomes = [task.result() for task in tasks]

    sent = sum(1 for outcome in outcomes if outcome.sent)
    summary = DeliverySummary(sent=sent, failed=len(outcomes) - sent, outcomes=tuple(outcomes))
    logger.info("Push delivery settled type=%s targets=%d sent=%d failed=%d", request.notification_type, len(targets), summary.sent, summary.failed)

    if request.broadcast_id:
      await self._complete_broadcast(request.broadcast_id, summary)

    return summary

  async def _deliver_one(self, subscription: PushSubscription, request: DeliveryRequest, plaintext: bytes, semaphore: asyncio.Semaphore) -> DeliveryOutcome:
    # Audit writes run outside the semaphore.
    async with semaphore:
      outcome = await self._attempt(subscription, request, plaintext)
    await self._append_outcome(outcome)
    return outcome

  async def _attempt(self, subscription: PushSubscription, request: DeliveryRequest, plaintext: bytes) -> DeliveryOutcome:
    """Send to one device and classify the result; never raises."""
    endpoint = subscription.endpoint
    try:
      authorization = self._signer.authorization_header(endpoint)
      body = self._encryptor.encrypt(plaintext, subscription.p256dh, subscription.auth)
      message = PushMessage(endpoint=endpoint, body=body, authorization=authorization, ttl_seconds=self._ttl_seconds, urgency=self._urgency)
      # One breaker for the relay; 404/410 are returned as statuses and never count as failures.
      breaker = self._breakers.get(PUSH_TRANSPORT_CIRCUIT)
      status_code = await breaker.execute(lambda: self._transport.send(message))
    except InvalidPushSubscriptionError:
      return await self._handle_gone(subscription, request)
    except (NotificationError, CircuitBreakerError) as exc:
      logger.warning("Push delivery failed endpoint=%s user_id=%s error=%s", redact_endpoint(endpoint), subscription.user_id, exc)
      return self._outcome(subscription, request, status="failed", error_message=str(exc))
    except Exception as exc:
      logger.error("Unexpected push delivery failure endpoint=%s user_id=%s", redact_endpoint(endpoint), subscription.user_id, exc_info=True)
      return self._outcome(subscription, request, status="failed", error_message=f"{type(exc).__name__}: {exc}")

    if status_code in GONE_STATUSES:
      return await self._handle_gone(subscription, request)

    # Best-effort; the push has already been accepted.
    delivered_at = self._clock()
    try:
      await self._subscriptions.record_delivery(endpoint=endpoint, delivered_at=delivered_at)
    except Exception:
      logger.warning("Failed to update subscription counters endpoint=%s", redact_endpoint(endpoint), exc_info=True)

    logger.debug("Push delivered endpoint=%s status=%s", redact_endpoint(endpoint), status_code)
    return self._outcome(subscription, request, status="sent")

  async def _handle_gone(self, subscription: PushSubscription, request: DeliveryRequest) -> DeliveryOutcome:
    """Drop a subscription the relay reports as permanently gone."""
    logger.info("Removing expired push subscription endpoint=%s user_id=%s", redact_endpoint(subscription.endpoint), subscription.user_id)
    try:
      await self._subscriptions.delete_by_endpoint(endpoint=subscription.endpoint)
    except Exception:
      logger.warning("Failed to remove expired push subscription endpoint=%s", redact_endpoint(subscription.endpoint), exc_info=True)
    return self._outcome(subscription, request, status="failed", error_message=ENDPOINT_GONE)

  def _outcome(self, subscription: PushSubscription, request: DeliveryRequest, *, status: str, error_message: str | None = None) -> DeliveryOutcome:
    return DeliveryOutcome(
      endpoint=subscription.endpoint,
      user_id=subscription.user_id,
      notification_type=request.notification_type,
      status=status,
      title=request.title,
      body=request.body,
      created_at=self._clock(),
      error_message=error_message,
      url=request.url,
      icon=request.icon,
      image_url=request.image_url,
      broadcast_id=request.broadcast_id,
    )

  async def _append_outcome(self, outcome: DeliveryOutcome) -> None:
    try:
      await self._logs.append_outcome(outcome)
    except Exception:
      logger.warning("Failed to write delivery outcome endpoint=%s status=%s", redact_endpoint(outcome.endpoint), outcome.status, exc_info=True)

  async def _complete_broadcast(self, broadcast_id: str, summary: DeliverySummary) -> None:
    try:
      completed = await self._broadcasts.complete(broadcast_id=broadcast_id, sent=summary.sent, failed=summary.failed, completed_at=self._clock())
    except Exception:
      logger.error("Failed to finalise broadcast broadcast_id=%s", broadcast_id, exc_info=True)
      return

    if not completed:
      logger.warning("Broadcast was already finalised broadcast_id=%s", broadcast_id)


class NullDeliveryOrchestrator(DeliveryService):
  """Used when push delivery is disabled; nothing is resolved or sent."""

  def __init__(self, *, broadcasts: BroadcastStore | None = None) -> None:
    self._broadcasts = broadcasts

  async def deliver(self, request: DeliveryRequest) -> DeliverySummary:
    logger.info("Push delivery disabled; skipping type=%s title=%s", request.notification_type, request.title)
    # Claimed broadcasts go back to the queue so they are sent once delivery is enabled.
    if request.broadcast_id and self._broadcasts is not None:
      await self._broadcasts.release(broadcast_id=request.broadcast_id)
    return DeliverySummary(sent=0, failed=0)
