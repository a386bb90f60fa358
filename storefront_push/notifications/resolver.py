"""Resolve a delivery request into the concrete set of device subscriptions."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from storefront_push.notifications.contracts import ROLE_ADMINS, ROLE_DELIVERY, AudienceResolver, DeliveryRequest, PushSubscription, SubscriptionLookupError, SubscriptionStore
from storefront_push.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def dedupe_by_endpoint(subscriptions: list[PushSubscription]) -> list[PushSubscription]:
  """Keep the first subscription seen for each endpoint, preserving order."""
  seen: set[str] = set()
  unique: list[PushSubscription] = []
  for subscription in subscriptions:
    if subscription.endpoint in seen:
      continue
    seen.add(subscription.endpoint)
    unique.append(subscription)
  return unique


class SubscriptionResolver:
  """Turns explicit users, role audiences and preference filters into subscriptions."""

  def __init__(self, *, store: SubscriptionStore, audiences: AudienceResolver, breaker: CircuitBreaker | None = None) -> None:
    self._store = store
    self._audiences = audiences
    self._breaker = breaker

  async def resolve(self, request: DeliveryRequest) -> list[PushSubscription]:
    """Return the unique subscriptions targeted by `request`; empty when nothing matches."""
    if not request.has_explicit_target:
      subscriptions = await self._call("list_all", lambda: self._store.list_all(preference_filter=request.preference_filter))
      return dedupe_by_endpoint(subscriptions)

    # Union every targeting path; one user may be reachable through several of them.
    user_ids: list[str] = list(request.user_ids)
    if request.send_to_admins:
      user_ids.extend(await self._call("resolve_audience", lambda: self._audiences.resolve_audience(ROLE_ADMINS)))
    if request.send_to_delivery:
      user_ids.extend(await self._call("resolve_audience", lambda: self._audiences.resolve_audience(ROLE_DELIVERY)))

    unique_user_ids = list(dict.fromkeys(user_ids))
    if not unique_user_ids:
      logger.info("Delivery request resolved to no users type=%s", request.notification_type)
      return []

    subscriptions = await self._call("list_for_users", lambda: self._store.list_for_users(unique_user_ids))
    if request.preference_filter:
      subscriptions = [subscription for subscription in subscriptions if subscription.prefers(request.preference_filter)]

    return dedupe_by_endpoint(subscriptions)

  async def _call(self, operation_name: str, operation: Callable[[], Awaitable[T]]) -> T:
    """Run a store read, optionally under the store breaker, and normalise failures."""
    try:
      if self._breaker is None:
        return await operation()
      return await self._breaker.execute(operation)
    except SubscriptionLookupError:
      raise
    except CircuitBreakerError as exc:
      logger.error("Subscription store unavailable operation=%s error=%s", operation_name, exc)
      raise SubscriptionLookupError(f"Subscription store unavailable during {operation_name}: {exc}") from exc
    except Exception as exc:
      logger.error("Subscription lookup failed operation=%s error=%s", operation_name, exc, exc_info=True)
      raise SubscriptionLookupError(f"Subscription lookup failed during {operation_name}: {exc}") from exc
