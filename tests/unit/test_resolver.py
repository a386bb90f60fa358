from __future__ import annotations

import pytest
from conftest import FakeAudienceResolver, FakeSubscriptionStore

from storefront_push.notifications.contracts import DeliveryRequest, SubscriptionLookupError
from storefront_push.notifications.resolver import SubscriptionResolver
from storefront_push.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState


@pytest.mark.anyio
async def test_admin_audience_deduplicates_explicit_users(make_subscription):
  store = FakeSubscriptionStore([make_subscription("admin-1"), make_subscription("admin-2"), make_subscription("customer")])
  resolver = SubscriptionResolver(store=store, audiences=FakeAudienceResolver({"admins": ["admin-1", "admin-2"]}))

  resolved = await resolver.resolve(DeliveryRequest(title="t", body="b", send_to_admins=True, user_ids=("admin-1",)))

  assert sorted(subscription.user_id for subscription in resolved) == ["admin-1", "admin-2"]


@pytest.mark.anyio
async def test_duplicate_endpoints_are_collapsed(make_subscription):
  subscription = make_subscription("u1")
  store = FakeSubscriptionStore([subscription, subscription])
  resolver = SubscriptionResolver(store=store, audiences=FakeAudienceResolver())

  resolved = await resolver.resolve(DeliveryRequest(title="t", body="b", user_ids=("u1",)))

  assert resolved == [subscription]


@pytest.mark.anyio
async def test_no_target_fetches_everyone_with_preference(make_subscription):
  store = FakeSubscriptionStore([make_subscription("a", profit_alerts=True), make_subscription("b", profit_alerts=False), make_subscription("c")])
  audiences = FakeAudienceResolver()
  resolver = SubscriptionResolver(store=store, audiences=audiences)

  everyone = await resolver.resolve(DeliveryRequest(title="t", body="b"))
  filtered = await resolver.resolve(DeliveryRequest(title="t", body="b", preference_filter="profit_alerts"))

  assert len(everyone) == 3
  assert [subscription.user_id for subscription in filtered] == ["a"]
  assert audiences.calls == []


@pytest.mark.anyio
async def test_preference_filter_applies_to_role_audiences(make_subscription):
  store = FakeSubscriptionStore([make_subscription("admin-1", profit_alerts=True), make_subscription("admin-2", profit_alerts=False)])
  resolver = SubscriptionResolver(store=store, audiences=FakeAudienceResolver({"admins": ["admin-1", "admin-2"]}))

  resolved = await resolver.resolve(DeliveryRequest(title="t", body="b", send_to_admins=True, preference_filter="profit_alerts"))

  assert [subscription.user_id for subscription in resolved] == ["admin-1"]


@pytest.mark.anyio
async def test_delivery_audience_and_empty_result(make_subscription):
  store = FakeSubscriptionStore([make_subscription("rider")])
  resolver = SubscriptionResolver(store=store, audiences=FakeAudienceResolver({"delivery": ["rider"]}))

  riders = await resolver.resolve(DeliveryRequest(title="t", body="b", send_to_delivery=True))
  nobody = await resolver.resolve(DeliveryRequest(title="t", body="b", send_to_admins=True))

  assert [subscription.user_id for subscription in riders] == ["rider"]
  assert nobody == []


@pytest.mark.anyio
async def test_store_failure_raises_lookup_error():
  store = FakeSubscriptionStore()
  store.fail_reads = True
  resolver = SubscriptionResolver(store=store, audiences=FakeAudienceResolver())

  with pytest.raises(SubscriptionLookupError):
    await resolver.resolve(DeliveryRequest(title="t", body="b"))


@pytest.mark.anyio
async def test_open_store_breaker_raises_lookup_error():
  breaker = CircuitBreaker("subscription-store", CircuitBreakerConfig(failure_threshold=1))
  breaker.force_state(CircuitState.OPEN)
  resolver = SubscriptionResolver(store=FakeSubscriptionStore(), audiences=FakeAudienceResolver(), breaker=breaker)

  with pytest.raises(SubscriptionLookupError, match="unavailable"):
    await resolver.resolve(DeliveryRequest(title="t", body="b", user_ids=("u1",)))


def test_unknown_preference_filter_is_rejected():
  with pytest.raises(ValueError):
    DeliveryRequest(title="t", body="b", preference_filter="drop_table")
