from __future__ import annotations

import dataclasses
import datetime
import json

import pytest
from conftest import FakeAudienceResolver, FakeBroadcastStore, FakeDeliveryLogStore, FakeSubscriptionStore, FakeTransport

from storefront_push.notifications.contracts import BroadcastJob, DeliveryRequest, SubscriptionLookupError, TransportError
from storefront_push.notifications.encryption import MessageEncryptor, decrypt
from storefront_push.notifications.orchestrator import ENDPOINT_GONE, PUSH_TRANSPORT_CIRCUIT, DeliveryOrchestrator, NullDeliveryOrchestrator, build_payload
from storefront_push.notifications.resolver import SubscriptionResolver
from storefront_push.resilience.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry, CircuitState

NOW = datetime.datetime(2026, 3, 1, 15, 30, tzinfo=datetime.UTC)


@pytest.fixture
def build(vapid_signer):
  def _build(store, transport, *, logs=None, broadcasts=None, audiences=None, registry=None, max_concurrency=50):
    return DeliveryOrchestrator(
      resolver=SubscriptionResolver(store=store, audiences=audiences or FakeAudienceResolver()),
      signer=vapid_signer,
      encryptor=MessageEncryptor(),
      transport=transport,
      subscriptions=store,
      logs=logs if logs is not None else FakeDeliveryLogStore(),
      broadcasts=broadcasts if broadcasts is not None else FakeBroadcastStore(),
      breakers=registry or CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=5)),
      max_concurrency=max_concurrency,
      clock=lambda: NOW,
    )

  return _build


@pytest.mark.anyio
async def test_gone_endpoints_are_removed_and_counted_as_failed(build, make_subscription):
  subscriptions = [make_subscription(f"user-{index}") for index in range(5)]
  gone = {subscriptions[1].endpoint: 410, subscriptions[3].endpoint: 410}
  store = FakeSubscriptionStore(subscriptions)
  logs = FakeDeliveryLogStore()
  orchestrator = build(store, FakeTransport(gone), logs=logs)

  summary = await orchestrator.deliver(DeliveryRequest(title="Sale", body="50% off"))

  assert (summary.sent, summary.failed, summary.total) == (3, 2, 5)
  assert sorted(store.deleted) == sorted(gone)
  assert len(store.subscriptions) == 3
  assert len(logs.outcomes) == 5
  failed = [outcome for outcome in logs.outcomes if not outcome.sent]
  assert {outcome.error_message for outcome in failed} == {ENDPOINT_GONE}
  assert sorted(store.delivered) == sorted(subscription.endpoint for subscription in subscriptions if subscription.endpoint not in gone)


@pytest.mark.anyio
async def test_transient_failures_keep_the_subscription(build, make_subscription):
  subscriptions = [make_subscription("a"), make_subscription("b")]
  transport = FakeTransport({subscriptions[0].endpoint: TransportError("Push failed: 503 - busy", status_code=503)})
  store = FakeSubscriptionStore(subscriptions)
  logs = FakeDeliveryLogStore()

  summary = await build(store, transport, logs=logs).deliver(DeliveryRequest(title="t", body="b"))

  assert (summary.sent, summary.failed) == (1, 1)
  assert store.deleted == []
  failed = next(outcome for outcome in logs.outcomes if not outcome.sent)
  assert failed.endpoint == subscriptions[0].endpoint
  assert "503" in failed.error_message


@pytest.mark.anyio
async def test_malformed_key_material_fails_only_that_subscription(build, make_subscription):
  broken = dataclasses.replace(make_subscription("broken"), p256dh="AAAA")
  store = FakeSubscriptionStore([broken, make_subscription("fine")])
  transport = FakeTransport()

  summary = await build(store, transport).deliver(DeliveryRequest(title="t", body="b"))

  assert (summary.sent, summary.failed) == (1, 1)
  assert store.deleted == []
  assert [message.endpoint for message in transport.messages] == [make_subscription("fine").endpoint]


@pytest.mark.anyio
async def test_open_circuit_fails_fast_without_calling_transport(build, make_subscription):
  registry = CircuitBreakerRegistry()
  registry.get(PUSH_TRANSPORT_CIRCUIT).force_state(CircuitState.OPEN)
  transport = FakeTransport()
  store = FakeSubscriptionStore([make_subscription("a"), make_subscription("b")])
  logs = FakeDeliveryLogStore()

  summary = await build(store, transport, logs=logs, registry=registry).deliver(DeliveryRequest(title="t", body="b"))

  assert (summary.sent, summary.failed) == (0, 2)
  assert transport.messages == []
  assert store.deleted == []
  assert all("OPEN" in outcome.error_message for outcome in logs.outcomes)


@pytest.mark.anyio
async def test_payload_reaches_device_with_defaults(build, make_subscription, subscriber_key):
  private_key, _, auth = subscriber_key
  transport = FakeTransport()
  store = FakeSubscriptionStore([make_subscription("u1")])

  await build(store, transport).deliver(DeliveryRequest(title="Hi", body="There", user_ids=("u1",), image_url="https://cdn.example.com/p.png"))

  message = transport.messages[0]
  assert message.authorization.startswith("vapid t=")
  payload = json.loads(decrypt(message.body, private_key, auth))
  assert payload == {
    "title": "Hi",
    "body": "There",
    "icon": "bell",
    "url": "/",
    "type": "general",
    "data": {},
    "timestamp": int(NOW.timestamp() * 1000),
    "image": "https://cdn.example.com/p.png",
  }


def test_build_payload_keeps_explicit_values():
  request = DeliveryRequest(title="t", body="b", notification_type="order_status", url="/orders/7", icon="truck", data={"order_id": "7"})
  payload = build_payload(request, now=NOW)
  assert payload["url"] == "/orders/7"
  assert payload["icon"] == "truck"
  assert payload["type"] == "order_status"
  assert payload["data"] == {"order_id": "7"}
  assert "image" not in payload


@pytest.mark.anyio
async def test_broadcast_is_completed_once_with_final_counts(build, make_subscription):
  subscriptions = [make_subscription("a"), make_subscription("b"), make_subscription("c")]
  broadcasts = FakeBroadcastStore([BroadcastJob(id="b-1", title="t", body="b", status="sending")])
  store = FakeSubscriptionStore(subscriptions)
  orchestrator = build(store, FakeTransport({subscriptions[2].endpoint: 404}), broadcasts=broadcasts, max_concurrency=1)

  summary = await orchestrator.deliver(DeliveryRequest(title="t", body="b", broadcast_id="b-1"))
  await orchestrator.deliver(DeliveryRequest(title="t", body="b", broadcast_id="b-1"))

  assert (summary.sent, summary.failed) == (2, 1)
  assert broadcasts.completions == [("b-1", 2, 1)]
  assert broadcasts.jobs["b-1"].status == "sent"


@pytest.mark.anyio
async def test_broadcast_with_no_audience_still_completes(build):
  broadcasts = FakeBroadcastStore([BroadcastJob(id="b-2", title="t", body="b", status="sending")])

  summary = await build(FakeSubscriptionStore(), FakeTransport(), broadcasts=broadcasts).deliver(DeliveryRequest(title="t", body="b", broadcast_id="b-2"))

  assert summary.total == 0
  assert broadcasts.completions == [("b-2", 0, 0)]


@pytest.mark.anyio
async def test_outcome_log_failure_does_not_change_results(build, make_subscription):
  class _BrokenLogs(FakeDeliveryLogStore):
    async def append_outcome(self, outcome):
      raise RuntimeError("log table locked")

  store = FakeSubscriptionStore([make_subscription("a")])

  summary = await build(store, FakeTransport(), logs=_BrokenLogs()).deliver(DeliveryRequest(title="t", body="b"))

  assert (summary.sent, summary.failed) == (1, 0)


@pytest.mark.anyio
async def test_lookup_failure_propagates(build):
  store = FakeSubscriptionStore()
  store.fail_reads = True

  with pytest.raises(SubscriptionLookupError):
    await build(store, FakeTransport()).deliver(DeliveryRequest(title="t", body="b"))


@pytest.mark.anyio
async def test_null_orchestrator_sends_nothing_and_requeues_broadcasts():
  broadcasts = FakeBroadcastStore([BroadcastJob(id="b-3", title="t", body="b", status="sending")])

  summary = await NullDeliveryOrchestrator(broadcasts=broadcasts).deliver(DeliveryRequest(title="t", body="b", broadcast_id="b-3"))

  assert summary.total == 0
  assert broadcasts.jobs["b-3"].status == "scheduled"
