"""Factory helpers that wire the delivery engine from settings."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from storefront_push.config import Settings
from storefront_push.notifications.audience_repo import NullRoleAudienceRepository, RoleAudienceRepository
from storefront_push.notifications.broadcast_repo import BroadcastRepository, NullBroadcastRepository
from storefront_push.notifications.encryption import MessageEncryptor
from storefront_push.notifications.notification_log_repo import NotificationLogRepository, NullNotificationLogRepository
from storefront_push.notifications.orchestrator import DeliveryOrchestrator, DeliveryService, NullDeliveryOrchestrator
from storefront_push.notifications.push_subscription_repo import NullPushSubscriptionRepository, PushSubscriptionRepository
from storefront_push.notifications.resolver import SubscriptionResolver
from storefront_push.notifications.scheduler import NotificationScheduler
from storefront_push.notifications.store_stats_repo import NullStoreStatsRepository, StoreStatsRepository
from storefront_push.notifications.transport import HttpxPushTransport
from storefront_push.notifications.vapid import VapidKeyPair, VapidSigner
from storefront_push.resilience.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry

SUBSCRIPTION_STORE_CIRCUIT = "subscription-store"


@dataclass(frozen=True)
class NotificationRepositories:
  subscriptions: PushSubscriptionRepository
  audiences: RoleAudienceRepository
  logs: NotificationLogRepository
  broadcasts: BroadcastRepository
  stats: StoreStatsRepository


def build_repositories(settings: Settings) -> NotificationRepositories:
  """Use Postgres-backed repositories only when a DSN is configured."""
  if settings.pg_dsn:
    return NotificationRepositories(
      subscriptions=PushSubscriptionRepository(),
      audiences=RoleAudienceRepository(),
      logs=NotificationLogRepository(),
      broadcasts=BroadcastRepository(),
      stats=StoreStatsRepository(),
    )

  return NotificationRepositories(
    subscriptions=NullPushSubscriptionRepository(),
    audiences=NullRoleAudienceRepository(),
    logs=NullNotificationLogRepository(),
    broadcasts=NullBroadcastRepository(),
    stats=NullStoreStatsRepository(),
  )


def build_circuit_registry(settings: Settings) -> CircuitBreakerRegistry:
  config = CircuitBreakerConfig(
    failure_threshold=settings.circuit_failure_threshold,
    recovery_timeout_seconds=settings.circuit_recovery_timeout_seconds,
    success_threshold=settings.circuit_success_threshold,
    call_timeout_seconds=settings.circuit_call_timeout_seconds,
  )
  return CircuitBreakerRegistry(default_config=config)


def build_delivery_service(settings: Settings, *, client: httpx.AsyncClient, breakers: CircuitBreakerRegistry, repositories: NotificationRepositories) -> DeliveryService:
  """Construct the orchestrator, or a null one when push delivery is disabled."""
  if not settings.push_enabled:
    return NullDeliveryOrchestrator(broadcasts=repositories.broadcasts)

  # Settings validation guarantees both keys exist when push is enabled.
  key_pair = VapidKeyPair.from_base64url(settings.vapid_private_key or "", settings.vapid_public_key)
  signer = VapidSigner(key_pair=key_pair, subject=settings.vapid_subject, expires_in=settings.vapid_expiry_seconds)
  resolver = SubscriptionResolver(store=repositories.subscriptions, audiences=repositories.audiences, breaker=breakers.get(SUBSCRIPTION_STORE_CIRCUIT))
  return DeliveryOrchestrator(
    resolver=resolver,
    signer=signer,
    encryptor=MessageEncryptor(),
    transport=HttpxPushTransport(client),
    subscriptions=repositories.subscriptions,
    logs=repositories.logs,
    broadcasts=repositories.broadcasts,
    breakers=breakers,
    max_concurrency=settings.push_max_concurrency,
    ttl_seconds=settings.push_ttl_seconds,
    urgency=settings.push_urgency,
  )


def build_scheduler(settings: Settings, *, delivery: DeliveryService, repositories: NotificationRepositories) -> NotificationScheduler:
  return NotificationScheduler(
    delivery=delivery,
    subscriptions=repositories.subscriptions,
    logs=repositories.logs,
    broadcasts=repositories.broadcasts,
    stats=repositories.stats,
    timezone=settings.timezone,
    reminder_window_minutes=settings.reminder_window_minutes,
    profit_summary_hour=settings.profit_summary_hour,
    pending_batch_size=settings.pending_batch_size,
  )
