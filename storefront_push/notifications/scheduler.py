"""Tick-driven rules that decide which notifications are due and dispatch them.

The scheduler owns no loop. An external trigger (cron, queue callback or the
`/process` route) calls `run(mode)` and each selected rule runs once. Rules are
isolated from each other: a failure in one is recorded in the run result and
the remaining rules still run.

Scheduled broadcasts are de-duplicated by their status transitions. A job is
only dispatched by the tick that wins the `scheduled -> sending` claim, so
overlapping ticks never send the same broadcast twice.
"""

from __future__ import annotations

import datetime
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo

from storefront_push.notifications import templates
from storefront_push.notifications.contracts import BroadcastJob, BroadcastStore, DeliveryLogStore, DeliveryRequest, PendingNotification, StoreStats, SubscriptionStore
from storefront_push.notifications.orchestrator import DeliveryService

logger = logging.getLogger(__name__)

# Queue rows without a recipient fan out to admins only for these categories.
ADMIN_FANOUT_TYPES = frozenset({"order_status", "low_stock"})

_MINUTES_PER_DAY = 24 * 60


class SchedulerMode(enum.StrEnum):
  ALL = "all"
  PENDING = "pending"
  DAILY_REMINDERS = "daily_reminders"
  PROFIT_SUMMARY = "profit_summary"
  SCHEDULED = "scheduled"


@dataclass
class SchedulerRunResult:
  pending_notifications: int = 0
  daily_reminders: int = 0
  profit_summaries: int = 0
  scheduled_broadcasts: int = 0
  errors: list[str] = field(default_factory=list)

  def processed(self) -> dict[str, int]:
    return {
      "pending_notifications": self.pending_notifications,
      "daily_reminders": self.daily_reminders,
      "profit_summaries": self.profit_summaries,
      "scheduled_broadcasts": self.scheduled_broadcasts,
    }


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def minutes_apart(first: int, second: int) -> int:
  """Distance between two minutes-of-day, wrapping across midnight."""
  delta = abs(first - second) % _MINUTES_PER_DAY
  return min(delta, _MINUTES_PER_DAY - delta)


def request_for_pending(row: PendingNotification) -> DeliveryRequest | None:
  """Map a queued row to its audience, or None when it has no recipient yet."""
  if row.user_id:
    return DeliveryRequest(title=row.title, body=row.body, notification_type=row.notification_type, user_ids=(row.user_id,), url=row.url)
  if row.notification_type in ADMIN_FANOUT_TYPES:
    return DeliveryRequest(title=row.title, body=row.body, notification_type=row.notification_type, send_to_admins=True, url=row.url)
  return None


def request_for_broadcast(job: BroadcastJob) -> DeliveryRequest:
  audience = (job.target_audience or "all").lower()
  common = {
    "title": job.title,
    "body": job.body,
    "notification_type": "broadcast",
    "url": job.url,
    "icon": job.icon,
    "image_url": job.image_url,
    "broadcast_id": job.id,
  }
  if audience == "admins":
    return DeliveryRequest(send_to_admins=True, **common)
  if audience == "delivery":
    return DeliveryRequest(send_to_delivery=True, **common)
  if job.target_user_ids:
    return DeliveryRequest(user_ids=tuple(job.target_user_ids), **common)
  return DeliveryRequest(**common)


class NotificationScheduler:
  """Runs the pending drain, reminder, profit summary and broadcast rules."""

  def __init__(
    self,
    *,
    delivery: DeliveryService,
    subscriptions: SubscriptionStore,
    logs: DeliveryLogStore,
    broadcasts: BroadcastStore,
    stats: StoreStats,
    timezone: str | ZoneInfo = "Asia/Kolkata",
    reminder_window_minutes: int = 5,
    profit_summary_hour: int = 21,
    pending_batch_size: int = 100,
    clock: Callable[[], datetime.datetime] = _utc_now,
  ) -> None:
    self._delivery = delivery
    self._subscriptions = subscriptions
    self._logs = logs
    self._broadcasts = broadcasts
    self._stats = stats
    self._timezone = timezone if isinstance(timezone, ZoneInfo) else ZoneInfo(timezone)
    self._reminder_window_minutes = reminder_window_minutes
    self._profit_summary_hour = profit_summary_hour
    self._pending_batch_size = pending_batch_size
    self._clock = clock
    self._last_profit_summary_day: datetime.date | None = None

  async def run(self, mode: SchedulerMode | str = SchedulerMode.ALL) -> SchedulerRunResult:
    """Run every rule selected by `mode` once against the current time."""
    mode = SchedulerMode(mode)
    now = self._clock()
    result = SchedulerRunResult()

    if mode in (SchedulerMode.ALL, SchedulerMode.PENDING):
      result.pending_notifications = await self._run_rule("pending_notifications", self._drain_pending(now, result.errors), result.errors)
    if mode in (SchedulerMode.ALL, SchedulerMode.DAILY_REMINDERS):
      result.daily_reminders = await self._run_rule("daily_reminders", self._send_daily_reminders(now), result.errors)
    if mode in (SchedulerMode.ALL, SchedulerMode.PROFIT_SUMMARY):
      force = mode is SchedulerMode.PROFIT_SUMMARY
      result.profit_summaries = await self._run_rule("profit_summaries", self._send_profit_summary(now, force=force), result.errors)
    if mode in (SchedulerMode.ALL, SchedulerMode.SCHEDULED):
      result.scheduled_broadcasts = await self._run_rule("scheduled_broadcasts", self._dispatch_scheduled(now, result.errors), result.errors)

    logger.info("Scheduler tick finished mode=%s processed=%s errors=%d", mode, result.processed(), len(result.errors))
    return result

  async def _run_rule(self, name: str, rule: Awaitable[int], errors: list[str]) -> int:
    try:
      return await rule
    except Exception as exc:
      logger.error("Scheduler rule failed rule=%s error=%s", name, exc, exc_info=True)
      errors.append(f"{name}: {exc}")
      return 0

  async def _drain_pending(self, now: datetime.datetime, errors: list[str]) -> int:
    """Dispatch queued rows; each row is marked sent after its dispatch attempt."""
    rows = await self._logs.list_pending(limit=self._pending_batch_size)
    processed = 0
    for row in rows:
      request = request_for_pending(row)
      if request is None:
        logger.debug("Pending notification has no recipient; leaving queued log_id=%s type=%s", row.id, row.notification_type)
        continue

      try:
        await self._delivery.deliver(request)
      except Exception as exc:
        # The row stays pending and is retried on the next tick.
        logger.warning("Pending notification dispatch failed log_id=%s error=%s", row.id, exc)
        errors.append(f"pending_notifications[{row.id}]: {exc}")
        continue

      await self._logs.mark_sent(log_id=row.id, sent_at=now)
      processed += 1

    return processed

  async def _send_daily_reminders(self, now: datetime.datetime) -> int:
    local_now = now.astimezone(self._timezone)
    current_minute = local_now.hour * 60 + local_now.minute

    due_user_ids: list[str] = []
    for subscription in await self._subscriptions.list_with_reminders_enabled():
      if not subscription.prefers("daily_reminders") or subscription.reminder_time is None:
        continue
      reminder_minute = subscription.reminder_time.hour * 60 + subscription.reminder_time.minute
      if minutes_apart(current_minute, reminder_minute) <= self._reminder_window_minutes and subscription.user_id not in due_user_ids:
        due_user_ids.append(subscription.user_id)

    if not due_user_ids:
      return 0

    pending_orders = await self._stats.count_pending_orders()
    text = templates.daily_reminder(local_hour=local_now.hour, pending_orders=pending_orders)
    for user_id in due_user_ids:
      # Only the devices that opted in are reminded, not every device the user owns.
      await self._delivery.deliver(
        DeliveryRequest(title=text.title, body=text.body, notification_type=text.notification_type, user_ids=(user_id,), preference_filter="daily_reminders", url=text.url)
      )

    logger.info("Daily reminders dispatched users=%d pending_orders=%d", len(due_user_ids), pending_orders)
    return len(due_user_ids)

  async def _send_profit_summary(self, now: datetime.datetime, *, force: bool) -> int:
    """Send the day's revenue and profit to admins who enabled profit alerts."""
    local_now = now.astimezone(self._timezone)
    today = local_now.date()
    if not force:
      if local_now.hour != self._profit_summary_hour or self._last_profit_summary_day == today:
        return 0

    day_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    revenue, order_count = await self._stats.delivered_revenue_since(day_start)
    expenses = await self._stats.expenses_since(today)
    if order_count == 0 and not expenses:
      logger.info("Profit summary skipped; no orders or expenses day=%s", today)
      return 0

    profit = revenue - expenses
    text = templates.profit_summary(revenue=revenue, profit=profit, order_count=order_count)
    await self._delivery.deliver(
      DeliveryRequest(title=text.title, body=text.body, notification_type=text.notification_type, send_to_admins=True, preference_filter="profit_alerts", url=text.url)
    )
    self._last_profit_summary_day = today
    logger.info("Profit summary dispatched day=%s revenue=%.2f profit=%.2f orders=%d", today, revenue, profit, order_count)
    return 1

  async def _dispatch_scheduled(self, now: datetime.datetime, errors: list[str]) -> int:
    dispatched = 0
    for job in await self._broadcasts.list_due(now=now):
      # Only the tick that wins the claim dispatches; the orchestrator marks the job sent.
      if not await self._broadcasts.claim(broadcast_id=job.id):
        logger.info("Broadcast already claimed by another tick broadcast_id=%s", job.id)
        continue

      try:
        await self._delivery.deliver(request_for_broadcast(job))
      except Exception as exc:
        # Nothing was sent; hand the job back so a later tick retries it.
        logger.warning("Scheduled broadcast dispatch failed broadcast_id=%s error=%s", job.id, exc)
        errors.append(f"scheduled_broadcasts[{job.id}]: {exc}")
        await self._broadcasts.release(broadcast_id=job.id)
        continue

      dispatched += 1

    return dispatched
