"""Repository helpers for push subscription persistence."""

from __future__ import annotations

import datetime
import logging
import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_push.core.database import get_session_factory
from storefront_push.notifications.contracts import PREFERENCE_FLAGS, PushSubscription, SubscriptionStore
from storefront_push.schema.push_subscriptions import PushSubscriptionRecord

logger = logging.getLogger(__name__)


def parse_user_ids(user_ids: list[str]) -> list[uuid.UUID]:
  """Parse user ids, dropping values that are not UUIDs."""
  parsed: list[uuid.UUID] = []
  for user_id in user_ids:
    try:
      parsed.append(uuid.UUID(str(user_id)))
    except ValueError:
      logger.warning("Ignoring malformed user id user_id=%s", user_id)
  return parsed


def _to_subscription(row: PushSubscriptionRecord) -> PushSubscription:
  return PushSubscription(
    endpoint=row.endpoint,
    p256dh=row.p256dh,
    auth=row.auth,
    user_id=str(row.user_id),
    preferences={flag: bool(getattr(row, flag)) for flag in PREFERENCE_FLAGS},
    reminder_time=row.reminder_time,
    notification_count=row.notification_count or 0,
    last_notification_at=row.last_notification_at,
  )


class PushSubscriptionRepository(SubscriptionStore):
  """Read and maintain push subscriptions in Postgres."""

  async def list_for_users(self, user_ids: list[str]) -> list[PushSubscription]:
    """List every device subscription owned by the given users."""
    parsed = parse_user_ids(user_ids)
    if not parsed:
      return []

    session_factory = get_session_factory()
    if session_factory is None:
      return []

    async with session_factory() as session:
      stmt = select(PushSubscriptionRecord).where(PushSubscriptionRecord.user_id.in_(parsed))
      return await self._list_with_session(session=session, stmt=stmt)

  async def list_all(self, *, preference_filter: str | None = None) -> list[PushSubscription]:
    """List every subscription, optionally only those with `preference_filter` enabled."""
    stmt = select(PushSubscriptionRecord)
    if preference_filter is not None:
      if preference_filter not in PREFERENCE_FLAGS:
        raise ValueError(f"Unknown preference filter: {preference_filter}")
      stmt = stmt.where(getattr(PushSubscriptionRecord, preference_filter).is_(True))

    session_factory = get_session_factory()
    if session_factory is None:
      return []

    async with session_factory() as session:
      return await self._list_with_session(session=session, stmt=stmt)

  async def list_with_reminders_enabled(self) -> list[PushSubscription]:
    """List subscriptions that opted into daily reminders and chose a time."""
    session_factory = get_session_factory()
    if session_factory is None:
      return []

    async with session_factory() as session:
      stmt = select(PushSubscriptionRecord).where(PushSubscriptionRecord.daily_reminders.is_(True), PushSubscriptionRecord.reminder_time.is_not(None))
      return await self._list_with_session(session=session, stmt=stmt)

  async def _list_with_session(self, *, session: AsyncSession, stmt) -> list[PushSubscription]:
    result = await session.execute(stmt.order_by(PushSubscriptionRecord.created_at))
    return [_to_subscription(row) for row in result.scalars().all()]

  async def record_delivery(self, *, endpoint: str, delivered_at: datetime.datetime) -> None:
    """Bump the send counter and last-sent timestamp for an endpoint."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      await self._record_delivery_with_session(session=session, endpoint=endpoint, delivered_at=delivered_at)

  async def _record_delivery_with_session(self, *, session: AsyncSession, endpoint: str, delivered_at: datetime.datetime) -> None:
    # Increment in SQL so concurrent sends to one endpoint never lose counts.
    stmt = (
      update(PushSubscriptionRecord)
      .where(PushSubscriptionRecord.endpoint == endpoint)
      .values(notification_count=PushSubscriptionRecord.notification_count + 1, last_notification_at=delivered_at)
    )
    await session.execute(stmt)
    await session.commit()

  async def delete_by_endpoint(self, *, endpoint: str) -> None:
    """Delete a subscription by endpoint; deleting a missing row is a no-op."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      await self._delete_by_endpoint_with_session(session=session, endpoint=endpoint)

  async def _delete_by_endpoint_with_session(self, *, session: AsyncSession, endpoint: str) -> None:
    result = await session.execute(delete(PushSubscriptionRecord).where(PushSubscriptionRecord.endpoint == endpoint))
    await session.commit()
    if result.rowcount == 0:
      logger.debug("Push subscription already removed")


class NullPushSubscriptionRepository(PushSubscriptionRepository):
  """No-op repository used when persistence is unavailable."""

  async def list_for_users(self, user_ids: list[str]) -> list[PushSubscription]:
    return []

  async def list_all(self, *, preference_filter: str | None = None) -> list[PushSubscription]:
    return []

  async def list_with_reminders_enabled(self) -> list[PushSubscription]:
    return []

  async def record_delivery(self, *, endpoint: str, delivered_at: datetime.datetime) -> None:
    return None

  async def delete_by_endpoint(self, *, endpoint: str) -> None:
    logger.debug("Push subscription persistence disabled; skipping delete")
