"""Repository helpers for the notification queue and delivery audit log."""

from __future__ import annotations

import datetime
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_push.core.database import get_session_factory
from storefront_push.notifications.contracts import DeliveryLogStore, DeliveryOutcome, PendingNotification
from storefront_push.schema.notification_logs import NotificationLog

logger = logging.getLogger(__name__)


def _optional_uuid(value: str | None) -> uuid.UUID | None:
  if not value:
    return None
  try:
    return uuid.UUID(str(value))
  except ValueError:
    return None


class NotificationLogRepository(DeliveryLogStore):
  """Persist delivery outcomes and drain queued rows from `notification_logs`."""

  async def append_outcome(self, outcome: DeliveryOutcome) -> None:
    """Write one audit row per delivery attempt."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      await self._append_with_session(session=session, outcome=outcome)

  async def _append_with_session(self, *, session: AsyncSession, outcome: DeliveryOutcome) -> None:
    broadcast_id = _optional_uuid(outcome.broadcast_id)
    record = NotificationLog(
      user_id=_optional_uuid(outcome.user_id),
      title=outcome.title,
      body=outcome.body,
      icon=outcome.icon,
      url=outcome.url,
      image_url=outcome.image_url,
      notification_type=outcome.notification_type,
      reference_type="broadcast" if broadcast_id else None,
      reference_id=str(broadcast_id) if broadcast_id else None,
      status=outcome.status,
      error_message=outcome.error_message,
      sent_at=outcome.created_at if outcome.sent else None,
      broadcast_id=broadcast_id,
    )
    session.add(record)
    await session.commit()

  async def list_pending(self, *, limit: int) -> list[PendingNotification]:
    """Return the oldest `pending` rows first."""
    session_factory = get_session_factory()
    if session_factory is None:
      return []

    async with session_factory() as session:
      return await self._list_pending_with_session(session=session, limit=limit)

  async def _list_pending_with_session(self, *, session: AsyncSession, limit: int) -> list[PendingNotification]:
    stmt = select(NotificationLog).where(NotificationLog.status == "pending").order_by(NotificationLog.created_at).limit(limit)
    result = await session.execute(stmt)
    return [
      PendingNotification(
        id=str(row.id),
        title=row.title,
        body=row.body,
        notification_type=row.notification_type,
        user_id=str(row.user_id) if row.user_id else None,
        url=row.url,
      )
      for row in result.scalars().all()
    ]

  async def mark_sent(self, *, log_id: str, sent_at: datetime.datetime) -> None:
    """Mark a queued row sent once a dispatch attempt was issued for it."""
    parsed = _optional_uuid(log_id)
    if parsed is None:
      logger.warning("Ignoring malformed notification log id log_id=%s", log_id)
      return

    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      # Guard on `pending` so a row finalised by an overlapping tick is left alone.
      stmt = update(NotificationLog).where(NotificationLog.id == parsed, NotificationLog.status == "pending").values(status="sent", sent_at=sent_at)
      await session.execute(stmt)
      await session.commit()


class NullNotificationLogRepository(NotificationLogRepository):
  """No-op repository used when persistence is unavailable."""

  async def append_outcome(self, outcome: DeliveryOutcome) -> None:
    logger.debug("Notification log persistence disabled; dropping type=%s status=%s", outcome.notification_type, outcome.status)

  async def list_pending(self, *, limit: int) -> list[PendingNotification]:
    return []

  async def mark_sent(self, *, log_id: str, sent_at: datetime.datetime) -> None:
    return None
