"""Repository helpers for admin broadcasts.

Each status change is a single conditional UPDATE, so concurrent schedulers
agree on who owns a broadcast without extra locking.
"""

from __future__ import annotations

import datetime
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_push.core.database import get_session_factory
from storefront_push.notifications.contracts import BroadcastJob, BroadcastStore
from storefront_push.schema.broadcasts import BroadcastNotification

logger = logging.getLogger(__name__)

STATUS_SCHEDULED = "scheduled"
STATUS_SENDING = "sending"
STATUS_SENT = "sent"


def _parse_id(broadcast_id: str) -> uuid.UUID | None:
  try:
    return uuid.UUID(str(broadcast_id))
  except ValueError:
    logger.warning("Ignoring malformed broadcast id broadcast_id=%s", broadcast_id)
    return None


def _to_job(row: BroadcastNotification) -> BroadcastJob:
  return BroadcastJob(
    id=str(row.id),
    title=row.title,
    body=row.body,
    status=row.status,
    target_audience=row.target_audience or "all",
    target_user_ids=tuple(str(user_id) for user_id in row.target_user_ids or ()),
    scheduled_at=row.scheduled_at,
    url=row.url,
    icon=row.icon,
    image_url=row.image_url,
    sent_count=row.sent_count or 0,
    failed_count=row.failed_count or 0,
  )


class BroadcastRepository(BroadcastStore):
  async def list_due(self, *, now: datetime.datetime) -> list[BroadcastJob]:
    """List scheduled broadcasts whose time has come, oldest first."""
    session_factory = get_session_factory()
    if session_factory is None:
      return []

    async with session_factory() as session:
      stmt = (
        select(BroadcastNotification)
        .where(BroadcastNotification.status == STATUS_SCHEDULED, BroadcastNotification.scheduled_at.is_not(None), BroadcastNotification.scheduled_at <= now)
        .order_by(BroadcastNotification.scheduled_at)
      )
      result = await session.execute(stmt)
      return [_to_job(row) for row in result.scalars().all()]

  async def claim(self, *, broadcast_id: str) -> bool:
    """Move scheduled -> sending; False when another dispatcher got there first."""
    return await self._transition(broadcast_id=broadcast_id, from_statuses=(STATUS_SCHEDULED,), values={"status": STATUS_SENDING})

  async def release(self, *, broadcast_id: str) -> None:
    """Move sending -> scheduled for a claimed job that was never dispatched."""
    await self._transition(broadcast_id=broadcast_id, from_statuses=(STATUS_SENDING,), values={"status": STATUS_SCHEDULED})

  async def complete(self, *, broadcast_id: str, sent: int, failed: int, completed_at: datetime.datetime) -> bool:
    """Record final counts and mark the broadcast sent; only the first call wins."""
    values = {"status": STATUS_SENT, "sent_count": sent, "failed_count": failed, "sent_at": completed_at}
    # Immediate broadcasts are never claimed, so any status short of `sent` may complete.
    return await self._transition(broadcast_id=broadcast_id, from_statuses=None, values=values)

  async def _transition(self, *, broadcast_id: str, from_statuses: tuple[str, ...] | None, values: dict) -> bool:
    parsed = _parse_id(broadcast_id)
    if parsed is None:
      return False

    session_factory = get_session_factory()
    if session_factory is None:
      return False

    async with session_factory() as session:
      return await self._transition_with_session(session=session, broadcast_id=parsed, from_statuses=from_statuses, values=values)

  async def _transition_with_session(self, *, session: AsyncSession, broadcast_id: uuid.UUID, from_statuses: tuple[str, ...] | None, values: dict) -> bool:
    stmt = update(BroadcastNotification).where(BroadcastNotification.id == broadcast_id)
    if from_statuses is None:
      stmt = stmt.where(BroadcastNotification.status != STATUS_SENT)
    else:
      stmt = stmt.where(BroadcastNotification.status.in_(from_statuses))
    result = await session.execute(stmt.values(**values).returning(BroadcastNotification.id))
    changed = result.scalar_one_or_none() is not None
    await session.commit()
    logger.debug("Broadcast transition broadcast_id=%s to=%s changed=%s", broadcast_id, values["status"], changed)
    return changed


class NullBroadcastRepository(BroadcastRepository):
  """No-op repository used when persistence is unavailable."""

  async def list_due(self, *, now: datetime.datetime) -> list[BroadcastJob]:
    return []

  async def claim(self, *, broadcast_id: str) -> bool:
    return False

  async def release(self, *, broadcast_id: str) -> None:
    return None

  async def complete(self, *, broadcast_id: str, sent: int, failed: int, completed_at: datetime.datetime) -> bool:
    logger.debug("Broadcast persistence disabled; dropping completion broadcast_id=%s sent=%d failed=%d", broadcast_id, sent, failed)
    return False
