"""Aggregates over storefront orders and expenses used by scheduled summaries."""

from __future__ import annotations

import datetime

from sqlalchemy import Text, cast, func, select

from storefront_push.core.database import get_session_factory
from storefront_push.notifications.contracts import StoreStats
from storefront_push.schema.commerce import Expense, Order


class StoreStatsRepository(StoreStats):
  async def delivered_revenue_since(self, start: datetime.datetime) -> tuple[float, int]:
    """Return (revenue, order count) for delivered orders created at or after `start`."""
    session_factory = get_session_factory()
    if session_factory is None:
      return 0.0, 0

    async with session_factory() as session:
      stmt = select(func.coalesce(func.sum(Order.total_amount), 0), func.count(Order.id)).where(Order.created_at >= start, cast(Order.status, Text) == "delivered")
      revenue, order_count = (await session.execute(stmt)).one()
      return float(revenue), int(order_count)

  async def expenses_since(self, day: datetime.date) -> float:
    """Sum expenses dated on or after `day`."""
    session_factory = get_session_factory()
    if session_factory is None:
      return 0.0

    async with session_factory() as session:
      stmt = select(func.coalesce(func.sum(Expense.amount), 0)).where(Expense.date >= day)
      return float((await session.execute(stmt)).scalar_one())

  async def count_pending_orders(self) -> int:
    """Count orders still waiting to be accepted."""
    session_factory = get_session_factory()
    if session_factory is None:
      return 0

    async with session_factory() as session:
      # Order status is a storefront-owned enum; compare its text form.
      stmt = select(func.count(Order.id)).where(cast(Order.status, Text) == "pending")
      return int((await session.execute(stmt)).scalar_one())


class NullStoreStatsRepository(StoreStatsRepository):
  """Reports an empty shop when persistence is unavailable."""

  async def delivered_revenue_since(self, start: datetime.datetime) -> tuple[float, int]:
    return 0.0, 0

  async def expenses_since(self, day: datetime.date) -> float:
    return 0.0

  async def count_pending_orders(self) -> int:
    return 0
