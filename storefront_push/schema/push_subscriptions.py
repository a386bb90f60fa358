"""SQLAlchemy model for device push subscriptions and their preferences."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, Index, Integer, Text, Time, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from storefront_push.core.database import Base


class PushSubscriptionRecord(Base):
  """One browser registration; rows are keyed by endpoint."""

  __tablename__ = "push_subscriptions"
  __table_args__ = (Index("ux_push_subscriptions_endpoint", "endpoint", unique=True),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
  endpoint: Mapped[str] = mapped_column(Text, nullable=False)
  p256dh: Mapped[str] = mapped_column(Text, nullable=False)
  auth: Mapped[str] = mapped_column(Text, nullable=False)
  daily_reminders: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  profit_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  order_updates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  low_stock_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  new_order_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  delivery_updates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  promotional_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  reminder_time: Mapped[datetime.time | None] = mapped_column(Time, nullable=True, server_default="09:00:00")
  notification_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  last_notification_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
