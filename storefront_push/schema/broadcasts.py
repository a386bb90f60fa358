"""SQLAlchemy model for admin broadcasts."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column

from storefront_push.core.database import Base


class BroadcastNotification(Base):
  """Status moves scheduled -> sending -> sent; `sending` is held by exactly one dispatcher."""

  __tablename__ = "broadcast_notifications"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  title: Mapped[str] = mapped_column(Text, nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False)
  icon: Mapped[str | None] = mapped_column(Text, nullable=True, server_default="bell")
  url: Mapped[str | None] = mapped_column(Text, nullable=True)
  image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
  target_audience: Mapped[str] = mapped_column(String, nullable=False, default="all", server_default="all")
  target_user_ids: Mapped[list[uuid.UUID]] = mapped_column(ARRAY(UUID(as_uuid=True)), nullable=False, default=list, server_default="{}")
  scheduled_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending", server_default="pending", index=True)
  sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  sent_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
