"""SQLAlchemy model for queued notifications and per-device delivery outcomes."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from storefront_push.core.database import Base


class NotificationLog(Base):
  """Storefront triggers insert `pending` rows; the engine appends `sent`/`failed` outcome rows."""

  __tablename__ = "notification_logs"
  __table_args__ = (Index("ix_notification_logs_status_created_at", "status", "created_at"),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True, nullable=True)
  title: Mapped[str] = mapped_column(Text, nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False)
  icon: Mapped[str | None] = mapped_column(Text, nullable=True)
  url: Mapped[str | None] = mapped_column(Text, nullable=True)
  image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
  notification_type: Mapped[str] = mapped_column(String, nullable=False)
  reference_type: Mapped[str | None] = mapped_column(String, nullable=True)
  reference_id: Mapped[str | None] = mapped_column(Text, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending", server_default="pending")
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  sent_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  broadcast_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("broadcast_notifications.id", ondelete="SET NULL"), nullable=True)
