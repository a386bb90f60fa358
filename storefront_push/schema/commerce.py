"""Read-only mappings of the storefront tables the scheduler aggregates over."""

from __future__ import annotations

import datetime
import decimal
import uuid

from sqlalchemy import Date, DateTime, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from storefront_push.core.database import Base


class UserRole(Base):
  __tablename__ = "user_roles"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
  # Postgres enum owned by the storefront; compare through a text cast.
  role: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Order(Base):
  __tablename__ = "orders"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
  total_amount: Mapped[decimal.Decimal] = mapped_column(Numeric(10, 2), nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Expense(Base):
  __tablename__ = "expenses"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  amount: Mapped[decimal.Decimal] = mapped_column(Numeric(10, 2), nullable=False)
  date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
