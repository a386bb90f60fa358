"""Text for the notifications the scheduler composes itself."""

from __future__ import annotations

from dataclasses import dataclass

ADMIN_URL = "/admin"
DAILY_REMINDER_TYPE = "daily_reminder"
PROFIT_SUMMARY_TYPE = "profit_summary"


@dataclass(frozen=True)
class NotificationText:
  title: str
  body: str
  url: str
  notification_type: str


def greeting_for_hour(hour: int) -> str:
  if hour < 12:
    return "Morning"
  if hour < 17:
    return "Afternoon"
  return "Evening"


def daily_reminder(*, local_hour: int, pending_orders: int) -> NotificationText:
  return NotificationText(
    title=f"☀️ Good {greeting_for_hour(local_hour)}!",
    body=f"Time to check your shop! {pending_orders} pending orders waiting.",
    url=ADMIN_URL,
    notification_type=DAILY_REMINDER_TYPE,
  )


def profit_summary(*, revenue: float, profit: float, order_count: int) -> NotificationText:
  """Amounts are rendered in whole rupees."""
  return NotificationText(
    title="💰 Daily Profit Summary",
    body=f"Today: ₹{revenue:.0f} revenue, ₹{profit:.0f} profit from {order_count} orders!",
    url=ADMIN_URL,
    notification_type=PROFIT_SUMMARY_TYPE,
  )
