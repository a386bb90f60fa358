"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from storefront_push.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_MAX_VAPID_EXPIRY_SECONDS = 24 * 60 * 60
_PUSH_URGENCIES = {"very-low", "low", "normal", "high"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the push delivery engine."""

  environment: str
  debug: bool
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  pg_dsn: str | None
  pg_connect_timeout: int
  push_enabled: bool
  vapid_public_key: str | None
  vapid_private_key: str | None
  vapid_subject: str
  vapid_expiry_seconds: int
  push_ttl_seconds: int
  push_urgency: str
  push_max_concurrency: int
  circuit_failure_threshold: int
  circuit_recovery_timeout_seconds: float
  circuit_success_threshold: int
  circuit_call_timeout_seconds: float
  timezone: str
  reminder_window_minutes: int
  profit_summary_hour: int
  pending_batch_size: int
  task_secret: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("STOREFRONT_ENV", "development").lower()
  debug = _parse_bool(os.getenv("STOREFRONT_DEBUG"))

  log_max_bytes = _positive_int("STOREFRONT_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("STOREFRONT_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("STOREFRONT_LOG_BACKUP_COUNT must be zero or a positive integer.")

  push_enabled = _parse_bool(os.getenv("STOREFRONT_PUSH_ENABLED"))
  vapid_public_key = _optional_str(os.getenv("STOREFRONT_VAPID_PUBLIC_KEY"))
  vapid_private_key = _optional_str(os.getenv("STOREFRONT_VAPID_PRIVATE_KEY"))
  vapid_subject = _optional_str(os.getenv("STOREFRONT_VAPID_SUBJECT")) or "mailto:admin@premasshop.com"

  # Validate VAPID material only when delivery is switched on.
  if push_enabled:
    if not vapid_public_key:
      raise ValueError("STOREFRONT_VAPID_PUBLIC_KEY must be set when push is enabled.")

    if not vapid_private_key:
      raise ValueError("STOREFRONT_VAPID_PRIVATE_KEY must be set when push is enabled.")

  if not (vapid_subject.startswith("mailto:") or vapid_subject.startswith("https://")):
    raise ValueError("STOREFRONT_VAPID_SUBJECT must start with 'mailto:' or 'https://'.")

  # Push services reject VAPID tokens that live longer than a day.
  vapid_expiry_seconds = _positive_int("STOREFRONT_VAPID_EXPIRY_SECONDS", "43200")
  if vapid_expiry_seconds > _MAX_VAPID_EXPIRY_SECONDS:
    raise ValueError("STOREFRONT_VAPID_EXPIRY_SECONDS must not exceed 86400.")

  push_urgency = (os.getenv("STOREFRONT_PUSH_URGENCY") or "high").strip().lower()
  if push_urgency not in _PUSH_URGENCIES:
    raise ValueError("STOREFRONT_PUSH_URGENCY must be one of very-low, low, normal, high.")

  timezone = (os.getenv("STOREFRONT_TIMEZONE") or "Asia/Kolkata").strip()
  try:
    ZoneInfo(timezone)
  except (ZoneInfoNotFoundError, ValueError) as exc:
    raise ValueError(f"STOREFRONT_TIMEZONE is not a known timezone: {timezone}") from exc

  profit_summary_hour = int(os.getenv("STOREFRONT_PROFIT_SUMMARY_HOUR", "21"))
  if not 0 <= profit_summary_hour <= 23:
    raise ValueError("STOREFRONT_PROFIT_SUMMARY_HOUR must be between 0 and 23.")

  reminder_window_minutes = int(os.getenv("STOREFRONT_REMINDER_WINDOW_MINUTES", "5"))
  if not 0 <= reminder_window_minutes < 720:
    raise ValueError("STOREFRONT_REMINDER_WINDOW_MINUTES must be between 0 and 719.")

  return Settings(
    environment=environment,
    debug=debug,
    log_dir=(os.getenv("STOREFRONT_LOG_DIR") or "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    pg_dsn=os.getenv("STOREFRONT_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("STOREFRONT_PG_CONNECT_TIMEOUT", "5"),
    push_enabled=push_enabled,
    vapid_public_key=vapid_public_key,
    vapid_private_key=vapid_private_key,
    vapid_subject=vapid_subject,
    vapid_expiry_seconds=vapid_expiry_seconds,
    push_ttl_seconds=_positive_int("STOREFRONT_PUSH_TTL_SECONDS", "86400"),
    push_urgency=push_urgency,
    push_max_concurrency=_positive_int("STOREFRONT_PUSH_MAX_CONCURRENCY", "50"),
    circuit_failure_threshold=_positive_int("STOREFRONT_CIRCUIT_FAILURE_THRESHOLD", "5"),
    circuit_recovery_timeout_seconds=_positive_float("STOREFRONT_CIRCUIT_RECOVERY_TIMEOUT_SECONDS", "30"),
    circuit_success_threshold=_positive_int("STOREFRONT_CIRCUIT_SUCCESS_THRESHOLD", "2"),
    circuit_call_timeout_seconds=_positive_float("STOREFRONT_CIRCUIT_CALL_TIMEOUT_SECONDS", "10"),
    timezone=timezone,
    reminder_window_minutes=reminder_window_minutes,
    profit_summary_hour=profit_summary_hour,
    pending_batch_size=_positive_int("STOREFRONT_PENDING_BATCH_SIZE", "100"),
    task_secret=_optional_str(os.getenv("STOREFRONT_TASK_SECRET")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring push or scheduler configuration."""
  # Keep database configuration isolated so offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("STOREFRONT_DEBUG"))
  pg_connect_timeout = _positive_int("STOREFRONT_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("STOREFRONT_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
