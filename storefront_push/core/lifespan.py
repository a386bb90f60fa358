import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import httpx
from fastapi import FastAPI

from storefront_push.config import get_settings
from storefront_push.core.database import dispose_engine
from storefront_push.core.logging import initialize_logging
from storefront_push.notifications.factory import build_circuit_registry, build_delivery_service, build_repositories, build_scheduler

logger = logging.getLogger(__name__)

_RELAY_TIMEOUT = httpx.Timeout(15.0, connect=5.0)
_RELAY_LIMITS = httpx.Limits(max_connections=100, max_keepalive_connections=20)


def _redact_dsn(raw: str | None) -> str:
  """Strip credentials from a DSN while keeping host and database visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{parsed.username}@{host}{port}" if parsed.username else f"{host}{port}"
  database = parsed.path.lstrip("/")
  return f"{parsed.scheme}://{netloc}/{database}" if database else f"{parsed.scheme}://{netloc}"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Build the delivery engine once per process and tear it down on shutdown."""
  settings = get_settings()
  try:
    initialize_logging(settings)
  except RuntimeError:
    logger.warning("File logging setup failed; continuing with default handlers.", exc_info=True)

  client = httpx.AsyncClient(timeout=_RELAY_TIMEOUT, limits=_RELAY_LIMITS)
  breakers = build_circuit_registry(settings)
  repositories = build_repositories(settings)
  delivery = build_delivery_service(settings, client=client, breakers=breakers, repositories=repositories)

  app.state.http_client = client
  app.state.circuit_breakers = breakers
  app.state.delivery_service = delivery
  app.state.scheduler = build_scheduler(settings, delivery=delivery, repositories=repositories)
  logger.info("Startup complete environment=%s push_enabled=%s database=%s", settings.environment, settings.push_enabled, _redact_dsn(settings.pg_dsn))

  try:
    yield
  finally:
    await client.aclose()
    await dispose_engine()
    logger.info("Shutdown complete")
