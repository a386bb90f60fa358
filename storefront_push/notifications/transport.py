"""HTTP transport to Web Push relays."""

from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass
from http import HTTPStatus
from typing import Protocol

import httpx

from storefront_push.notifications.contracts import TransportError

logger = logging.getLogger(__name__)

# Relay answers that settle the outcome for this endpoint without implicating the relay itself.
GONE_STATUSES = frozenset({HTTPStatus.NOT_FOUND, HTTPStatus.GONE})

_RESPONSE_TEXT_LIMIT = 512


@dataclass(frozen=True)
class PushMessage:
  """Encrypted body plus the headers a relay needs to accept it."""

  endpoint: str
  body: bytes
  authorization: str
  ttl_seconds: int = 86400
  urgency: str = "high"

  def headers(self) -> dict[str, str]:
    return {
      "Content-Type": "application/octet-stream",
      "Content-Encoding": "aes128gcm",
      "Authorization": self.authorization,
      "TTL": str(self.ttl_seconds),
      "Urgency": self.urgency,
    }


class PushTransport(Protocol):
  async def send(self, message: PushMessage) -> int:
    """POST the message; return the status for 2xx/404/410 and raise `TransportError` otherwise."""
    ...


def redact_endpoint(endpoint: str) -> str:
  """Keep the relay origin and a short token prefix so logs never carry full device tokens."""
  parsed = urllib.parse.urlsplit(endpoint)
  path = parsed.path
  if len(path) > 24:
    path = f"{path[:24]}..."
  return f"{parsed.scheme}://{parsed.netloc}{path}"


class HttpxPushTransport(PushTransport):
  """`httpx`-backed relay client sharing one connection pool across sends."""

  def __init__(self, client: httpx.AsyncClient) -> None:
    self._client = client

  async def send(self, message: PushMessage) -> int:
    try:
      response = await self._client.post(message.endpoint, content=message.body, headers=message.headers())
    except httpx.RequestError as exc:
      logger.warning("Push relay request failed endpoint=%s error=%s", redact_endpoint(message.endpoint), exc)
      raise TransportError(f"Push relay unreachable: {type(exc).__name__}") from exc

    status_code = response.status_code
    if 200 <= status_code < 300 or status_code in GONE_STATUSES:
      return status_code

    response_text = response.text[:_RESPONSE_TEXT_LIMIT]
    raise TransportError(f"Push failed: {status_code} - {response_text}", status_code=status_code, response_text=response_text)
