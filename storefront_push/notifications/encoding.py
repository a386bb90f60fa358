"""Unpadded base64url helpers used by VAPID and subscription keys."""

from __future__ import annotations

import base64
import binascii


def b64url_encode(raw: bytes) -> str:
  return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
  """Decode base64url (or standard base64) text with or without padding."""
  normalized = value.strip().replace("+", "-").replace("/", "_").rstrip("=")
  padding = "=" * (-len(normalized) % 4)
  try:
    return base64.urlsafe_b64decode(normalized + padding)
  except (binascii.Error, ValueError) as exc:
    raise ValueError("Value is not valid base64url.") from exc
