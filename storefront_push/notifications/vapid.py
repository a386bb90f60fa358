"""VAPID (RFC 8292) assertions that identify this sender to push relays."""

from __future__ import annotations

import json
import time
import urllib.parse
from collections.abc import Callable
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from storefront_push.notifications.contracts import SigningError
from storefront_push.notifications.encoding import b64url_decode, b64url_encode


DEFAULT_EXPIRY_SECONDS = 12 * 60 * 60
MAX_EXPIRY_SECONDS = 24 * 60 * 60

_JWT_HEADER = {"typ": "JWT", "alg": "ES256"}
_COORDINATE_BYTES = 32


@dataclass(frozen=True)
class VapidKeyPair:
  """P-256 signing key plus the raw uncompressed public key advertised in `k=`."""

  private_key: ec.EllipticCurvePrivateKey
  public_key_b64: str

  @classmethod
  def from_base64url(cls, private_key: str, public_key: str | None = None) -> VapidKeyPair:
    """Load a raw 32-byte private scalar (or PEM) and check it against the configured public key."""
    key = _load_private_key(private_key)
    derived_public = b64url_encode(key.public_key().public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint))

    if public_key is not None:
      try:
        configured = b64url_decode(public_key)
      except ValueError as exc:
        raise SigningError("VAPID public key is not valid base64url.") from exc

      if configured != b64url_decode(derived_public):
        raise SigningError("VAPID public key does not match the private key.")

    return cls(private_key=key, public_key_b64=derived_public)

  @classmethod
  def generate(cls) -> VapidKeyPair:
    key = ec.generate_private_key(ec.SECP256R1())
    public = b64url_encode(key.public_key().public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint))
    return cls(private_key=key, public_key_b64=public)

  def private_key_b64(self) -> str:
    return b64url_encode(self.private_key.private_numbers().private_value.to_bytes(_COORDINATE_BYTES, "big"))


def _load_private_key(raw: str) -> ec.EllipticCurvePrivateKey:
  text = raw.strip()
  try:
    if text.startswith("-----BEGIN"):
      key = serialization.load_pem_private_key(text.encode("ascii"), password=None)
    else:
      scalar = b64url_decode(text)
      if len(scalar) != _COORDINATE_BYTES:
        raise SigningError(f"VAPID private key must be {_COORDINATE_BYTES} bytes, got {len(scalar)}.")
      key = ec.derive_private_key(int.from_bytes(scalar, "big"), ec.SECP256R1())
  except SigningError:
    raise
  except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
    raise SigningError(f"VAPID private key is malformed: {exc}") from exc

  if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(key.curve, ec.SECP256R1):
    raise SigningError("VAPID private key must be a P-256 EC key.")

  return key


def endpoint_audience(endpoint: str) -> str:
  """Return the scheme://host[:port] origin a token must be scoped to."""
  parsed = urllib.parse.urlsplit(endpoint)
  if not parsed.scheme or not parsed.netloc:
    raise SigningError("Push endpoint is not an absolute URL.")
  return f"{parsed.scheme}://{parsed.netloc}"


def sign_vapid_claims(endpoint: str, subject: str, key_pair: VapidKeyPair, *, expires_in: int = DEFAULT_EXPIRY_SECONDS, now: float | None = None) -> str:
  """Build and sign the `header.claims.signature` JWT for one endpoint."""
  if not 0 < expires_in <= MAX_EXPIRY_SECONDS:
    raise SigningError("VAPID expiry must be within 24 hours.")

  if not (subject.startswith("mailto:") or subject.startswith("https://")):
    raise SigningError("VAPID subject must be a mailto: or https:// contact.")

  issued_at = time.time() if now is None else now
  claims = {"aud": endpoint_audience(endpoint), "exp": int(issued_at) + expires_in, "sub": subject}

  header_b64 = b64url_encode(json.dumps(_JWT_HEADER, separators=(",", ":")).encode("utf-8"))
  claims_b64 = b64url_encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
  signing_input = f"{header_b64}.{claims_b64}".encode("ascii")

  try:
    der_signature = key_pair.private_key.sign(signing_input, ec.ECDSA(hashes.SHA256()))
  except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
    raise SigningError(f"ECDSA signing failed: {exc}") from exc

  # JWS ES256 wants the fixed-width r||s form rather than DER.
  r, s = decode_dss_signature(der_signature)
  raw_signature = r.to_bytes(_COORDINATE_BYTES, "big") + s.to_bytes(_COORDINATE_BYTES, "big")
  return f"{header_b64}.{claims_b64}.{b64url_encode(raw_signature)}"


class VapidSigner:
  """Signs per-endpoint VAPID tokens with a fixed key pair and contact subject."""

  def __init__(self, *, key_pair: VapidKeyPair, subject: str, expires_in: int = DEFAULT_EXPIRY_SECONDS, clock: Callable[[], float] = time.time) -> None:
    if not 0 < expires_in <= MAX_EXPIRY_SECONDS:
      raise SigningError("VAPID expiry must be within 24 hours.")
    self._key_pair = key_pair
    self._subject = subject
    self._expires_in = expires_in
    self._clock = clock

  @property
  def public_key(self) -> str:
    return self._key_pair.public_key_b64

  def sign(self, endpoint: str) -> str:
    return sign_vapid_claims(endpoint, self._subject, self._key_pair, expires_in=self._expires_in, now=self._clock())

  def authorization_header(self, endpoint: str) -> str:
    """Return the `vapid t=<token>, k=<publicKey>` header value for `endpoint`."""
    return f"vapid t={self.sign(endpoint)}, k={self._key_pair.public_key_b64}"
