"""Web Push message encryption (RFC 8291) using the aes128gcm content coding (RFC 8188).

The output is a single record:

  salt (16) | record size (uint32 BE) | key id length (1) | sender public key (65) | ciphertext + tag

Every call uses a fresh ephemeral key pair and a fresh salt, so encrypting the
same plaintext twice never yields the same bytes.
"""

from __future__ import annotations

import os
import struct

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from storefront_push.notifications.contracts import EncryptionError
from storefront_push.notifications.encoding import b64url_decode

RECORD_SIZE = 4096
SALT_BYTES = 16
AUTH_SECRET_BYTES = 16
PUBLIC_KEY_BYTES = 65
TAG_BYTES = 16
KEY_BYTES = 16
NONCE_BYTES = 12

_KEY_INFO_PREFIX = b"WebPush: info\x00"
_CEK_INFO = b"Content-Encoding: aes128gcm\x00"
_NONCE_INFO = b"Content-Encoding: nonce\x00"
# Padding delimiter for the final (and only) record.
_LAST_RECORD_DELIMITER = b"\x02"
_HEADER = struct.Struct("!16sIB")


def _hkdf(*, salt: bytes, ikm: bytes, info: bytes, length: int) -> bytes:
  return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(ikm)


def _public_bytes(key: ec.EllipticCurvePublicKey) -> bytes:
  return key.public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint)


def _load_subscriber_key(raw: bytes) -> ec.EllipticCurvePublicKey:
  if len(raw) != PUBLIC_KEY_BYTES or raw[0] != 0x04:
    raise EncryptionError(f"Subscriber public key must be a {PUBLIC_KEY_BYTES}-byte uncompressed P-256 point, got {len(raw)} bytes.")
  try:
    return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), raw)
  except ValueError as exc:
    raise EncryptionError("Subscriber public key is not a point on P-256.") from exc


def _decode_key_material(p256dh: str | bytes, auth: str | bytes) -> tuple[bytes, bytes]:
  try:
    receiver_public = p256dh if isinstance(p256dh, bytes) else b64url_decode(p256dh)
    auth_secret = auth if isinstance(auth, bytes) else b64url_decode(auth)
  except ValueError as exc:
    raise EncryptionError(f"Subscription key material is not valid base64url: {exc}") from exc

  if len(auth_secret) != AUTH_SECRET_BYTES:
    raise EncryptionError(f"Subscriber auth secret must be {AUTH_SECRET_BYTES} bytes, got {len(auth_secret)}.")

  return receiver_public, auth_secret


def _derive_key_and_nonce(*, shared_secret: bytes, auth_secret: bytes, receiver_public: bytes, sender_public: bytes, salt: bytes) -> tuple[bytes, bytes]:
  # Mix the auth secret and both public keys into the ECDH output before keying the record.
  ikm = _hkdf(salt=auth_secret, ikm=shared_secret, info=_KEY_INFO_PREFIX + receiver_public + sender_public, length=32)
  content_key = _hkdf(salt=salt, ikm=ikm, info=_CEK_INFO, length=KEY_BYTES)
  nonce = _hkdf(salt=salt, ikm=ikm, info=_NONCE_INFO, length=NONCE_BYTES)
  return content_key, nonce


class MessageEncryptor:
  """Encrypts notification payloads for a single subscriber."""

  def __init__(self, *, record_size: int = RECORD_SIZE) -> None:
    self._record_size = record_size

  @property
  def max_plaintext_bytes(self) -> int:
    return self._record_size - TAG_BYTES - len(_LAST_RECORD_DELIMITER)

  def encrypt(self, plaintext: bytes, subscriber_public_key: str | bytes, subscriber_auth_secret: str | bytes) -> bytes:
    if len(plaintext) > self.max_plaintext_bytes:
      raise EncryptionError(f"Payload of {len(plaintext)} bytes exceeds the {self.max_plaintext_bytes}-byte record limit.")

    receiver_public, auth_secret = _decode_key_material(subscriber_public_key, subscriber_auth_secret)
    receiver_key = _load_subscriber_key(receiver_public)

    ephemeral_key = ec.generate_private_key(ec.SECP256R1())
    sender_public = _public_bytes(ephemeral_key.public_key())
    try:
      shared_secret = ephemeral_key.exchange(ec.ECDH(), receiver_key)
    except ValueError as exc:
      raise EncryptionError(f"ECDH key agreement failed: {exc}") from exc

    salt = os.urandom(SALT_BYTES)
    content_key, nonce = _derive_key_and_nonce(shared_secret=shared_secret, auth_secret=auth_secret, receiver_public=receiver_public, sender_public=sender_public, salt=salt)
    ciphertext = AESGCM(content_key).encrypt(nonce, plaintext + _LAST_RECORD_DELIMITER, None)

    return _HEADER.pack(salt, self._record_size, len(sender_public)) + sender_public + ciphertext


def decrypt(message: bytes, receiver_private_key: ec.EllipticCurvePrivateKey, auth_secret: str | bytes) -> bytes:
  """Invert `MessageEncryptor.encrypt` for the holder of the subscription's private key."""
  if len(message) < _HEADER.size:
    raise EncryptionError("Encrypted message is shorter than the aes128gcm header.")

  salt, _record_size, key_id_length = _HEADER.unpack_from(message)
  key_end = _HEADER.size + key_id_length
  sender_public = message[_HEADER.size : key_end]
  ciphertext = message[key_end:]

  receiver_public = _public_bytes(receiver_private_key.public_key())
  _, secret = _decode_key_material(receiver_public, auth_secret)
  sender_key = _load_subscriber_key(sender_public)
  shared_secret = receiver_private_key.exchange(ec.ECDH(), sender_key)
  content_key, nonce = _derive_key_and_nonce(shared_secret=shared_secret, auth_secret=secret, receiver_public=receiver_public, sender_public=sender_public, salt=salt)

  try:
    padded = AESGCM(content_key).decrypt(nonce, ciphertext, None)
  except InvalidTag as exc:
    raise EncryptionError("Encrypted message failed authentication.") from exc

  unpadded = padded.rstrip(b"\x00")
  if not unpadded.endswith(_LAST_RECORD_DELIMITER):
    raise EncryptionError("Encrypted message is missing the final-record delimiter.")
  return unpadded[: -len(_LAST_RECORD_DELIMITER)]
