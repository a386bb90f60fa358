from __future__ import annotations

import struct

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from storefront_push.notifications import encryption
from storefront_push.notifications.contracts import EncryptionError
from storefront_push.notifications.encoding import b64url_decode, b64url_encode
from storefront_push.notifications.encryption import RECORD_SIZE, MessageEncryptor, decrypt

# RFC 8291 Appendix A.
RFC_SENDER_PRIVATE = "yfWPiYE-n46HLnH0KqZOF1fJJU3MYrct3AELtAQ-oRw"
RFC_RECEIVER_PUBLIC = "BCVxsr7N_eNgVRqvHtD0zTZsEc6-VV-JvLexhqUzORcxaOzi6-AYWXvTBHm4bjyPjs7Vd8pZGH6SRpkNtoIAiw4"
RFC_AUTH_SECRET = "BTBZMqHH6r4Tts7J_aSIgg"
RFC_SALT = "DGv6ra1nlYgDCS1FRnbzlw"
RFC_MESSAGE = (
  "DGv6ra1nlYgDCS1FRnbzlwAAEABBBP4z9KsN6nGRTbVYI_c7VJSPQTBtkgcy27mlmlMoZIIgDll6e3vCYLocInmYWAmS6TlzAC8wEqKK6PBru3jl7A_yl95bQpu6cVPTpK4Mqgkf1CXztLVBSt2Ks3oZwbuwXPXLWyouBWLVWGNWQexSgSxsj_Qulcy4a-fN"
)


def test_encrypt_then_decrypt_round_trips(subscriber_key):
  private_key, p256dh, auth = subscriber_key
  plaintext = '{"title":"Order #42 shipped","body":"On its way ☀️"}'.encode()

  message = MessageEncryptor().encrypt(plaintext, p256dh, auth)

  assert decrypt(message, private_key, auth) == plaintext


def test_matches_the_published_aes128gcm_vector(monkeypatch):
  sender_key = ec.derive_private_key(int.from_bytes(b64url_decode(RFC_SENDER_PRIVATE), "big"), ec.SECP256R1())
  salt = b64url_decode(RFC_SALT)
  # Pin the ephemeral key and salt so the output is deterministic.
  monkeypatch.setattr(encryption.ec, "generate_private_key", lambda curve: sender_key)
  monkeypatch.setattr(encryption.os, "urandom", lambda size: salt)

  message = MessageEncryptor().encrypt(b"When I grow up, I want to be a watermelon", RFC_RECEIVER_PUBLIC, RFC_AUTH_SECRET)

  assert b64url_encode(message) == RFC_MESSAGE


def test_header_layout(subscriber_key):
  _, p256dh, auth = subscriber_key
  message = MessageEncryptor().encrypt(b"hello", p256dh, auth)

  salt, record_size, key_length = struct.unpack_from("!16sIB", message)
  sender_key = message[21 : 21 + key_length]

  assert len(salt) == 16
  assert record_size == RECORD_SIZE
  assert key_length == 65
  assert sender_key[0] == 0x04
  # ciphertext = plaintext + delimiter + 16-byte tag
  assert len(message) == 21 + 65 + len(b"hello") + 1 + 16


def test_same_plaintext_encrypts_differently(subscriber_key):
  _, p256dh, auth = subscriber_key
  encryptor = MessageEncryptor()

  first = encryptor.encrypt(b"same", p256dh, auth)
  second = encryptor.encrypt(b"same", p256dh, auth)

  assert first != second
  assert first[:16] != second[:16]
  assert first[21:86] != second[21:86]


def test_wrong_auth_secret_fails_authentication(subscriber_key):
  private_key, p256dh, auth = subscriber_key
  message = MessageEncryptor().encrypt(b"secret", p256dh, auth)

  with pytest.raises(EncryptionError):
    decrypt(message, private_key, b64url_encode(b"\x00" * 16))


def test_rejects_truncated_public_key(subscriber_key):
  _, p256dh, auth = subscriber_key
  truncated = b64url_encode(b64url_decode(p256dh)[:33])
  with pytest.raises(EncryptionError, match="65-byte"):
    MessageEncryptor().encrypt(b"x", truncated, auth)


def test_rejects_point_off_curve(subscriber_key):
  _, _, auth = subscriber_key
  bogus = b64url_encode(b"\x04" + b"\x01" * 64)
  with pytest.raises(EncryptionError):
    MessageEncryptor().encrypt(b"x", bogus, auth)


def test_rejects_short_auth_secret(subscriber_key):
  _, p256dh, _ = subscriber_key
  with pytest.raises(EncryptionError, match="auth secret"):
    MessageEncryptor().encrypt(b"x", p256dh, b64url_encode(b"short"))


def test_rejects_payload_larger_than_one_record(subscriber_key):
  _, p256dh, auth = subscriber_key
  encryptor = MessageEncryptor()
  with pytest.raises(EncryptionError, match="record limit"):
    encryptor.encrypt(b"a" * (encryptor.max_plaintext_bytes + 1), p256dh, auth)
