from __future__ import annotations

import json

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from storefront_push.notifications.contracts import SigningError
from storefront_push.notifications.encoding import b64url_decode
from storefront_push.notifications.vapid import VapidKeyPair, VapidSigner, endpoint_audience, sign_vapid_claims


def _segments(token: str) -> tuple[dict, dict, bytes, bytes]:
  header_b64, claims_b64, signature_b64 = token.split(".")
  header = json.loads(b64url_decode(header_b64))
  claims = json.loads(b64url_decode(claims_b64))
  return header, claims, f"{header_b64}.{claims_b64}".encode("ascii"), b64url_decode(signature_b64)


def test_token_carries_audience_expiry_and_subject(vapid_signer):
  token = vapid_signer.sign("https://fcm.googleapis.com/fcm/send/device-token")
  header, claims, _, signature = _segments(token)

  assert header == {"typ": "JWT", "alg": "ES256"}
  assert list(claims) == ["aud", "exp", "sub"]
  assert claims["aud"] == "https://fcm.googleapis.com"
  assert claims["exp"] == 1_700_000_000 + 12 * 60 * 60
  assert claims["sub"] == "mailto:ops@example.com"
  assert len(signature) == 64


def test_signature_verifies_with_public_key(vapid_key_pair, vapid_signer):
  _, _, signing_input, signature = _segments(vapid_signer.sign("https://updates.push.services.mozilla.com/wpush/v2/abc"))
  der = encode_dss_signature(int.from_bytes(signature[:32], "big"), int.from_bytes(signature[32:], "big"))

  public_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), b64url_decode(vapid_key_pair.public_key_b64))
  public_key.verify(der, signing_input, ec.ECDSA(hashes.SHA256()))


def test_authorization_header_format(vapid_key_pair, vapid_signer):
  header = vapid_signer.authorization_header("https://web.push.apple.com/QOx1")
  assert header.startswith("vapid t=")
  assert header.endswith(f", k={vapid_key_pair.public_key_b64}")


def test_key_pair_round_trips_through_base64url(vapid_key_pair):
  loaded = VapidKeyPair.from_base64url(vapid_key_pair.private_key_b64(), vapid_key_pair.public_key_b64)
  assert loaded.public_key_b64 == vapid_key_pair.public_key_b64


def test_mismatched_public_key_is_rejected(vapid_key_pair):
  other = VapidKeyPair.generate()
  with pytest.raises(SigningError, match="does not match"):
    VapidKeyPair.from_base64url(vapid_key_pair.private_key_b64(), other.public_key_b64)


@pytest.mark.parametrize("private_key", ["", "c2hvcnQ", "!!!not-base64!!!"])
def test_malformed_private_key_is_rejected(private_key):
  with pytest.raises(SigningError):
    VapidKeyPair.from_base64url(private_key)


def test_expiry_longer_than_a_day_is_rejected(vapid_key_pair):
  with pytest.raises(SigningError):
    sign_vapid_claims("https://fcm.googleapis.com/x", "mailto:ops@example.com", vapid_key_pair, expires_in=24 * 60 * 60 + 1)
  with pytest.raises(SigningError):
    VapidSigner(key_pair=vapid_key_pair, subject="mailto:ops@example.com", expires_in=0)


def test_subject_must_be_contact_uri(vapid_key_pair):
  with pytest.raises(SigningError):
    sign_vapid_claims("https://fcm.googleapis.com/x", "ops@example.com", vapid_key_pair)


def test_audience_keeps_port_and_rejects_relative_endpoints():
  assert endpoint_audience("https://push.example.com:8443/send/abc?x=1") == "https://push.example.com:8443"
  with pytest.raises(SigningError):
    endpoint_audience("/relative/path")
