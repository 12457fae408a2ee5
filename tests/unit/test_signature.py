"""
Unit tests for webhook signature computation and verification.
"""

import base64
import hashlib
import hmac

import pytest

from app.modules.webhooks.signature import (
    UnsupportedAlgorithmError,
    compute_signature,
    extract_signature,
    verify_signature,
)

SECRET = "whsec_test_123"
BODY = b'{"event":"call.completed","call_id":"CA123"}'


class TestExtractSignature:
    """Tests for locating the signature header."""

    def test_header_priority(self):
        headers = {
            "X-Twilio-Signature": "twilio",
            "X-Signature": "primary",
            "X-Hub-Signature-256": "hub",
        }
        assert extract_signature(headers) == "primary"

    def test_empty_header_skipped(self):
        headers = {"x-signature": "", "x-webhook-signature": "second"}
        assert extract_signature(headers) == "second"

    def test_bearer_prefix_stripped(self):
        assert extract_signature({"Authorization": "Bearer abc123"}) == "abc123"

    def test_no_signature(self):
        assert extract_signature({"content-type": "application/json"}) is None


class TestComputeSignature:
    """Tests for expected-signature computation."""

    def test_hmac_sha256_hex(self):
        expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
        assert compute_signature(BODY, SECRET, "hmac_sha256") == expected

    def test_hmac_sha1_hex(self):
        expected = hmac.new(SECRET.encode(), BODY, hashlib.sha1).hexdigest()
        assert compute_signature(BODY, SECRET, "hmac_sha1") == expected

    def test_twilio_signs_url_then_body(self):
        headers = {"X-Forwarded-Url": "https://api.example.com/webhooks/twilio/voice"}
        mac = hmac.new(
            SECRET.encode(),
            b"https://api.example.com/webhooks/twilio/voice" + BODY,
            hashlib.sha1,
        )
        expected = base64.b64encode(mac.digest()).decode()

        assert compute_signature(BODY, SECRET, "twilio", headers) == expected

    def test_twilio_falls_back_to_host(self):
        with_host = compute_signature(BODY, SECRET, "twilio", {"Host": "api.example.com"})
        with_url = compute_signature(BODY, SECRET, "twilio", {"X-Forwarded-Url": "api.example.com"})
        assert with_host == with_url

    def test_str_body_matches_bytes_body(self):
        assert compute_signature(BODY.decode(), SECRET, "hmac_sha256") == compute_signature(
            BODY, SECRET, "hmac_sha256"
        )

    def test_unknown_algorithm_raises(self):
        with pytest.raises(UnsupportedAlgorithmError):
            compute_signature(BODY, SECRET, "md5")


class TestVerifySignature:
    """Tests for constant-time signature verification."""

    def test_plain_hex_verifies(self):
        sig = compute_signature(BODY, SECRET, "hmac_sha256")
        assert verify_signature(BODY, sig, SECRET, "hmac_sha256") is True

    @pytest.mark.parametrize("algorithm,prefix", [
        ("hmac_sha256", "sha256"),
        ("hmac_sha1", "sha1"),
    ])
    def test_prefixed_forms_verify(self, algorithm, prefix):
        sig = compute_signature(BODY, SECRET, algorithm)
        assert verify_signature(BODY, f"{prefix}={sig}", SECRET, algorithm) is True
        assert verify_signature(BODY, f"{prefix}:{sig}", SECRET, algorithm) is True

    def test_wrong_prefix_rejected(self):
        sig = compute_signature(BODY, SECRET, "hmac_sha256")
        assert verify_signature(BODY, f"sha1={sig}", SECRET, "hmac_sha256") is False

    def test_tampered_body_rejected(self):
        sig = compute_signature(BODY, SECRET, "hmac_sha256")
        tampered = BODY.replace(b"CA123", b"CA999")
        assert verify_signature(tampered, sig, SECRET, "hmac_sha256") is False

    def test_wrong_secret_rejected(self):
        sig = compute_signature(BODY, "other-secret", "hmac_sha256")
        assert verify_signature(BODY, sig, SECRET, "hmac_sha256") is False

    def test_twilio_requires_exact_match(self):
        headers = {"Host": "api.example.com"}
        sig = compute_signature(BODY, SECRET, "twilio", headers)
        assert verify_signature(BODY, sig, SECRET, "twilio", headers) is True
        assert verify_signature(BODY, f"sha1={sig}", SECRET, "twilio", headers) is False

    def test_unsupported_algorithm_never_verifies(self):
        assert verify_signature(BODY, "anything", SECRET, "md5") is False

    def test_missing_signature_or_secret(self):
        assert verify_signature(BODY, None, SECRET, "hmac_sha256") is False
        assert verify_signature(BODY, "", SECRET, "hmac_sha256") is False
        assert verify_signature(BODY, "abc", "", "hmac_sha256") is False

    def test_non_ascii_signature_rejected(self):
        assert verify_signature(BODY, "sïgnature", SECRET, "hmac_sha256") is False
