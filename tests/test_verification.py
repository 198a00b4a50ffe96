"""Tests for webhook signature verification.

Tests:
- Round trip: a computed signature always validates
- Single-byte tampering of the signature always fails
- Prefix handling (sha256= required, fail-closed otherwise)
- Unconfigured secret fails closed
"""

from __future__ import annotations

import hashlib
import hmac

from hypothesis import given, settings
from hypothesis import strategies as st

from statusbot.webhooks.verification import (
    SIGNATURE_HEADER,
    compute_signature,
    validate_signature,
    verify_webhook,
)

SECRET = "webhook-test-secret"


class TestComputeSignature:
    def test_matches_hmac_sha256_hex(self):
        body = b'{"type": "deploy", "source": "ci"}'
        expected = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()
        assert compute_signature(body, SECRET) == expected

    def test_str_and_bytes_agree(self):
        assert compute_signature('{"a": 1}', SECRET) == compute_signature(b'{"a": 1}', SECRET)

    def test_different_secrets_differ(self):
        assert compute_signature(b"body", "a") != compute_signature(b"body", "b")


class TestValidateSignature:
    @settings(max_examples=200)
    @given(body=st.binary(), secret=st.text(min_size=1))
    def test_round_trip_always_validates(self, body, secret):
        header = "sha256=" + compute_signature(body, secret)
        assert validate_signature(body, header, secret) is True

    @settings(max_examples=200)
    @given(
        body=st.binary(),
        secret=st.text(min_size=1),
        position=st.integers(min_value=0, max_value=63),
        replacement=st.sampled_from("0123456789abcdef"),
    )
    def test_single_byte_change_fails(self, body, secret, position, replacement):
        digest = compute_signature(body, secret)
        if digest[position] == replacement:
            replacement = "0" if replacement != "0" else "1"
        tampered = digest[:position] + replacement + digest[position + 1 :]
        assert validate_signature(body, "sha256=" + tampered, secret) is False

    @given(body=st.binary(), secret=st.text(min_size=1))
    def test_missing_prefix_fails_even_with_correct_digest(self, body, secret):
        assert validate_signature(body, compute_signature(body, secret), secret) is False

    def test_wrong_prefix_fails(self):
        body = b"payload"
        digest = compute_signature(body, SECRET)
        assert validate_signature(body, "sha1=" + digest, SECRET) is False
        assert validate_signature(body, "SHA256=" + digest, SECRET) is False

    def test_tampered_body(self):
        header = "sha256=" + compute_signature(b'{"id": 1}', SECRET)
        assert validate_signature(b'{"id": 2}', header, SECRET) is False

    def test_missing_header(self):
        assert validate_signature(b"body", None, SECRET) is False
        assert validate_signature(b"body", "", SECRET) is False

    def test_empty_secret_rejects(self):
        """No secret configured -> always reject (fail-closed)."""
        header = "sha256=" + compute_signature(b"body", "")
        assert validate_signature(b"body", header, "") is False

    def test_truncated_digest_fails(self):
        digest = compute_signature(b"body", SECRET)
        assert validate_signature(b"body", "sha256=" + digest[:-2], SECRET) is False


class TestVerifyWebhook:
    def test_header_lookup_is_case_insensitive(self):
        body = b'{"type": "ping"}'
        headers = {"X-Webhook-Signature": "sha256=" + compute_signature(body, SECRET)}
        assert verify_webhook(body, headers, SECRET) is True

    def test_missing_header(self):
        assert verify_webhook(b"body", {}, SECRET) is False

    def test_unconfigured_secret_rejects(self, caplog):
        body = b"body"
        headers = {SIGNATURE_HEADER: "sha256=" + compute_signature(body, "")}
        assert verify_webhook(body, headers, "") is False
        assert "WEBHOOK_SECRET not set" in caplog.text
