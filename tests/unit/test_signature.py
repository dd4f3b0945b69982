"""Tests for outbound request signing and receiver-side verification."""

import hashlib
import hmac
import time

from relay_engine.signing.signature import (
    SECRET_PREFIX,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_digest,
    generate_secret,
    sign,
    signature_headers,
    verify,
)

SECRET = "whsec_test-secret-for-signing"
BODY = '{"id":"evt_1","type":"purchase.created"}'
TS = 1_700_000_000


class TestGenerateSecret:
    def test_prefix(self):
        assert generate_secret().startswith(SECRET_PREFIX)

    def test_length(self):
        # 32 bytes of token_urlsafe is 43 characters.
        assert len(generate_secret()) == len(SECRET_PREFIX) + 43

    def test_unique(self):
        secrets = {generate_secret() for _ in range(50)}
        assert len(secrets) == 50


class TestSign:
    def test_format(self):
        sig = sign(SECRET, TS, BODY)
        algorithm, _, digest = sig.partition("=")
        assert algorithm == "sha256"
        assert len(digest) == 64

    def test_matches_manual_hmac(self):
        expected = hmac.new(
            SECRET.encode("utf-8"),
            f"{TS}.{BODY}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        assert sign(SECRET, TS, BODY) == f"sha256={expected}"

    def test_str_and_bytes_body_agree(self):
        assert sign(SECRET, TS, BODY) == sign(SECRET, TS, BODY.encode("utf-8"))

    def test_deterministic(self):
        assert compute_digest(SECRET, TS, BODY) == compute_digest(SECRET, TS, BODY)

    def test_timestamp_is_signed(self):
        assert sign(SECRET, TS, BODY) != sign(SECRET, TS + 1, BODY)

    def test_body_is_signed(self):
        assert sign(SECRET, TS, BODY) != sign(SECRET, TS, BODY + " ")

    def test_secret_is_signed(self):
        assert sign(SECRET, TS, BODY) != sign(SECRET + "x", TS, BODY)

    def test_headers(self):
        headers = signature_headers(SECRET, BODY, TS)
        assert headers[TIMESTAMP_HEADER] == str(TS)
        assert headers[SIGNATURE_HEADER] == sign(SECRET, TS, BODY)

    def test_headers_default_timestamp_is_now(self):
        before = int(time.time())
        headers = signature_headers(SECRET, BODY)
        assert before <= int(headers[TIMESTAMP_HEADER]) <= int(time.time())


class TestVerify:
    def test_valid(self):
        sig = sign(SECRET, TS, BODY)
        assert verify(SECRET, TS, BODY, sig, now=TS + 10) is True

    def test_timestamp_as_header_string(self):
        sig = sign(SECRET, TS, BODY)
        assert verify(SECRET, str(TS), BODY, sig, now=TS) is True

    def test_wrong_secret(self):
        sig = sign(SECRET, TS, BODY)
        assert verify("whsec_other", TS, BODY, sig, now=TS) is False

    def test_tampered_body(self):
        sig = sign(SECRET, TS, BODY)
        assert verify(SECRET, TS, BODY.replace("1", "2"), sig, now=TS) is False

    def test_replayed_with_new_timestamp(self):
        sig = sign(SECRET, TS, BODY)
        assert verify(SECRET, TS + 60, BODY, sig, now=TS + 60) is False

    def test_stale_timestamp(self):
        sig = sign(SECRET, TS, BODY)
        assert verify(SECRET, TS, BODY, sig, tolerance=300, now=TS + 301) is False

    def test_future_timestamp(self):
        sig = sign(SECRET, TS, BODY)
        assert verify(SECRET, TS, BODY, sig, tolerance=300, now=TS - 301) is False

    def test_tolerance_boundary(self):
        sig = sign(SECRET, TS, BODY)
        assert verify(SECRET, TS, BODY, sig, tolerance=300, now=TS + 300) is True

    def test_zero_tolerance_skips_freshness(self):
        sig = sign(SECRET, TS, BODY)
        assert verify(SECRET, TS, BODY, sig, tolerance=0, now=TS + 10**6) is True

    def test_wrong_algorithm(self):
        digest = compute_digest(SECRET, TS, BODY)
        assert verify(SECRET, TS, BODY, f"sha1={digest}", now=TS) is False

    def test_malformed_header(self):
        digest = compute_digest(SECRET, TS, BODY)
        assert verify(SECRET, TS, BODY, digest, now=TS) is False
        assert verify(SECRET, TS, BODY, "sha256=", now=TS) is False

    def test_malformed_timestamp(self):
        sig = sign(SECRET, TS, BODY)
        assert verify(SECRET, "yesterday", BODY, sig, now=TS) is False
