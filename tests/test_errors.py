"""Tests for error classification, redaction and credential encryption."""

from __future__ import annotations

import json
import logging
import sys

import httpx
import pytest
from cryptography.fernet import Fernet

from conftest import KEY_A, KEY_B, TEST_FERNET_KEY, make_settings
from synthgate.core.encryption import SecretCipher
from synthgate.core.logging import JSONFormatter, RedactingFilter, RedactingFormatter, setup_logging
from synthgate.core.security import hash_credential, hash_payload, redact_secrets
from synthgate.core.sentry import scrub_event
from synthgate.gateway.errors import (
    ErrorClass,
    GatewayError,
    ProviderError,
    classify_error,
    parse_retry_delay,
)

# ==========================================================================
# Test: classify_error
# ==========================================================================


class TestClassifyError:
    def test_gateway_error_passes_through(self):
        err = GatewayError(ErrorClass.NO_CREDENTIAL, "empty")
        assert classify_error(err) is err

    @pytest.mark.parametrize(
        "exc",
        [
            ProviderError("slow down", status_code=429),
            ProviderError("Resource has been exhausted", error_code="RESOURCE_EXHAUSTED"),
            Exception("HTTP 429 from upstream"),
            Exception("Too Many Requests"),
        ],
    )
    def test_rate_limited(self, exc):
        assert classify_error(exc).error_class == ErrorClass.RATE_LIMITED

    def test_rate_limit_wins_over_quota_wording(self):
        exc = ProviderError("Resource has been exhausted (e.g. check quota).", status_code=429)
        assert classify_error(exc).error_class == ErrorClass.RATE_LIMITED

    def test_quota_body_mentioning_429_stays_quota(self):
        exc = ProviderError(
            "This request exceeds your quota of 10000. You have 1429 credits remaining, while 1500 are required.",
            status_code=402,
            error_code="QUOTA_EXCEEDED",
        )
        err = classify_error(exc)
        assert err.error_class == ErrorClass.QUOTA_EXCEEDED
        assert err.retryable is False

    def test_digits_inside_identifier_not_rate_limit(self):
        err = classify_error(ProviderError("Invalid voice id 8429abc", status_code=400))
        assert err.error_class == ErrorClass.UNKNOWN

    def test_status_code_trusted_over_text(self):
        err = classify_error(ProviderError("upstream said 429 earlier", status_code=503))
        assert err.error_class == ErrorClass.SERVER_ERROR

    def test_bare_429_in_text_without_status(self):
        assert classify_error(Exception("upstream 1429 items")).error_class == ErrorClass.UNKNOWN
        assert classify_error(Exception("status=429")).error_class == ErrorClass.RATE_LIMITED

    @pytest.mark.parametrize(
        "exc",
        [
            ProviderError("forbidden", status_code=403),
            ProviderError("nope", status_code=401),
            ProviderError("Request had invalid authentication credentials", error_code="UNAUTHENTICATED"),
            ProviderError("denied", error_code="PERMISSION_DENIED"),
            ProviderError("API key not valid. Please pass a valid API key.", status_code=400),
        ],
    )
    def test_unauthorized(self, exc):
        assert classify_error(exc).error_class == ErrorClass.UNAUTHORIZED

    @pytest.mark.parametrize(
        "exc",
        [
            httpx.ConnectError("connection refused"),
            httpx.ReadTimeout("read timed out"),
            ConnectionResetError("reset by peer"),
            TimeoutError(),
        ],
    )
    def test_network(self, exc):
        assert classify_error(exc).error_class == ErrorClass.NETWORK_ERROR

    def test_quota(self):
        exc = ProviderError("monthly limit", status_code=402)
        assert classify_error(exc).error_class == ErrorClass.QUOTA_EXCEEDED
        assert classify_error(Exception("Quota exceeded for project")).error_class == ErrorClass.QUOTA_EXCEEDED

    @pytest.mark.parametrize(
        "exc",
        [
            ProviderError("Internal error", status_code=500),
            ProviderError("The model is overloaded.", status_code=503, error_code="UNAVAILABLE"),
            Exception("INTERNAL: backend failure"),
        ],
    )
    def test_server(self, exc):
        assert classify_error(exc).error_class == ErrorClass.SERVER_ERROR

    def test_unknown(self):
        err = classify_error(ValueError("unexpected payload"))
        assert err.error_class == ErrorClass.UNKNOWN
        assert err.retryable is True

    def test_retry_hint_parsed_from_message(self):
        err = classify_error(Exception('429 {"retryDelay": "30s"}'))
        assert err.retry_after == pytest.approx(30.5)

    def test_explicit_retry_hint_kept(self):
        err = classify_error(ProviderError("slow down", status_code=429, retry_after=4.0))
        assert err.retry_after == 4.0
        assert err.status_code == 429


class TestParseRetryDelay:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ('"retryDelay": "12s"', 12.5),
            ("retryDelay: 1.5s", 2.0),
            ("", None),
            ("no hint here", None),
        ],
    )
    def test_parse(self, text, expected):
        assert parse_retry_delay(text) == expected


# ==========================================================================
# Test: GatewayError
# ==========================================================================


class TestGatewayError:
    def test_technical_message_redacted(self):
        err = GatewayError(ErrorClass.UNAUTHORIZED, f"bad key {KEY_A}")
        assert KEY_A not in err.technical_message
        assert KEY_A not in str(err)
        assert "[API_KEY_REDACTED]" in err.technical_message

    def test_user_message_defaults_per_class(self):
        for error_class in ErrorClass:
            assert GatewayError(error_class).user_message

    @pytest.mark.parametrize(
        "error_class, retryable",
        [
            (ErrorClass.RATE_LIMITED, True),
            (ErrorClass.NETWORK_ERROR, True),
            (ErrorClass.SERVER_ERROR, True),
            (ErrorClass.UNKNOWN, True),
            (ErrorClass.UNAUTHORIZED, False),
            (ErrorClass.QUOTA_EXCEEDED, False),
            (ErrorClass.NO_CREDENTIAL, False),
        ],
    )
    def test_retryable(self, error_class, retryable):
        assert GatewayError(error_class).retryable is retryable

    def test_to_dict(self):
        err = GatewayError(ErrorClass.RATE_LIMITED, "slow", status_code=429, retry_after=3.0)
        data = err.to_dict()
        assert data["error_class"] == "rate_limited"
        assert data["retryable"] is True
        assert data["retry_after"] == 3.0
        assert data["status_code"] == 429


# ==========================================================================
# Test: Redaction & hashing
# ==========================================================================


class TestRedaction:
    @pytest.mark.parametrize(
        "text, secret",
        [
            (f"failed with {KEY_A}", KEY_A),
            ("https://host/v1/models?key=topsecret&alt=json", "topsecret"),
            ("Authorization: Bearer abc.def-ghi", "abc.def-ghi"),
            ("x-goog-api-key: mysecret", "mysecret"),
            ("xi-api-key: sk_live_zzz", "sk_live_zzz"),
            ("using sk_abcdef123456 now", "sk_abcdef123456"),
        ],
    )
    def test_secret_removed(self, text, secret):
        assert secret not in redact_secrets(text)

    def test_none_and_plain_text(self):
        assert redact_secrets(None) == ""
        assert redact_secrets("nothing to hide") == "nothing to hide"

    def test_query_string_tail_kept(self):
        assert redact_secrets("?key=abc&alt=json") == "?key=[REDACTED]&alt=json"

    def test_hash_credential(self):
        digest = hash_credential(KEY_A)
        assert digest.startswith("k_")
        assert len(digest) == 18
        assert digest == hash_credential(KEY_A)
        assert digest != hash_credential(KEY_B)
        assert KEY_A[4:] not in digest

    def test_hash_payload_ignores_key_order(self):
        assert hash_payload({"a": 1, "b": "x"}) == hash_payload({"b": "x", "a": 1})
        assert hash_payload({"a": 1}) != hash_payload({"a": 2})


class TestLogging:
    def _record(self, msg, *args, **extra):
        record = logging.LogRecord("synthgate.test", logging.WARNING, __file__, 1, msg, args, None)
        for name, value in extra.items():
            setattr(record, name, value)
        return record

    def test_filter_redacts_formatted_message(self):
        record = self._record("calling with %s", KEY_A)
        assert RedactingFilter().filter(record) is True
        assert KEY_A not in record.getMessage()
        assert record.args is None

    def test_json_formatter_includes_context(self):
        record = self._record("retrying", task_id="t1", credential_id="key_2")
        data = json.loads(JSONFormatter().format(record))
        assert data["level"] == "WARNING"
        assert data["message"] == "retrying"
        assert data["task_id"] == "t1"
        assert data["credential_id"] == "key_2"

    def _failing_record(self):
        try:
            raise RuntimeError(f"call failed for {KEY_A}")
        except RuntimeError:
            exc_info = sys.exc_info()
        return logging.LogRecord(
            "synthgate.test", logging.WARNING, __file__, 1, "Failed to persist credential usage", None, exc_info
        )

    def test_plain_formatter_redacts_traceback(self):
        output = RedactingFormatter().format(self._failing_record())
        assert "RuntimeError: call failed for [API_KEY_REDACTED]" in output
        assert KEY_A not in output

    def test_json_formatter_redacts_traceback(self):
        data = json.loads(JSONFormatter().format(self._failing_record()))
        assert "RuntimeError" in data["exception"]
        assert KEY_A not in data["exception"]

    def test_plain_mode_handler_redacts(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(make_settings(log_json=False))
            formatter = root.handlers[0].formatter
        finally:
            for handler in root.handlers[:]:
                root.removeHandler(handler)
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)

        assert isinstance(formatter, RedactingFormatter)
        assert KEY_A not in formatter.format(self._failing_record())


class TestSentryScrub:
    def test_scrub_event(self):
        event = {
            "exception": {"values": [{"type": "ProviderError", "value": f"key {KEY_A} rejected"}]},
            "logentry": {"message": f"using {KEY_A}", "formatted": f"using {KEY_A}"},
            "breadcrumbs": {"values": [{"message": "GET https://host?key=leak"}]},
        }
        scrubbed = scrub_event(event)
        assert KEY_A not in json.dumps(scrubbed)
        assert "leak" not in json.dumps(scrubbed)

    def test_scrub_empty_event(self):
        assert scrub_event({}) == {}


# ==========================================================================
# Test: SecretCipher
# ==========================================================================


class TestSecretCipher:
    def test_roundtrip(self):
        cipher = SecretCipher(TEST_FERNET_KEY)
        token = cipher.encrypt(KEY_A)
        assert KEY_A.encode() not in token
        assert cipher.decrypt(token) == KEY_A

    def test_missing_key(self):
        with pytest.raises(ValueError):
            SecretCipher("")

    def test_wrong_key_returns_empty(self):
        token = SecretCipher(Fernet.generate_key()).encrypt(KEY_A)
        assert SecretCipher(TEST_FERNET_KEY).decrypt(token) == ""

    def test_empty_ciphertext(self):
        assert SecretCipher(TEST_FERNET_KEY).decrypt(b"") == ""
