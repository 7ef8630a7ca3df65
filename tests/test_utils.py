"""Tests for utility functions."""

import threading

import pytest

from cftunnel.common.context import CancellationToken
from cftunnel.common.utils import (
    mask_sensitive_data,
    mask_token,
    normalize_hostname,
    sanitize_log_data,
    short_id,
    tunnel_cname,
    validate_non_empty_string,
    validate_port,
    validate_service,
)


class TestValidatePort:
    """Test port validation function."""

    def test_valid_ports(self):
        """Boundary and common ports are accepted."""
        validate_port(1, "Test port")
        validate_port(8080, "Alt HTTP port")
        validate_port(65535, "Max port")

    def test_invalid_ports(self):
        """Out-of-range and non-integer ports are rejected."""
        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(0, "Test port")
        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(65536, "Test port")
        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port("80", "Test port")  # type: ignore


class TestValidateNonEmptyString:
    """Test non-empty string validation function."""

    def test_strips_whitespace(self):
        assert validate_non_empty_string("  test  ", "Field") == "test"

    def test_rejects_blank(self):
        with pytest.raises(ValueError, match="Field cannot be empty"):
            validate_non_empty_string("   ", "Field")
        with pytest.raises(ValueError, match="Field cannot be empty"):
            validate_non_empty_string(None, "Field")


class TestNormalizeHostname:
    """Test hostname normalization."""

    def test_lowercases_and_strips_root_dot(self):
        assert normalize_hostname("API.Example.COM.") == "api.example.com"

    def test_wildcard_allowed(self):
        assert normalize_hostname("*.example.com") == "*.example.com"

    @pytest.mark.parametrize(
        "hostname",
        ["localhost", "-bad.example.com", "bad_label.example.com", "a..example.com"],
    )
    def test_invalid_hostnames(self, hostname):
        with pytest.raises(ValueError, match="Invalid hostname"):
            normalize_hostname(hostname)


class TestValidateService:
    """Test ingress service validation."""

    @pytest.mark.parametrize(
        "service",
        [
            "http://localhost:8080",
            "https://127.0.0.1:8443/app",
            "ssh://localhost:22",
            "tcp://db.internal:5432",
            "http_status:404",
            "hello_world",
            "unix:/run/app.sock",
        ],
    )
    def test_accepted(self, service):
        assert validate_service(service) == service

    def test_unknown_scheme(self):
        with pytest.raises(ValueError, match="must use one of"):
            validate_service("ftp://localhost:21")

    def test_missing_host(self):
        with pytest.raises(ValueError, match="has no host"):
            validate_service("http://:8080")

    def test_port_out_of_range(self):
        with pytest.raises(ValueError):
            validate_service("http://localhost:70000")


class TestMasking:
    """Test secret masking helpers."""

    def test_mask_sensitive_data(self):
        assert mask_sensitive_data("abcdefghijkl") == "********ijkl"
        assert mask_sensitive_data("abc") == "***"
        assert mask_sensitive_data(None) == "<None>"

    def test_mask_token(self):
        assert mask_token("abcd1234efgh5678") == "abcd***...***5678"
        assert mask_token("short") == "****"
        assert mask_token(None) == "not set"

    def test_sanitize_nested(self):
        data = {"api_token": "secret123456", "nested": {"password": "hunter22"}, "name": "x"}
        sanitized = sanitize_log_data(data)
        assert sanitized["api_token"] == "********3456"
        assert sanitized["nested"]["password"] == "****er22"
        assert sanitized["name"] == "x"


class TestIdentifiers:
    def test_tunnel_cname(self):
        assert tunnel_cname("abc") == "abc.cfargotunnel.com"

    def test_short_id(self):
        assert short_id("6ff42ae2-765d-4adf") == "6ff42ae2"
        assert short_id(None) == "-"


class TestCancellationToken:
    def test_wait_returns_early_on_cancel(self):
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()
        assert token.wait(5)
        assert token.reason == "cancelled"

    def test_wait_times_out(self):
        token = CancellationToken()
        assert not token.wait(0.01)

    def test_deadline(self):
        token = CancellationToken(timeout=0.01)
        assert token.wait(0.05)
        assert token.reason.startswith("timed out")
