"""Utility functions for cftunnel."""

import re
from typing import Any
from urllib.parse import urlsplit

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

TUNNEL_CNAME_SUFFIX = "cfargotunnel.com"

# Service forms cloudflared accepts without a host:port
SPECIAL_SERVICES = ("hello_world", "bastion")
SPECIAL_SERVICE_PREFIXES = ("http_status:", "unix:", "unix+tls:")
SERVICE_SCHEMES = ("http", "https", "tcp", "ssh", "rdp", "smb", "ws", "wss")

_HOSTNAME_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")

SENSITIVE_FIELDS = {
    "auth_token",
    "token",
    "password",
    "secret",
    "api_key",
    "api_token",
    "access_token",
    "bearer_token",
    "tunnel_secret",
    "authorization",
}


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if not isinstance(port, int) or isinstance(port, bool) or not (
        MIN_PORT <= port <= MAX_PORT
    ):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def validate_non_empty_string(value: str | None, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValueError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def normalize_hostname(hostname: str) -> str:
    """Lower-case a hostname and drop the trailing root dot.

    Raises:
        ValueError: If the result is not a valid DNS name
    """
    name = validate_non_empty_string(hostname, "Hostname").lower().rstrip(".")
    labels = name.split(".")
    # A leading wildcard label is allowed, as in "*.example.com"
    if labels and labels[0] == "*":
        labels = labels[1:]
    if len(labels) < 2 or len(name) > 253:
        raise ValueError(f"Invalid hostname '{hostname}'")
    for label in labels:
        if not _HOSTNAME_LABEL.match(label):
            raise ValueError(f"Invalid hostname '{hostname}'")
    return name


def validate_service(service: str) -> str:
    """Validate an ingress service target.

    Accepts ``scheme://host:port[/path]`` URIs and cloudflared special services.

    Raises:
        ValueError: If the service cannot be routed to
    """
    service = validate_non_empty_string(service, "Service")
    if service in SPECIAL_SERVICES or service.startswith(SPECIAL_SERVICE_PREFIXES):
        return service

    parts = urlsplit(service)
    if parts.scheme not in SERVICE_SCHEMES:
        raise ValueError(
            f"Service '{service}' must use one of: {', '.join(SERVICE_SCHEMES)}"
        )
    if not parts.hostname:
        raise ValueError(f"Service '{service}' has no host")
    try:
        port = parts.port
    except ValueError as e:
        raise ValueError(f"Service '{service}' has an invalid port") from e
    if port is not None:
        validate_port(port, "Service port")
    return service


def tunnel_cname(tunnel_id: str) -> str:
    """Return the CNAME target that routes a hostname to a tunnel."""
    return f"{tunnel_id}.{TUNNEL_CNAME_SUFFIX}"


def short_id(value: str | None, length: int = 8) -> str:
    """Shorten a UUID-like identifier for display."""
    if not value:
        return "-"
    return value[:length]


def is_sensitive_key(key: str) -> bool:
    """Check whether a field name looks like it carries a secret."""
    lowered = key.lower()
    return any(field in lowered for field in SENSITIVE_FIELDS)


def mask_sensitive_data(
    value: str | None, mask_char: str = "*", show_chars: int = 4
) -> str:
    """Mask sensitive data for logging while preserving some characters for debugging.

    Args:
        value: Sensitive string to mask (e.g., API token)
        mask_char: Character to use for masking
        show_chars: Number of characters to show at the end

    Returns:
        Masked string safe for logging
    """
    if not value:
        return "<None>"

    if len(value) <= show_chars:
        return mask_char * len(value)

    masked_length = len(value) - show_chars
    return mask_char * masked_length + value[-show_chars:]


def mask_token(token: str | None) -> str:
    """Mask a token for display as ``abcd***...***wxyz``."""
    if token is None:
        return "not set"
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}***...***{token[-4:]}"


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """Sanitize dictionary data for safe logging by masking sensitive fields."""
    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        if is_sensitive_key(key):
            sanitized[key] = mask_sensitive_data(str(value) if value else None)
        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)
        else:
            sanitized[key] = value
    return sanitized
