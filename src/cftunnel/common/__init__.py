"""Common utilities and shared functionality."""

from .context import CancellationToken, cancel_on_interrupt
from .exceptions import (
    CftunnelError,
    ConfigError,
    ConfigLockedError,
    ConfigNotFoundError,
    ConfigParseError,
    ConfigWriteError,
    ConflictError,
    MetricsUnavailableError,
    MissingIdentifierError,
    RateLimitedError,
    RemoteDriftError,
    RemoteError,
    RemoteNotFoundError,
    RemoteValidationError,
    ServiceError,
    ServiceNotInstalledError,
    ServicePermissionError,
    ServiceTimeoutError,
    SettingsError,
    TransientRemoteError,
    UnauthorizedError,
)
from .logging import get_logger, setup_logging
from .utils import (
    MAX_PORT,
    MIN_PORT,
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

__all__ = [
    # Cancellation
    "CancellationToken",
    "cancel_on_interrupt",
    # Exceptions
    "CftunnelError",
    "SettingsError",
    "ConfigError",
    "ConfigNotFoundError",
    "ConfigParseError",
    "ConfigWriteError",
    "ConfigLockedError",
    "RemoteError",
    "MissingIdentifierError",
    "UnauthorizedError",
    "RateLimitedError",
    "TransientRemoteError",
    "RemoteValidationError",
    "RemoteNotFoundError",
    "ServiceError",
    "ServiceNotInstalledError",
    "ServicePermissionError",
    "ServiceTimeoutError",
    "MetricsUnavailableError",
    "ConflictError",
    "RemoteDriftError",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "validate_service",
    "normalize_hostname",
    "tunnel_cname",
    "short_id",
    "mask_sensitive_data",
    "mask_token",
    "sanitize_log_data",
    "MIN_PORT",
    "MAX_PORT",
]
