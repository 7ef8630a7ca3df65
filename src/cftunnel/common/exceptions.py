"""Custom exceptions for cftunnel."""


class CftunnelError(Exception):
    """Base exception for all cftunnel errors."""

    pass


class SettingsError(CftunnelError):
    """Raised when API credentials or identifiers are not configured."""

    pass


# Config store


class ConfigError(CftunnelError):
    """Raised when the ingress declaration file cannot be used."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class ConfigNotFoundError(ConfigError):
    """Raised when the ingress declaration file does not exist."""

    pass


class ConfigParseError(ConfigError):
    """Raised when the ingress declaration file fails to parse or validate."""

    pass


class ConfigWriteError(ConfigError):
    """Raised when the ingress declaration file cannot be written."""

    pass


class ConfigLockedError(ConfigError):
    """Raised when the store lock is not acquired within the bounded wait."""

    pass


# Remote control-plane


class RemoteError(CftunnelError):
    """Raised when a control-plane API call fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        errors: list[dict[str, object]] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class MissingIdentifierError(RemoteError):
    """Raised before any network call when a required identifier is empty."""

    pass


class UnauthorizedError(RemoteError):
    """Raised when the API token is rejected. Never retried."""

    pass


class RateLimitedError(RemoteError):
    """Raised when the API keeps answering 429 after retries are exhausted."""

    def __init__(self, message: str, retry_after: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class TransientRemoteError(RemoteError):
    """Raised for 5xx and connection failures once retries are exhausted."""

    pass


class RemoteValidationError(RemoteError):
    """Raised for 4xx responses and unsuccessful API envelopes."""

    pass


class RemoteNotFoundError(RemoteValidationError):
    """Raised when the addressed resource does not exist (404)."""

    pass


# Service supervisor


class ServiceError(CftunnelError):
    """Raised when controlling the local agent service fails."""

    pass


class ServiceNotInstalledError(ServiceError):
    """Raised when the agent binary or its service unit is missing."""

    pass


class ServicePermissionError(ServiceError):
    """Raised when the service manager refuses the caller."""

    pass


class ServiceTimeoutError(ServiceError):
    """Raised when a service command or a restart poll exceeds its timeout."""

    pass


class MetricsUnavailableError(ServiceError):
    """Raised when the agent metrics endpoint cannot be read."""

    pass


# Reconciliation


class ConflictError(CftunnelError):
    """Raised when local and remote state disagree."""

    pass


class RemoteDriftError(ConflictError):
    """Raised when remote ingress rules disagree with local declarations."""

    def __init__(self, message: str, hostnames: list[str]):
        super().__init__(message)
        self.hostnames = hostnames
