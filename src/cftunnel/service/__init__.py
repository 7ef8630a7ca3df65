"""Supervision of the local cloudflared agent through the host service manager."""

import sys
from typing import Any

from ..common.exceptions import ServiceError
from .base import SERVICE_NAME, ServiceSupervisor
from .launchd import LaunchdSupervisor
from .metrics import TunnelMetrics, fetch_metrics, format_count, parse_metrics
from .models import ServiceState, ServiceStatus, tunnel_id_from_token
from .runner import CommandResult, CommandRunner
from .systemd import SystemdSupervisor
from .windows import WindowsServiceSupervisor

_BACKENDS: dict[str, type[ServiceSupervisor]] = {
    "linux": SystemdSupervisor,
    "darwin": LaunchdSupervisor,
    "win32": WindowsServiceSupervisor,
}


def select_supervisor(platform: str | None = None, **kwargs: Any) -> ServiceSupervisor:
    """Pick the backend for this host once, at startup.

    Raises:
        ServiceError: If the platform has no supported service manager
    """
    platform = platform or sys.platform
    for prefix, backend in _BACKENDS.items():
        if platform.startswith(prefix):
            return backend(**kwargs)
    raise ServiceError(
        "Service management is currently supported on Linux/macOS/Windows only"
    )


__all__ = [
    "SERVICE_NAME",
    "CommandResult",
    "CommandRunner",
    "LaunchdSupervisor",
    "ServiceState",
    "ServiceStatus",
    "ServiceSupervisor",
    "SystemdSupervisor",
    "TunnelMetrics",
    "WindowsServiceSupervisor",
    "fetch_metrics",
    "format_count",
    "parse_metrics",
    "select_supervisor",
    "tunnel_id_from_token",
]
