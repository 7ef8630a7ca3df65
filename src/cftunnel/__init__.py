"""cftunnel - reconcile local ingress declarations with a Cloudflare tunnel."""

__version__ = "0.1.0"

# Context management
from .common.context import CancellationToken, cancel_on_interrupt

# Common utilities
from .common.exceptions import (
    CftunnelError,
    ConfigError,
    ConflictError,
    RemoteDriftError,
    RemoteError,
    ServiceError,
    SettingsError,
    UnauthorizedError,
)
from .common.logging import get_logger, setup_logging

# Declared state
from .config import ConfigSnapshot, ConfigStore, IngressMapping, Settings, load_settings

# Reconciliation
from .reconcile import (
    ExitCode,
    Outcome,
    ReconcileRequest,
    ReconciliationEngine,
    ReconciliationPlan,
    ReconciliationReport,
)

# Remote control-plane
from .remote import RemoteStateClient, RetryPolicy

# Service supervision
from .service import ServiceState, ServiceStatus, ServiceSupervisor, select_supervisor

__all__ = [
    "__version__",
    # Reconciliation
    "ReconciliationEngine",
    "ReconcileRequest",
    "ReconciliationPlan",
    "ReconciliationReport",
    "Outcome",
    "ExitCode",
    # Declared state
    "ConfigStore",
    "ConfigSnapshot",
    "IngressMapping",
    "Settings",
    "load_settings",
    # Remote
    "RemoteStateClient",
    "RetryPolicy",
    # Service
    "ServiceSupervisor",
    "ServiceState",
    "ServiceStatus",
    "select_supervisor",
    # Context management
    "CancellationToken",
    "cancel_on_interrupt",
    # Exceptions
    "CftunnelError",
    "ConfigError",
    "ConflictError",
    "RemoteDriftError",
    "RemoteError",
    "ServiceError",
    "SettingsError",
    "UnauthorizedError",
    # Utilities
    "get_logger",
    "setup_logging",
]
