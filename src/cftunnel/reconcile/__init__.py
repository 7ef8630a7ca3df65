"""Reconciliation of declared ingress against remote and service state."""

from .actions import (
    ActionKind,
    CreateDns,
    DeleteDns,
    PushRemoteIngress,
    ReconciliationPlan,
    RemoveIngress,
    RestartService,
    UpdateDns,
    WriteIngress,
)
from .engine import ReconciliationEngine
from .planner import ObservedState, ReconcileRequest, compute_plan
from .report import ExitCode, HostnameResult, Outcome, ReconciliationReport

__all__ = [
    "ActionKind",
    "CreateDns",
    "DeleteDns",
    "ExitCode",
    "HostnameResult",
    "ObservedState",
    "Outcome",
    "PushRemoteIngress",
    "ReconcileRequest",
    "ReconciliationEngine",
    "ReconciliationPlan",
    "ReconciliationReport",
    "RemoveIngress",
    "RestartService",
    "UpdateDns",
    "WriteIngress",
    "compute_plan",
]
