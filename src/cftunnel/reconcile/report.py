"""Per-cycle results and their mapping onto process exit codes."""

from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field

from .actions import ReconciliationPlan


class ExitCode(IntEnum):
    """Process exit codes of the command-line interface."""

    OK = 0
    PARTIAL = 2
    FAILURE = 3
    CONFIG_ERROR = 4
    REMOTE_ERROR = 5
    CONFLICT = 6
    SERVICE_ERROR = 7
    CANCELLED = 130


class Outcome(str, Enum):
    """Cycle outcome enumeration."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"
    NOOP = "noop"


class HostnameResult(BaseModel):
    """What happened to one hostname's chain."""

    model_config = ConfigDict(validate_assignment=True)

    hostname: str
    applied: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed_action: str | None = None
    error: str | None = None

    @property
    def converged(self) -> bool:
        return self.failed_action is None and not self.skipped

    def mark_failed(self, action: str, error: BaseException | str) -> None:
        self.failed_action = action
        self.error = str(error)


class ReconciliationReport(BaseModel):
    """Outcome of one reconciliation cycle.

    Attributes:
        plan: The plan that was applied
        hostnames: Per-hostname results, in plan order
        committed: Whether a new declaration was written
        cancelled: Whether cancellation stopped the cycle early
        cancel_reason: Why the cycle was cancelled, if it was
        commit_error: Why the declaration write failed, if it did
        service_error: Why the agent restart failed, if it did
        restarted: Whether the agent was restarted
    """

    plan: ReconciliationPlan = Field(default_factory=ReconciliationPlan)
    hostnames: dict[str, HostnameResult] = Field(default_factory=dict)
    committed: bool = False
    cancelled: bool = False
    cancel_reason: str | None = None
    commit_error: str | None = None
    service_error: str | None = None
    restarted: bool = False

    def result_for(self, hostname: str) -> HostnameResult:
        if hostname not in self.hostnames:
            self.hostnames[hostname] = HostnameResult(hostname=hostname)
        return self.hostnames[hostname]

    @property
    def converged(self) -> list[str]:
        return [h for h, r in self.hostnames.items() if r.converged]

    @property
    def failed(self) -> list[str]:
        return [h for h, r in self.hostnames.items() if not r.converged]

    @property
    def executed_any(self) -> bool:
        return self.restarted or any(r.applied for r in self.hostnames.values())

    @property
    def outcome(self) -> Outcome:
        if self.plan.is_empty:
            return Outcome.NOOP
        if not self.failed and self.service_error is None and self.commit_error is None:
            return Outcome.SUCCESS
        if self.hostnames and not self.converged:
            return Outcome.FAILURE
        return Outcome.PARTIAL

    @property
    def exit_code(self) -> ExitCode:
        nothing_failed = all(r.failed_action is None for r in self.hostnames.values())
        if self.cancelled and not self.executed_any and nothing_failed:
            return ExitCode.CANCELLED
        return {
            Outcome.SUCCESS: ExitCode.OK,
            Outcome.NOOP: ExitCode.OK,
            Outcome.PARTIAL: ExitCode.PARTIAL,
            Outcome.FAILURE: ExitCode.FAILURE,
        }[self.outcome]
