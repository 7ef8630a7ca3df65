"""Reconciliation engine: load, observe, diff, apply, commit."""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

from ..common.context import CancellationToken
from ..common.exceptions import (
    CftunnelError,
    ConfigWriteError,
    RemoteNotFoundError,
    RemoteValidationError,
    ServiceError,
    SettingsError,
    UnauthorizedError,
)
from ..common.logging import get_logger
from ..common.utils import tunnel_cname
from ..config.models import ConfigSnapshot, IngressMapping
from ..config.store import ConfigStore
from ..remote.client import RemoteStateClient
from ..remote.models import DnsRecord
from ..service.base import ServiceSupervisor
from ..service.models import ServiceState
from .actions import (
    BaseAction,
    CreateDns,
    DeleteDns,
    HostnameAction,
    PushRemoteIngress,
    ReconciliationPlan,
    RemoveIngress,
    UpdateDns,
    WriteIngress,
)
from .planner import ObservedState, ReconcileRequest, compute_plan, dns_scope, scope_tunnels
from .report import HostnameResult, ReconciliationReport

logger = get_logger(__name__)

# API error codes for "a record with that name already exists"
DUPLICATE_RECORD_CODES = frozenset({81053, 81057, 81058})

DEFAULT_MAX_WORKERS = 4


class ReconciliationEngine:
    """Converges declared ingress, remote DNS/ingress state and the agent service.

    One cycle holds the store lock from load to commit. Hostname chains run
    concurrently on a bounded pool; actions within a chain are sequential and
    stop at the first failure. Only ingress changes whose chain succeeded
    are committed, and the agent is restarted after the commit so it reads
    the converged file.
    """

    def __init__(
        self,
        store: ConfigStore,
        supervisor: ServiceSupervisor | None = None,
        remote: RemoteStateClient | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        lock_timeout: float | None = None,
    ):
        """Initialize the engine.

        Args:
            store: Declaration file store
            supervisor: Agent service backend; None when the host has none
            remote: Control-plane client; required for non-offline requests
            max_workers: Upper bound on concurrently running hostname chains
            lock_timeout: Store lock wait, defaults to the store's own timeout
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.store = store
        self.supervisor = supervisor
        self.remote = remote
        self.max_workers = max_workers
        self.lock_timeout = lock_timeout

    def plan(self, request: ReconcileRequest) -> ReconciliationPlan:
        """Dry run: load, observe and diff without side effects.

        Raises:
            ConfigError: If the declaration cannot be loaded or locked
            RemoteError: If remote observation fails
            ServiceError: If the service status query fails
            RemoteDriftError: If remote ingress drifted and force is not set
        """
        with self.store.lock(self.lock_timeout):
            current = self._load()
            observed = self._observe(request, current)
            return compute_plan(request, current, observed)

    def reconcile(
        self, request: ReconcileRequest, token: CancellationToken | None = None
    ) -> ReconciliationReport:
        """Run one full cycle.

        Args:
            request: Desired-state delta and remote scope
            token: Cancellation token checked between actions

        Returns:
            Per-hostname report of the cycle

        Raises:
            ConfigError: If the declaration cannot be loaded or locked
            RemoteError: If remote observation fails
            ServiceError: If the service status query fails
            RemoteDriftError: If remote ingress drifted and force is not set
        """
        token = token or CancellationToken()
        logger.info(
            "Reconciliation started",
            upserts=len(request.upserts),
            removals=len(request.removals),
            offline=request.offline,
        )

        with self.store.lock(self.lock_timeout):
            current = self._load()
            observed = self._observe(request, current)
            plan = compute_plan(request, current, observed)
            report = ReconciliationReport(plan=plan)

            if plan.is_empty:
                logger.info("Nothing to do")
                return report

            for line in plan.describe():
                logger.debug("Planned action", action=line)

            staged = self._apply(plan, report, token)
            self._commit(plan, current, staged, report)
            self._restart(plan, report, token)

        report.cancelled = token.cancelled
        report.cancel_reason = token.reason
        logger.info(
            "Reconciliation finished",
            outcome=report.outcome.value,
            converged=len(report.converged),
            failed=report.failed,
            committed=report.committed,
        )
        return report

    # -- stages -------------------------------------------------------------

    def _load(self) -> ConfigSnapshot:
        snapshot = self.store.load(missing_ok=True)
        logger.debug("Declaration loaded", mappings=len(snapshot.mappings))
        return snapshot

    def _observe_service(self) -> ServiceState:
        if self.supervisor is None:
            return ServiceState()
        return self.supervisor.observe()

    def _observe(self, request: ReconcileRequest, current: ConfigSnapshot) -> ObservedState:
        service = self._observe_service()
        if request.offline:
            return ObservedState(service=service, offline=True)

        if self.remote is None:
            raise SettingsError("API credentials are required to reconcile remote state")

        desired = request.desired(current)
        tunnels = scope_tunnels(request, current, desired)

        known = {tunnel.id for tunnel in self.remote.list_tunnels()}
        missing = [t for t in tunnels if t not in known]
        if missing:
            raise RemoteNotFoundError(f"Tunnel not found: {', '.join(missing)}")

        remote_ingress = {t: self.remote.get_tunnel_configuration(t) for t in tunnels}

        scope = set(dns_scope(request, current, desired))
        targets = {tunnel_cname(t).lower() for t in tunnels}
        records: dict[str, list[DnsRecord]] = {}
        for record in self.remote.list_dns_records():
            hostname = record.hostname.rstrip(".").lower()
            if hostname in scope or record.content.rstrip(".").lower() in targets:
                records.setdefault(hostname, []).append(record)

        logger.debug(
            "Remote state observed",
            tunnels=len(tunnels),
            records=sum(len(r) for r in records.values()),
            service=service.status.value,
        )
        return ObservedState(
            service=service,
            offline=False,
            tunnel_ids=frozenset(known),
            dns_records=records,
            remote_ingress=remote_ingress,
        )

    def _apply(
        self,
        plan: ReconciliationPlan,
        report: ReconciliationReport,
        token: CancellationToken,
    ) -> dict[str, IngressMapping | None]:
        """Run hostname chains, then tunnel actions. Returns staged ingress edits."""
        staged: dict[str, IngressMapping | None] = {}
        staged_lock = threading.Lock()

        chains = plan.chains()
        for hostname in chains:
            report.result_for(hostname)

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="reconcile"
        ) as executor:
            futures = [
                executor.submit(
                    self._run_chain,
                    actions,
                    report.hostnames[hostname],
                    staged,
                    staged_lock,
                    token,
                )
                for hostname, actions in chains.items()
            ]
            try:
                for future in as_completed(futures):
                    future.result()
            except KeyboardInterrupt:
                token.cancel("interrupted")

        for action in plan.tunnel_actions:
            self._run_tunnel_action(action, report, token)

        return staged

    def _run_chain(
        self,
        actions: list[HostnameAction],
        result: HostnameResult,
        staged: dict[str, IngressMapping | None],
        staged_lock: threading.Lock,
        token: CancellationToken,
    ) -> None:
        for index, action in enumerate(actions):
            if token.cancelled:
                result.skipped.extend(a.describe() for a in actions[index:])
                logger.warning(
                    "Chain cancelled",
                    hostname=result.hostname,
                    skipped=len(actions) - index,
                )
                return
            try:
                self._execute(action, staged, staged_lock)
            except UnauthorizedError as e:
                result.mark_failed(action.describe(), e)
                token.cancel("credentials rejected")
                return
            except CftunnelError as e:
                logger.error(
                    "Action failed",
                    hostname=result.hostname,
                    action=action.kind.value,
                    error=str(e),
                )
                result.mark_failed(action.describe(), e)
                return
            result.applied.append(action.describe())
            logger.info("Action applied", hostname=result.hostname, action=action.kind.value)

    def _run_tunnel_action(
        self,
        action: PushRemoteIngress,
        report: ReconciliationReport,
        token: CancellationToken,
    ) -> None:
        results = [report.result_for(h) for h in action.hostnames]
        description = action.describe()

        if token.cancelled or any(r.failed_action for r in results):
            for result in results:
                if result.failed_action is None:
                    result.skipped.append(description)
            return

        try:
            self._execute(action, {}, threading.Lock())
        except CftunnelError as e:
            if isinstance(e, UnauthorizedError):
                token.cancel("credentials rejected")
            logger.error("Action failed", tunnel_id=action.tunnel_id, error=str(e))
            for result in results:
                result.mark_failed(description, e)
            return

        for result in results:
            result.applied.append(description)
        logger.info("Action applied", tunnel_id=action.tunnel_id, action=action.kind.value)

    def _execute(
        self,
        action: BaseAction,
        staged: dict[str, IngressMapping | None],
        staged_lock: threading.Lock,
    ) -> None:
        if isinstance(action, WriteIngress):
            with staged_lock:
                staged[action.hostname] = action.mapping
        elif isinstance(action, RemoveIngress):
            with staged_lock:
                staged[action.hostname] = None
        elif isinstance(action, CreateDns):
            self._create_dns(action)
        elif isinstance(action, UpdateDns):
            self._client().update_dns_record(action.record_id, action.record)
        elif isinstance(action, DeleteDns):
            try:
                self._client().delete_dns_record(action.record_id)
            except RemoteNotFoundError:
                logger.info("DNS record already gone", hostname=action.hostname)
        elif isinstance(action, PushRemoteIngress):
            self._client().put_tunnel_configuration(action.tunnel_id, action.configuration)
        else:
            raise TypeError(f"Cannot execute {action.kind.value} inside a chain")

    def _create_dns(self, action: CreateDns) -> None:
        client = self._client()
        try:
            client.create_dns_record(action.record)
        except RemoteValidationError as e:
            codes = {err.get("code") for err in e.errors}
            if not codes & DUPLICATE_RECORD_CODES:
                raise
            # An earlier interrupted cycle may have created it already
            records = client.list_dns_records(name=action.hostname)
            if not any(r.points_to(action.record.content) for r in records):
                raise
            logger.info("DNS record already present", hostname=action.hostname)

    def _client(self) -> RemoteStateClient:
        if self.remote is None:
            raise SettingsError("API credentials are required for remote actions")
        return self.remote

    def _commit(
        self,
        plan: ReconciliationPlan,
        current: ConfigSnapshot,
        staged: dict[str, IngressMapping | None],
        report: ReconciliationReport,
    ) -> None:
        """Save the declaration with the succeeded ingress edits only."""
        if not staged:
            return

        snapshot = current
        for action in plan.actions:
            if not isinstance(action, WriteIngress | RemoveIngress):
                continue
            if action.hostname not in staged:
                continue
            mapping = staged[action.hostname]
            snapshot = (
                snapshot.with_mapping(mapping)
                if mapping is not None
                else snapshot.without(action.hostname)
            )

        if snapshot.fingerprint == current.fingerprint:
            return

        try:
            self.store.save(snapshot)
        except ConfigWriteError as e:
            logger.error("Commit failed", error=str(e))
            report.commit_error = str(e)
            for hostname in staged:
                report.result_for(hostname).mark_failed("commit declaration", e)
            return

        report.committed = True
        logger.info("Declaration committed", mappings=len(snapshot.mappings))

    def _restart(
        self,
        plan: ReconciliationPlan,
        report: ReconciliationReport,
        token: CancellationToken,
    ) -> None:
        action = plan.restart
        if action is None or not report.committed or self.supervisor is None:
            return
        if token.cancelled:
            report.service_error = f"restart skipped: {token.reason}"
            logger.warning("Restart skipped", reason=token.reason)
            return
        try:
            self.supervisor.restart()
        except ServiceError as e:
            logger.error("Restart failed", error=str(e))
            report.service_error = str(e)
            return
        report.restarted = True
