"""Diff stage: desired declarations against observed state."""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..common.exceptions import RemoteDriftError
from ..common.logging import get_logger
from ..common.utils import TUNNEL_CNAME_SUFFIX, normalize_hostname, tunnel_cname
from ..config.models import ConfigSnapshot, IngressMapping
from ..remote.models import DnsRecord, DnsRecordSpec, IngressRule, TunnelConfiguration
from ..service.models import ServiceState
from .actions import (
    CreateDns,
    DeleteDns,
    HostnameAction,
    PushRemoteIngress,
    ReconciliationPlan,
    RemoveIngress,
    RestartService,
    UpdateDns,
    WriteIngress,
)

logger = get_logger(__name__)

# Record types that cannot coexist with a CNAME on the same name
_ROUTABLE_TYPES = ("CNAME", "A", "AAAA")


class ReconcileRequest(BaseModel):
    """A desired-state delta plus the scope of remote reconciliation.

    ``upserts`` and ``removals`` edit the declaration. ``sync_dns`` extends the
    cycle to the DNS records of the edited hostnames; ``sync_tunnel`` extends
    it to every declared hostname of that tunnel, including orphan cleanup.
    Requests with neither are offline: no remote observation, local actions
    only.
    """

    model_config = ConfigDict(frozen=True)

    upserts: tuple[IngressMapping, ...] = Field(default_factory=tuple)
    removals: tuple[str, ...] = Field(default_factory=tuple)
    sync_dns: bool = False
    sync_tunnel: str | None = None
    force: bool = False

    @field_validator("removals")
    @classmethod
    def normalize_removals(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(normalize_hostname(h) for h in v)

    @model_validator(mode="after")
    def force_needs_remote_scope(self) -> "ReconcileRequest":
        if self.force and self.offline:
            raise ValueError("force only applies to requests that sync DNS or a tunnel")
        return self

    @classmethod
    def map(
        cls, mapping: IngressMapping, sync_dns: bool = False, force: bool = False
    ) -> "ReconcileRequest":
        return cls(upserts=(mapping,), sync_dns=sync_dns, force=force)

    @classmethod
    def unmap(cls, hostname: str, sync_dns: bool = False) -> "ReconcileRequest":
        return cls(removals=(hostname,), sync_dns=sync_dns)

    @classmethod
    def sync(cls, tunnel_id: str, force: bool = False) -> "ReconcileRequest":
        return cls(sync_tunnel=tunnel_id, force=force)

    @property
    def offline(self) -> bool:
        return not self.sync_dns and self.sync_tunnel is None

    def desired(self, current: ConfigSnapshot) -> ConfigSnapshot:
        """Apply the delta to ``current``. Removing an undeclared hostname is a no-op."""
        snapshot = current
        for hostname in self.removals:
            if snapshot.get(hostname) is None:
                logger.info("Hostname not declared, nothing to remove", hostname=hostname)
                continue
            snapshot = snapshot.without(hostname)
        for mapping in self.upserts:
            snapshot = snapshot.with_mapping(mapping)
        return snapshot


class ObservedState(BaseModel):
    """Everything observed for one cycle. Discarded after the cycle."""

    model_config = ConfigDict(frozen=True)

    service: ServiceState = Field(default_factory=ServiceState)
    offline: bool = True
    tunnel_ids: frozenset[str] = Field(default_factory=frozenset)
    dns_records: dict[str, list[DnsRecord]] = Field(default_factory=dict)
    remote_ingress: dict[str, TunnelConfiguration] = Field(default_factory=dict)

    def records_for(self, hostname: str) -> list[DnsRecord]:
        return self.dns_records.get(hostname, [])


def dns_scope(
    request: ReconcileRequest, current: ConfigSnapshot, desired: ConfigSnapshot
) -> list[str]:
    """Hostnames whose DNS records this request reconciles."""
    if request.offline:
        return []
    hostnames: list[str] = []
    if request.sync_tunnel is not None:
        hostnames.extend(m.hostname for m in desired.for_tunnel(request.sync_tunnel))
    if request.sync_dns:
        hostnames.extend(m.hostname for m in request.upserts)
        hostnames.extend(h for h in request.removals if current.get(h) is not None)
    return list(dict.fromkeys(hostnames))


def scope_tunnels(
    request: ReconcileRequest, current: ConfigSnapshot, desired: ConfigSnapshot
) -> list[str]:
    """Tunnels whose remote state must be observed for this request."""
    tunnels: list[str] = []
    if request.sync_tunnel is not None:
        tunnels.append(request.sync_tunnel)
    for hostname in dns_scope(request, current, desired):
        mapping = desired.get(hostname) or current.get(hostname)
        if mapping is not None:
            tunnels.append(mapping.tunnel_id)
    return list(dict.fromkeys(tunnels))


def find_drift(
    desired: ConfigSnapshot, hostnames: list[str], observed: ObservedState
) -> dict[str, list[tuple[IngressMapping, IngressRule]]]:
    """Declared mappings whose remote ingress rule routes elsewhere, per tunnel."""
    drift: dict[str, list[tuple[IngressMapping, IngressRule]]] = {}
    for hostname in hostnames:
        mapping = desired.get(hostname)
        if mapping is None:
            continue
        configuration = observed.remote_ingress.get(mapping.tunnel_id)
        if configuration is None or not configuration.is_remotely_managed:
            continue
        rules = configuration.rules_for_hostname().get(hostname)
        if not rules:
            continue
        # several rules for one hostname (per-path routes) never match a single mapping
        if len(rules) > 1 or not mapping.same_route(rules[0].service, rules[0].path):
            drift.setdefault(mapping.tunnel_id, []).append((mapping, rules[0]))
    return drift


def _dns_for_mapping(mapping: IngressMapping, records: list[DnsRecord]) -> list[HostnameAction]:
    """Actions that leave exactly one proxied tunnel CNAME for the hostname.

    A CNAME cannot coexist with other records of the same name, so any
    routable record beyond the one being rewritten is deleted first.
    """
    target = tunnel_cname(mapping.tunnel_id)
    routable = [r for r in records if r.record_type.upper() in _ROUTABLE_TYPES]
    if any(record.points_to(target) for record in records) and len(routable) == 1:
        return []
    spec = DnsRecordSpec.tunnel_cname(mapping.hostname, mapping.tunnel_id)
    if not routable:
        return [CreateDns(hostname=mapping.hostname, record=spec)]
    keep = next((r for r in routable if r.points_to(target)), None)
    if keep is None:
        keep = next((r for r in routable if r.record_type.upper() == "CNAME"), routable[0])
    actions: list[HostnameAction] = [
        DeleteDns(hostname=mapping.hostname, record_id=r.id, content=r.content)
        for r in routable
        if r.id != keep.id
    ]
    if not keep.points_to(target):
        actions.append(
            UpdateDns(
                hostname=mapping.hostname,
                record_id=keep.id,
                record=spec,
                previous_content=keep.content,
            )
        )
    return actions


def _dns_for_removal(previous: IngressMapping, records: list[DnsRecord]) -> list[HostnameAction]:
    target = tunnel_cname(previous.tunnel_id).lower()
    return [
        DeleteDns(hostname=previous.hostname, record_id=record.id, content=record.content)
        for record in records
        if record.record_type.upper() == "CNAME"
        and record.content.rstrip(".").lower() == target
    ]


def _orphans(
    tunnel_id: str, desired: ConfigSnapshot, observed: ObservedState
) -> dict[str, list[HostnameAction]]:
    target = tunnel_cname(tunnel_id).lower()
    orphans: dict[str, list[HostnameAction]] = {}
    for hostname, records in observed.dns_records.items():
        if desired.get(hostname) is not None:
            continue
        for record in records:
            content = record.content.rstrip(".").lower()
            if record.record_type.upper() == "CNAME" and content == target:
                orphans.setdefault(hostname, []).append(
                    DeleteDns(hostname=hostname, record_id=record.id, content=record.content)
                )
    return orphans


def compute_plan(
    request: ReconcileRequest,
    current: ConfigSnapshot,
    observed: ObservedState,
) -> ReconciliationPlan:
    """Compute the minimal ordered action sequence for ``request``.

    Per hostname, DNS actions come first: ``CreateDns``/``UpdateDns`` before
    ``WriteIngress`` and ``DeleteDns`` before ``RemoveIngress``. Chains are
    ordered by hostname, followed by remote ingress pushes and finally a
    single ``RestartService`` when an ingress change is planned and the agent
    is running.

    Raises:
        RemoteDriftError: If a remote ingress rule disagrees with the local
            declaration and ``force`` is not set
    """
    desired = request.desired(current)
    scope = dns_scope(request, current, desired)

    chains: dict[str, list[HostnameAction]] = {}

    if not observed.offline:
        drift = find_drift(desired, scope, observed)
        if drift and not request.force:
            hostnames = sorted(m.hostname for pairs in drift.values() for m, _ in pairs)
            raise RemoteDriftError(
                "Remote ingress disagrees with local declaration for "
                f"{', '.join(hostnames)}; re-run with force to overwrite the remote side",
                hostnames=hostnames,
            )

        for hostname in scope:
            mapping = desired.get(hostname)
            records = observed.records_for(hostname)
            if mapping is not None:
                dns_actions = _dns_for_mapping(mapping, records)
                if dns_actions:
                    chains.setdefault(hostname, []).extend(dns_actions)
            else:
                previous = current.get(hostname)
                if previous is not None:
                    deletes = _dns_for_removal(previous, records)
                    if deletes:
                        chains.setdefault(hostname, []).extend(deletes)

        if request.sync_tunnel is not None:
            for hostname, deletes in _orphans(request.sync_tunnel, desired, observed).items():
                chains.setdefault(hostname, []).extend(deletes)
    else:
        drift = {}

    ingress_changed = False
    for mapping in desired.mappings:
        previous = current.get(mapping.hostname)
        if previous != mapping:
            chains.setdefault(mapping.hostname, []).append(
                WriteIngress(hostname=mapping.hostname, mapping=mapping, previous=previous)
            )
            ingress_changed = True
    for previous in current.mappings:
        if desired.get(previous.hostname) is None:
            chains.setdefault(previous.hostname, []).append(
                RemoveIngress(hostname=previous.hostname, previous=previous)
            )
            ingress_changed = True

    actions: list = []
    for hostname in sorted(chains):
        actions.extend(chains[hostname])

    for tunnel_id in sorted(drift):
        pairs = drift[tunnel_id]
        rules = {
            mapping.hostname: rule.model_copy(
                update={"service": mapping.service, "path": mapping.path}
            )
            for mapping, rule in pairs
        }
        actions.append(
            PushRemoteIngress(
                tunnel_id=tunnel_id,
                hostnames=tuple(sorted(rules)),
                configuration=observed.remote_ingress[tunnel_id].with_rules(rules),
            )
        )

    if ingress_changed and observed.service.is_running:
        actions.append(RestartService())

    plan = ReconciliationPlan(actions=tuple(actions))
    logger.debug("Plan computed", actions=len(plan), hostnames=len(plan.chains()))
    return plan


def is_tunnel_cname(content: str) -> bool:
    return content.rstrip(".").lower().endswith("." + TUNNEL_CNAME_SUFFIX)
