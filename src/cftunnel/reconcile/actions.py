"""Plan actions and the ordered reconciliation plan.

Actions are grouped by scope:

* hostname chains: DNS changes followed by the ingress change for that
  hostname, executed sequentially and stopped at the first failure;
* tunnel actions: remote ingress overwrites, run after every chain;
* service actions: the single agent restart, run after the commit.
"""

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..config.models import IngressMapping
from ..remote.models import DnsRecordSpec, TunnelConfiguration


class ActionKind(str, Enum):
    """Action kind enumeration."""

    CREATE_DNS = "create_dns"
    UPDATE_DNS = "update_dns"
    DELETE_DNS = "delete_dns"
    WRITE_INGRESS = "write_ingress"
    REMOVE_INGRESS = "remove_ingress"
    PUSH_REMOTE_INGRESS = "push_remote_ingress"
    RESTART_SERVICE = "restart_service"


class BaseAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ActionKind

    def describe(self) -> str:
        return self.kind.value


class CreateDns(BaseAction):
    kind: Literal[ActionKind.CREATE_DNS] = ActionKind.CREATE_DNS
    hostname: str
    record: DnsRecordSpec

    def describe(self) -> str:
        return f"create DNS {self.record.record_type} {self.hostname} → {self.record.content}"


class UpdateDns(BaseAction):
    kind: Literal[ActionKind.UPDATE_DNS] = ActionKind.UPDATE_DNS
    hostname: str
    record_id: str
    record: DnsRecordSpec
    previous_content: str | None = None

    def describe(self) -> str:
        return (
            f"update DNS {self.hostname}: {self.previous_content or '?'} → "
            f"{self.record.content}"
        )


class DeleteDns(BaseAction):
    kind: Literal[ActionKind.DELETE_DNS] = ActionKind.DELETE_DNS
    hostname: str
    record_id: str
    content: str | None = None

    def describe(self) -> str:
        return f"delete DNS {self.hostname} → {self.content or '?'}"


class WriteIngress(BaseAction):
    kind: Literal[ActionKind.WRITE_INGRESS] = ActionKind.WRITE_INGRESS
    hostname: str
    mapping: IngressMapping
    previous: IngressMapping | None = None

    def describe(self) -> str:
        if self.previous is None:
            return f"add ingress {self.hostname} → {self.mapping.service}"
        return (
            f"change ingress {self.hostname}: {self.previous.service} → "
            f"{self.mapping.service}"
        )


class RemoveIngress(BaseAction):
    kind: Literal[ActionKind.REMOVE_INGRESS] = ActionKind.REMOVE_INGRESS
    hostname: str
    previous: IngressMapping

    def describe(self) -> str:
        return f"remove ingress {self.hostname} → {self.previous.service}"


class PushRemoteIngress(BaseAction):
    kind: Literal[ActionKind.PUSH_REMOTE_INGRESS] = ActionKind.PUSH_REMOTE_INGRESS
    tunnel_id: str
    hostnames: tuple[str, ...]
    configuration: TunnelConfiguration

    def describe(self) -> str:
        return (
            f"overwrite remote ingress of tunnel {self.tunnel_id[:8]} for "
            f"{', '.join(self.hostnames)}"
        )


class RestartService(BaseAction):
    kind: Literal[ActionKind.RESTART_SERVICE] = ActionKind.RESTART_SERVICE
    reason: str = "ingress changed"

    def describe(self) -> str:
        return f"restart agent service ({self.reason})"


HostnameAction = CreateDns | UpdateDns | DeleteDns | WriteIngress | RemoveIngress

Action = Annotated[
    CreateDns
    | UpdateDns
    | DeleteDns
    | WriteIngress
    | RemoveIngress
    | PushRemoteIngress
    | RestartService,
    Field(discriminator="kind"),
]

DNS_KINDS = frozenset({ActionKind.CREATE_DNS, ActionKind.UPDATE_DNS, ActionKind.DELETE_DNS})
INGRESS_KINDS = frozenset({ActionKind.WRITE_INGRESS, ActionKind.REMOVE_INGRESS})


class ReconciliationPlan(BaseModel):
    """Ordered actions for one cycle. Transient; never persisted."""

    model_config = ConfigDict(frozen=True)

    actions: tuple[Action, ...] = Field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def __len__(self) -> int:
        return len(self.actions)

    def chains(self) -> dict[str, list[HostnameAction]]:
        """Hostname-scoped actions grouped per hostname, preserving plan order."""
        chains: dict[str, list[HostnameAction]] = {}
        for action in self.actions:
            hostname = getattr(action, "hostname", None)
            if hostname is not None:
                chains.setdefault(hostname, []).append(action)
        return chains

    @property
    def tunnel_actions(self) -> list[PushRemoteIngress]:
        return [a for a in self.actions if isinstance(a, PushRemoteIngress)]

    @property
    def restart(self) -> RestartService | None:
        for action in self.actions:
            if isinstance(action, RestartService):
                return action
        return None

    @property
    def hostnames(self) -> list[str]:
        names = list(self.chains())
        for action in self.tunnel_actions:
            names.extend(h for h in action.hostnames if h not in names)
        return names

    def of_kind(self, kind: ActionKind) -> list[BaseAction]:
        return [a for a in self.actions if a.kind == kind]

    def describe(self) -> list[str]:
        return [action.describe() for action in self.actions]
