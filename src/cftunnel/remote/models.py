"""Typed views of control-plane resources."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..common.utils import tunnel_cname

CATCH_ALL_SERVICE = "http_status:404"


def _rule_key(hostname: str) -> str:
    return hostname.strip().rstrip(".").lower()


class RemoteModel(BaseModel):
    """Base for API payloads: tolerant of unknown fields, addressable by alias."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Account(RemoteModel):
    id: str
    name: str


class Zone(RemoteModel):
    id: str
    name: str
    status: str | None = None


class TunnelDescriptor(RemoteModel):
    """Observed copy of a remote tunnel. Never authoritative."""

    id: str = Field(min_length=1)
    name: str
    status: str | None = None
    created_at: str | None = None
    deleted_at: str | None = None
    credentials_ref: str | None = Field(
        default=None, description="Opaque handle to the tunnel's credentials"
    )
    zone_id: str | None = None

    @property
    def cname(self) -> str:
        return tunnel_cname(self.id)


class DnsRecord(RemoteModel):
    id: str
    hostname: str = Field(alias="name")
    record_type: str = Field(alias="type")
    content: str
    proxied: bool = False
    ttl: int | None = None

    def points_to(self, target: str, proxied: bool = True) -> bool:
        return (
            self.record_type.upper() == "CNAME"
            and self.content.rstrip(".").lower() == target.lower()
            and self.proxied == proxied
        )


class DnsRecordSpec(RemoteModel):
    """Body for creating or replacing a DNS record."""

    record_type: str = Field(default="CNAME", alias="type")
    name: str
    content: str
    proxied: bool = True
    ttl: int = Field(default=1, description="1 means automatic")

    @classmethod
    def tunnel_cname(cls, hostname: str, tunnel_id: str) -> "DnsRecordSpec":
        """Project a hostname onto the CNAME that routes it to ``tunnel_id``."""
        return cls(name=hostname, content=tunnel_cname(tunnel_id), proxied=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class IngressRule(BaseModel):
    """One rule of a tunnel's remotely stored ingress configuration."""

    model_config = ConfigDict(extra="allow")

    hostname: str | None = None
    service: str
    path: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class TunnelConfiguration(BaseModel):
    """A tunnel's remote configuration document.

    Fields other than ``ingress`` (``warp-routing``, ``originRequest``) are
    carried through unchanged so a push never drops them.
    """

    model_config = ConfigDict(extra="ignore")

    tunnel_id: str
    version: int | None = None
    ingress: list[IngressRule] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, tunnel_id: str, result: dict[str, Any] | None) -> "TunnelConfiguration":
        result = result or {}
        config = dict(result.get("config") or {})
        ingress = config.pop("ingress", None) or []
        return cls(
            tunnel_id=tunnel_id,
            version=result.get("version"),
            ingress=[IngressRule.model_validate(rule) for rule in ingress],
            extra=config,
        )

    @property
    def is_remotely_managed(self) -> bool:
        return bool(self.ingress)

    def rules_for_hostname(self) -> dict[str, list[IngressRule]]:
        """Group hostname rules in document order.

        Remote hostnames are keyed loosely (case and trailing dot) because the
        control plane accepts names local validation would reject.
        """
        rules: dict[str, list[IngressRule]] = {}
        for rule in self.ingress:
            if rule.hostname:
                rules.setdefault(_rule_key(rule.hostname), []).append(rule)
        return rules

    def with_rules(self, rules: dict[str, IngressRule]) -> "TunnelConfiguration":
        """Return a copy where each of ``rules`` is the only rule for its hostname.

        The replacement takes the position of the first existing rule for that
        hostname and any further rules for it are dropped. New hostnames are
        inserted before the catch-all, which stays last.
        """
        merged: list[IngressRule] = []
        pending = {_rule_key(hostname): rule for hostname, rule in rules.items()}
        replaced: set[str] = set()
        catch_all: IngressRule | None = None
        for rule in self.ingress:
            if rule.hostname is None:
                catch_all = rule
                continue
            key = _rule_key(rule.hostname)
            if key in replaced:
                continue
            if key in pending:
                merged.append(pending.pop(key))
                replaced.add(key)
            else:
                merged.append(rule)
        merged.extend(pending.values())
        merged.append(catch_all or IngressRule(service=CATCH_ALL_SERVICE))
        return self.model_copy(update={"ingress": merged})

    def to_payload(self) -> dict[str, Any]:
        config = dict(self.extra)
        config["ingress"] = [rule.to_payload() for rule in self.ingress]
        return {"config": config}


class AccessApplication(RemoteModel):
    id: str | None = None
    name: str
    domain: str
    app_type: str = Field(default="self_hosted", alias="type")
    session_duration: str = "24h"

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"id"})


class AccessPolicyRule(BaseModel):
    """One include/exclude/require selector."""

    model_config = ConfigDict(extra="allow")

    email: dict[str, str] | None = None
    email_domain: dict[str, str] | None = None
    everyone: dict[str, Any] | None = None

    @classmethod
    def for_email(cls, email: str) -> "AccessPolicyRule":
        return cls(email={"email": email})

    @classmethod
    def for_email_domain(cls, domain: str) -> "AccessPolicyRule":
        return cls(email_domain={"domain": domain})

    @classmethod
    def for_everyone(cls) -> "AccessPolicyRule":
        return cls(everyone={})


class AccessPolicy(RemoteModel):
    id: str | None = None
    name: str
    decision: str = "allow"
    include: list[AccessPolicyRule] = Field(default_factory=list)
    exclude: list[AccessPolicyRule] = Field(default_factory=list)
    require: list[AccessPolicyRule] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude={"id"}, exclude_none=True)
