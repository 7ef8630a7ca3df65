"""Declared ingress models.

An ``IngressMapping`` binds one public hostname to one local service through
one tunnel. A ``ConfigSnapshot`` is the whole declaration file in memory.
Both are immutable; edits produce new instances.
"""

import hashlib
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..common.utils import normalize_hostname, validate_service


class IngressMapping(BaseModel):
    """A declared hostname → local service rule."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    hostname: str = Field(description="Public hostname, unique across the file")
    service: str = Field(description="Local service URI, e.g. http://localhost:8080")
    tunnel_id: str = Field(
        alias="tunnel", min_length=1, description="Tunnel carrying this hostname"
    )
    path: str | None = Field(default=None, description="Optional path regex")

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v: str) -> str:
        return normalize_hostname(v)

    @field_validator("service")
    @classmethod
    def validate_service_target(cls, v: str) -> str:
        return validate_service(v)

    @field_validator("tunnel_id")
    @classmethod
    def strip_tunnel_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Tunnel id cannot be empty")
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    def to_document(self) -> dict[str, Any]:
        """Serialize to the on-disk mapping object."""
        doc: dict[str, Any] = {
            "hostname": self.hostname,
            "service": self.service,
            "tunnel": self.tunnel_id,
        }
        if self.path is not None:
            doc["path"] = self.path
        return doc

    def same_route(self, service: str, path: str | None) -> bool:
        """Compare the routed target, ignoring the tunnel."""
        return self.service.rstrip("/") == service.rstrip("/") and (
            self.path or None
        ) == (path or None)


class ConfigSnapshot(BaseModel):
    """The complete declared state, as loaded from or saved to disk."""

    model_config = ConfigDict(frozen=True)

    mappings: tuple[IngressMapping, ...] = Field(default_factory=tuple)

    @model_validator(mode="after")
    def check_unique_hostnames(self) -> "ConfigSnapshot":
        seen: set[str] = set()
        for mapping in self.mappings:
            if mapping.hostname in seen:
                raise ValueError(f"Duplicate hostname '{mapping.hostname}'")
            seen.add(mapping.hostname)
        return self

    @classmethod
    def from_document(cls, data: Any) -> "ConfigSnapshot":
        """Build a snapshot from the parsed YAML document.

        Raises:
            ValueError: If the document is not a list of mapping objects
            pydantic.ValidationError: If a mapping fails validation
        """
        if data is None:
            return cls()
        if not isinstance(data, list):
            raise ValueError("Ingress file must contain a list of mappings")
        return cls(mappings=tuple(IngressMapping.model_validate(item) for item in data))

    def to_document(self) -> list[dict[str, Any]]:
        return [mapping.to_document() for mapping in self.mappings]

    @property
    def fingerprint(self) -> str:
        """Content hash, stable across key order and formatting."""
        payload = json.dumps(self.to_document(), sort_keys=True)
        return hashlib.sha256(payload.encode()).hexdigest()

    @property
    def hostnames(self) -> list[str]:
        return [mapping.hostname for mapping in self.mappings]

    def get(self, hostname: str) -> IngressMapping | None:
        hostname = normalize_hostname(hostname)
        for mapping in self.mappings:
            if mapping.hostname == hostname:
                return mapping
        return None

    def for_tunnel(self, tunnel_id: str) -> list[IngressMapping]:
        return [m for m in self.mappings if m.tunnel_id == tunnel_id]

    def with_mapping(self, mapping: IngressMapping) -> "ConfigSnapshot":
        """Return a snapshot with ``mapping`` added or replacing its hostname.

        Replaced mappings keep their position so diffs of the file stay small.
        """
        mappings = list(self.mappings)
        for index, existing in enumerate(mappings):
            if existing.hostname == mapping.hostname:
                mappings[index] = mapping
                break
        else:
            mappings.append(mapping)
        return ConfigSnapshot(mappings=tuple(mappings))

    def without(self, hostname: str) -> "ConfigSnapshot":
        hostname = normalize_hostname(hostname)
        return ConfigSnapshot(
            mappings=tuple(m for m in self.mappings if m.hostname != hostname)
        )
