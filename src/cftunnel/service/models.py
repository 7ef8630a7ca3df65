"""Observed state of the local agent service."""

import base64
import binascii
import json
import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

_TOKEN_PATTERN = re.compile(r"--token(?:=|\s+)[\"']?([A-Za-z0-9+/=_-]{20,})")


class ServiceStatus(str, Enum):
    """Service status enumeration."""

    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"
    UNKNOWN = "unknown"


class ServiceState(BaseModel):
    """Observed fresh on every cycle; never persisted."""

    model_config = ConfigDict(frozen=True)

    status: ServiceStatus = Field(default=ServiceStatus.UNKNOWN)
    active_tunnel_id: str | None = Field(
        default=None, description="Tunnel the running agent was started for"
    )

    @property
    def is_running(self) -> bool:
        return self.status == ServiceStatus.RUNNING


def tunnel_id_from_token(token: str) -> str | None:
    """Decode the tunnel id (``t``) from a cloudflared run token."""
    padded = token + "=" * (-len(token) % 4)
    try:
        payload = json.loads(base64.b64decode(padded, altchars=b"-_"))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    tunnel_id = payload.get("t")
    return tunnel_id if isinstance(tunnel_id, str) and tunnel_id else None


def tunnel_id_from_command_line(text: str) -> str | None:
    """Find ``--token <token>`` in a service command line and decode it."""
    match = _TOKEN_PATTERN.search(text)
    if match is None:
        return None
    return tunnel_id_from_token(match.group(1))
