"""Shared pytest fixtures for cftunnel tests."""

from collections.abc import Generator
from typing import Any
from unittest.mock import Mock

import pytest
import respx
from httpx import Response

from cftunnel.config.models import ConfigSnapshot, IngressMapping
from cftunnel.config.store import ConfigStore
from cftunnel.remote.client import BASE_URL, RemoteStateClient
from cftunnel.remote.retry import RetryPolicy
from cftunnel.service.base import ServiceSupervisor
from cftunnel.service.models import ServiceState, ServiceStatus

TOKEN = "cf-test-token-0123456789abcdef"
ACCOUNT_ID = "acc0123456789"
ZONE_ID = "zone0123456789"
TUNNEL_ID = "6ff42ae2-765d-4adf-8112-31c55c1551ef"
OTHER_TUNNEL_ID = "0d1c6b4e-9a6f-4f7e-9a52-5b1f3d0c2e11"

TUNNELS_PATH = f"/accounts/{ACCOUNT_ID}/cfd_tunnel"
DNS_PATH = f"/zones/{ZONE_ID}/dns_records"


def envelope(result: Any = None, success: bool = True, errors: list | None = None, **extra):
    """Build a Cloudflare v4 response envelope."""
    body = {"success": success, "errors": errors or [], "messages": [], "result": result}
    body.update(extra)
    return body


def error_response(status: int, code: int, message: str) -> Response:
    return Response(
        status, json=envelope(None, success=False, errors=[{"code": code, "message": message}])
    )


def tunnel_payload(tunnel_id: str = TUNNEL_ID, name: str = "home") -> dict[str, Any]:
    return {
        "id": tunnel_id,
        "name": name,
        "status": "healthy",
        "created_at": "2024-01-01T00:00:00Z",
    }


def make_mapping(
    hostname: str = "api.example.com",
    service: str = "http://localhost:8080",
    tunnel: str = TUNNEL_ID,
    path: str | None = None,
) -> IngressMapping:
    return IngressMapping(hostname=hostname, service=service, tunnel=tunnel, path=path)


def dns_record(
    hostname: str,
    content: str,
    record_id: str | None = None,
    record_type: str = "CNAME",
    proxied: bool = True,
) -> dict[str, Any]:
    return {
        "id": record_id or f"rec-{hostname}",
        "name": hostname,
        "type": record_type,
        "content": content,
        "proxied": proxied,
        "ttl": 1,
    }


@pytest.fixture
def store(tmp_path) -> ConfigStore:
    """ConfigStore on a file inside tmp_path (file not yet created)."""
    return ConfigStore(tmp_path / "ingress.yml", lock_timeout=0.5)


@pytest.fixture
def seeded_store(store) -> ConfigStore:
    """ConfigStore with one declared mapping: api.example.com → :8080."""
    store.save(ConfigSnapshot(mappings=(make_mapping(),)))
    return store


@pytest.fixture
def api() -> Generator[respx.MockRouter, None, None]:
    """respx router for the Cloudflare API base URL."""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
        yield router


@pytest.fixture
def sleep() -> Mock:
    return Mock()


@pytest.fixture
def client(api, sleep) -> Generator[RemoteStateClient, None, None]:
    """RemoteStateClient with no real backoff sleeps."""
    remote = RemoteStateClient(
        api_token=TOKEN,
        account_id=ACCOUNT_ID,
        zone_id=ZONE_ID,
        retry_policy=RetryPolicy(jitter=0),
        sleep=sleep,
    )
    yield remote
    remote.close()


@pytest.fixture
def supervisor() -> Mock:
    """Supervisor double that reports a running agent."""
    mock = Mock(spec=ServiceSupervisor)
    mock.observe.return_value = ServiceState(status=ServiceStatus.RUNNING, active_tunnel_id=TUNNEL_ID)
    mock.restart.return_value = ServiceState(status=ServiceStatus.RUNNING)
    return mock
