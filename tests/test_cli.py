"""Tests for the command-line interface."""

import json
import logging
import os
from unittest.mock import Mock

import pytest
import structlog
from click.testing import CliRunner
from conftest import (
    ACCOUNT_ID,
    DNS_PATH,
    OTHER_TUNNEL_ID,
    TUNNEL_ID,
    TUNNELS_PATH,
    ZONE_ID,
    dns_record,
    envelope,
    error_response,
    tunnel_payload,
)
from httpx import Response

from cftunnel.cli import cli, exit_code_for
from cftunnel.common.exceptions import (
    ConfigParseError,
    MetricsUnavailableError,
    RemoteDriftError,
    ServiceError,
    ServiceTimeoutError,
    SettingsError,
    UnauthorizedError,
)
from cftunnel.common.utils import tunnel_cname
from cftunnel.reconcile import ExitCode
from cftunnel.service.metrics import ResponseCount, TunnelMetrics
from cftunnel.service.models import ServiceState, ServiceStatus

API_TOKEN = "abcd1234efgh5678"


@pytest.fixture(autouse=True)
def isolated(monkeypatch, supervisor):
    """No CFT_* leakage, no global logging setup, a mocked agent service."""
    for key in list(os.environ):
        if key.startswith("CFT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("cftunnel.cli.setup_logging", Mock())
    monkeypatch.setattr("cftunnel.cli.select_supervisor", Mock(return_value=supervisor))
    saved = structlog.get_config()
    structlog.configure(
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.WARNING),
    )
    yield
    structlog.configure(**saved)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "api_token": API_TOKEN,
                "account_id": ACCOUNT_ID,
                "zone_id": ZONE_ID,
                "tunnel_id": TUNNEL_ID,
            }
        )
    )
    return path


@pytest.fixture
def ingress(tmp_path):
    return tmp_path / "ingress.yml"


@pytest.fixture
def run(config_file, ingress):
    """Invoke the CLI against the temporary credential and ingress files."""
    runner = CliRunner()

    def invoke(*args, **kwargs):
        return runner.invoke(
            cli, ["--config", str(config_file), "--ingress", str(ingress), *args], **kwargs
        )

    return invoke


def serve(api, records=(), configuration=None):
    api.get(TUNNELS_PATH).mock(return_value=Response(200, json=envelope([tunnel_payload()])))
    config_route = api.get(f"{TUNNELS_PATH}/{TUNNEL_ID}/configurations")
    if configuration is None:
        config_route.mock(return_value=error_response(404, 1003, "Not found"))
    else:
        config_route.mock(return_value=Response(200, json=envelope(configuration)))
    api.get(DNS_PATH).mock(return_value=Response(200, json=envelope(list(records))))


class TestExitCodes:
    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (ConfigParseError("bad yaml"), ExitCode.CONFIG_ERROR),
            (SettingsError("no token"), ExitCode.CONFIG_ERROR),
            (RemoteDriftError("drift", hostnames=["a.example.com"]), ExitCode.CONFLICT),
            (UnauthorizedError("denied"), ExitCode.REMOTE_ERROR),
            (ServiceTimeoutError("slow"), ExitCode.SERVICE_ERROR),
        ],
    )
    def test_mapping(self, error, code):
        assert exit_code_for(error) == code


class TestIngressCommands:
    """Test map, unmap and show."""

    def test_show_empty(self, run):
        result = run("show")
        assert result.exit_code == 0
        assert "No mappings declared." in result.output

    def test_map_show_unmap(self, run, ingress, supervisor):
        result = run("map", "api.example.com", "http://localhost:8080")
        assert result.exit_code == 0, result.output
        assert "✓ api.example.com" in result.output
        assert "Service restarted." in result.output
        assert "Result: success" in result.output
        assert ingress.exists()

        result = run("show")
        assert "api.example.com" in result.output
        assert "http://localhost:8080" in result.output

        result = run("unmap", "api.example.com")
        assert result.exit_code == 0, result.output
        assert "No mappings declared." in run("show").output
        assert supervisor.restart.call_count == 2

    def test_map_twice_is_noop(self, run):
        run("map", "api.example.com", "http://localhost:8080")
        result = run("map", "api.example.com", "http://localhost:8080")
        assert result.exit_code == 0
        assert "Nothing to do." in result.output

    def test_map_with_path(self, run):
        run("map", "api.example.com", "http://localhost:8080", "--path", "^/v1")
        assert "path=^/v1" in run("show").output

    def test_force_requires_sync_dns(self, run, ingress, supervisor):
        result = run("map", "api.example.com", "http://localhost:8080", "--force")
        assert result.exit_code == 2
        assert "--sync-dns" in result.output
        assert not ingress.exists()
        supervisor.restart.assert_not_called()

    def test_dry_run(self, run, ingress, supervisor):
        result = run("map", "api.example.com", "http://localhost:8080", "--dry-run")
        assert result.exit_code == 0
        assert "Planned actions:" in result.output
        assert "1. add ingress api.example.com → http://localhost:8080" in result.output
        assert not ingress.exists()
        supervisor.restart.assert_not_called()

    def test_invalid_service(self, run):
        result = run("map", "api.example.com", "ftp://localhost:21")
        assert result.exit_code == 2
        assert "must use one of" in result.output

    def test_no_tunnel_selected(self, tmp_path, ingress):
        result = CliRunner().invoke(
            cli,
            ["--config", str(tmp_path / "none.json"), "--ingress", str(ingress),
             "map", "api.example.com", "http://localhost:8080"],
        )
        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert "No tunnel selected" in result.output

    def test_corrupt_declaration(self, run, ingress):
        ingress.write_text("- hostname: [unclosed\n")
        result = run("show")
        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert "Error:" in result.output

    def test_restart_failure_is_partial(self, run, supervisor):
        supervisor.restart.side_effect = ServiceTimeoutError("restart timed out")
        result = run("map", "api.example.com", "http://localhost:8080")
        assert result.exit_code == ExitCode.PARTIAL
        assert "restart timed out" in result.output

    def test_unsupported_platform_still_maps(self, run, ingress, monkeypatch):
        monkeypatch.setattr(
            "cftunnel.cli.select_supervisor",
            Mock(side_effect=ServiceError("Service management is currently supported on Linux only")),
        )
        result = run("map", "api.example.com", "http://localhost:8080")
        assert result.exit_code == 0, result.output
        assert ingress.exists()


class TestRemoteCommands:
    """Test commands that reach the control plane."""

    def test_map_with_dns(self, run, api):
        serve(api)
        create = api.post(DNS_PATH).mock(
            return_value=Response(
                200, json=envelope(dns_record("api.example.com", tunnel_cname(TUNNEL_ID)))
            )
        )
        result = run("map", "api.example.com", "http://localhost:8080", "--sync-dns")
        assert result.exit_code == 0, result.output
        assert create.called
        assert "create DNS CNAME api.example.com" in result.output

    def test_map_with_dns_failure(self, run, api, ingress):
        serve(api)
        api.post(DNS_PATH).mock(return_value=error_response(400, 9005, "invalid content"))
        result = run("map", "api.example.com", "http://localhost:8080", "--sync-dns")
        assert result.exit_code == ExitCode.FAILURE
        assert "✗ api.example.com" in result.output
        assert not ingress.exists()

    def test_drift_exits_with_conflict(self, run, api, ingress):
        run("map", "api.example.com", "http://localhost:8080")
        serve(
            api,
            [dns_record("api.example.com", tunnel_cname(TUNNEL_ID))],
            configuration={
                "config": {
                    "ingress": [
                        {"hostname": "api.example.com", "service": "http://localhost:9"},
                        {"service": "http_status:404"},
                    ]
                }
            },
        )
        result = run("dns", "sync")
        assert result.exit_code == ExitCode.CONFLICT
        assert "force" in result.output

    def test_remote_without_zone(self, tmp_path, ingress):
        config = tmp_path / "config.json"
        config.write_text(json.dumps({"api_token": API_TOKEN, "account_id": ACCOUNT_ID}))
        result = CliRunner().invoke(
            cli, ["--config", str(config), "--ingress", str(ingress), "dns", "list"]
        )
        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert "Zone ID not configured" in result.output

    def test_dns_list(self, run, api):
        api.get(DNS_PATH).mock(
            return_value=Response(
                200,
                json=envelope(
                    [
                        dns_record("api.example.com", tunnel_cname(TUNNEL_ID)),
                        dns_record("www.example.com", "192.0.2.1", record_type="A", proxied=False),
                    ]
                ),
            )
        )
        result = run("dns", "list")
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0].startswith("* CNAME")
        assert lines[1].startswith("  A")
        assert "dns-only" in lines[1]

    def test_tunnel_list(self, run, api):
        api.get(TUNNELS_PATH).mock(return_value=Response(200, json=envelope([tunnel_payload()])))
        result = run("tunnel", "list")
        assert result.exit_code == 0
        assert f"* {TUNNEL_ID}  home  (healthy)" in result.output

    def test_tunnel_delete_requires_confirmation(self, run, api):
        delete = api.delete(f"{TUNNELS_PATH}/{TUNNEL_ID}").mock(
            return_value=Response(200, json=envelope({"id": TUNNEL_ID}))
        )
        result = run("tunnel", "delete", TUNNEL_ID, input="n\n")
        assert result.exit_code == 1
        assert not delete.called

        result = run("tunnel", "delete", TUNNEL_ID, "--yes")
        assert result.exit_code == 0
        assert delete.called

    def test_dns_add_routes_to_tunnel(self, run, api):
        create = api.post(DNS_PATH).mock(
            return_value=Response(
                200, json=envelope(dns_record("app.example.com", tunnel_cname(TUNNEL_ID)))
            )
        )
        result = run("dns", "add", "app.example.com")
        assert result.exit_code == 0, result.output
        body = json.loads(create.calls.last.request.content)
        assert body["type"] == "CNAME"
        assert body["content"] == tunnel_cname(TUNNEL_ID)
        assert body["proxied"] is True
        assert "Created CNAME app.example.com" in result.output

    def test_dns_add_txt_is_never_proxied(self, run, api):
        create = api.post(DNS_PATH).mock(
            return_value=Response(
                200,
                json=envelope(
                    dns_record("example.com", "v=spf1 -all", record_type="TXT", proxied=False)
                ),
            )
        )
        result = run("dns", "add", "example.com", "v=spf1 -all", "--type", "txt")
        assert result.exit_code == 0, result.output
        assert json.loads(create.calls.last.request.content)["proxied"] is False

    def test_dns_add_needs_content_for_a(self, run, api):
        result = run("dns", "add", "app.example.com", "--type", "A")
        assert result.exit_code == 2
        assert "CONTENT is required" in result.output

    def test_dns_delete_by_name(self, run, api):
        api.get(DNS_PATH).mock(
            return_value=Response(
                200, json=envelope([dns_record("old.example.com", tunnel_cname(TUNNEL_ID))])
            )
        )
        delete = api.delete(f"{DNS_PATH}/rec-old.example.com").mock(
            return_value=Response(200, json=envelope({"id": "rec-old.example.com"}))
        )
        result = run("dns", "delete", "Old.Example.com", "--yes")
        assert result.exit_code == 0, result.output
        assert delete.called
        assert "Deleted CNAME old.example.com" in result.output

    def test_dns_delete_unknown_name(self, run, api):
        api.get(DNS_PATH).mock(return_value=Response(200, json=envelope([])))
        result = run("dns", "delete", "nope.example.com", "--yes")
        assert result.exit_code == ExitCode.REMOTE_ERROR
        assert "No DNS record named nope.example.com" in result.output

    def test_dns_delete_by_id(self, run, api):
        delete = api.delete(f"{DNS_PATH}/rec1").mock(
            return_value=Response(200, json=envelope({"id": "rec1"}))
        )
        result = run("dns", "delete", "rec1", "--yes")
        assert result.exit_code == 0, result.output
        assert delete.called

    def test_tunnel_switch(self, run, api, config_file, supervisor):
        api.get(f"{TUNNELS_PATH}/{OTHER_TUNNEL_ID}").mock(
            return_value=Response(200, json=envelope(tunnel_payload(OTHER_TUNNEL_ID, "office")))
        )
        api.get(f"{TUNNELS_PATH}/{OTHER_TUNNEL_ID}/token").mock(
            return_value=Response(200, json=envelope("eyJhIjoiYWNjIn0"))
        )
        result = run("tunnel", "switch", OTHER_TUNNEL_ID, "--reinstall-service")
        assert result.exit_code == 0, result.output
        assert "Switched to tunnel office" in result.output
        assert json.loads(config_file.read_text())["tunnel_id"] == OTHER_TUNNEL_ID
        supervisor.install.assert_called_once_with("eyJhIjoiYWNjIn0", reinstall=True)

    def test_tunnel_switch_unknown(self, run, api, config_file):
        before = config_file.read_text()
        api.get(f"{TUNNELS_PATH}/missing").mock(
            return_value=error_response(404, 1003, "Tunnel not found")
        )
        result = run("tunnel", "switch", "missing")
        assert result.exit_code == ExitCode.REMOTE_ERROR
        assert config_file.read_text() == before

    def test_unauthorized(self, run, api):
        api.get(TUNNELS_PATH).mock(return_value=error_response(401, 10000, "Authentication error"))
        result = run("tunnel", "list")
        assert result.exit_code == ExitCode.REMOTE_ERROR
        assert "Authentication error" in result.output

    def test_access_policy_needs_a_rule(self, run):
        result = run("access", "policy", "app-1")
        assert result.exit_code == 2
        assert "--email" in result.output

    def test_access_policy(self, run, api):
        create = api.post(f"/accounts/{ACCOUNT_ID}/access/apps/app-1/policies").mock(
            return_value=Response(
                200, json=envelope({"id": "pol-1", "name": "Allow", "decision": "allow"})
            )
        )
        result = run("access", "policy", "app-1", "--email", "me@example.com")
        assert result.exit_code == 0, result.output
        body = json.loads(create.calls.last.request.content)
        assert body["include"] == [{"email": {"email": "me@example.com"}}]


class TestServiceCommands:
    def test_status(self, run):
        result = run("service", "status")
        assert result.exit_code == 0
        assert "Status: running" in result.output
        assert TUNNEL_ID in result.output

    def test_unsupported_platform(self, run, monkeypatch):
        monkeypatch.setattr(
            "cftunnel.cli.select_supervisor",
            Mock(side_effect=ServiceError("Service management is currently supported on Linux only")),
        )
        result = run("service", "status")
        assert result.exit_code == ExitCode.SERVICE_ERROR

    def test_stop(self, run, supervisor):
        supervisor.observe.return_value = ServiceState(status=ServiceStatus.STOPPED)
        result = run("service", "stop")
        assert result.exit_code == 0
        supervisor.stop.assert_called_once()


class TestMonitoringCommands:
    """Test agent counters and the health check."""

    def test_stats(self, run, monkeypatch):
        fetch = Mock(
            return_value=TunnelMetrics(
                total_requests=12345,
                active_streams=4,
                responses=[ResponseCount(labels='status_code="200"', value=12000)],
            )
        )
        monkeypatch.setattr("cftunnel.cli.fetch_metrics", fetch)
        result = run("stats")
        assert result.exit_code == 0, result.output
        assert "Total requests:  12.3K" in result.output
        assert "Request errors:  -" in result.output
        assert 'status_code="200" = 12.0K' in result.output
        fetch.assert_called_once_with("http://127.0.0.1:20241/metrics")

    def test_stats_agent_unreachable(self, run, monkeypatch):
        monkeypatch.setattr(
            "cftunnel.cli.fetch_metrics",
            Mock(side_effect=MetricsUnavailableError("Cannot reach metrics endpoint")),
        )
        result = run("stats")
        assert result.exit_code == ExitCode.SERVICE_ERROR

    def test_monitor_survives_unreachable_agent(self, run, monkeypatch):
        fetch = Mock(
            side_effect=[
                MetricsUnavailableError("Cannot reach metrics endpoint"),
                TunnelMetrics(total_requests=7),
            ]
        )
        monkeypatch.setattr("cftunnel.cli.fetch_metrics", fetch)
        result = run("monitor", "--count", "2", "--interval", "0")
        assert result.exit_code == 0, result.output
        assert "Cannot reach metrics endpoint" in result.output
        assert "Requests:        7" in result.output
        assert "Monitor stopped." in result.output

    def test_check_healthy(self, run, api, ingress):
        api.get("/user/tokens/verify").mock(
            return_value=Response(200, json=envelope({"id": "tok", "status": "active"}))
        )
        result = run("check")
        assert result.exit_code == 0, result.output
        assert "Token" in result.output
        assert "0 mappings" in result.output

    def test_check_reports_failures(self, run, api, supervisor):
        api.get("/user/tokens/verify").mock(
            return_value=Response(200, json=envelope({"id": "tok", "status": "disabled"}))
        )
        supervisor.observe.return_value = ServiceState(status=ServiceStatus.STOPPED)
        result = run("check")
        assert result.exit_code == ExitCode.FAILURE
        assert "invalid or expired" in result.output
        assert "stopped" in result.output


class TestConfigCommands:
    """Test credential management."""

    def test_set_without_verify(self, tmp_path, ingress):
        config = tmp_path / "fresh" / "config.json"
        result = CliRunner().invoke(
            cli,
            ["--config", str(config), "--ingress", str(ingress), "config", "set",
             "--api-token", API_TOKEN, "--account-id", ACCOUNT_ID, "--no-verify"],
        )
        assert result.exit_code == 0, result.output
        assert json.loads(config.read_text()) == {
            "api_token": API_TOKEN,
            "account_id": ACCOUNT_ID,
        }

    def test_set_prompts_for_token(self, tmp_path, ingress):
        config = tmp_path / "config.json"
        result = CliRunner().invoke(
            cli,
            ["--config", str(config), "--ingress", str(ingress), "config", "set", "--no-verify"],
            input=f"{API_TOKEN}\n",
        )
        assert result.exit_code == 0, result.output
        assert json.loads(config.read_text())["api_token"] == API_TOKEN

    def test_set_verifies_and_resolves_zone(self, run, api, config_file):
        api.get("/user/tokens/verify").mock(
            return_value=Response(200, json=envelope({"id": "tok", "status": "active"}))
        )
        api.get("/zones").mock(
            return_value=Response(
                200,
                json=envelope(
                    [{"id": "zone-other", "name": "other.com"}, {"id": "zone-2", "name": "example.com"}]
                ),
            )
        )
        config_file.write_text(json.dumps({"api_token": API_TOKEN, "account_id": ACCOUNT_ID}))
        result = run("config", "set", "--zone-name", "example.com")
        assert result.exit_code == 0, result.output
        assert json.loads(config_file.read_text())["zone_id"] == "zone-2"

    def test_set_rejects_inactive_token(self, run, api, config_file):
        before = config_file.read_text()
        api.get("/user/tokens/verify").mock(
            return_value=Response(200, json=envelope({"id": "tok", "status": "disabled"}))
        )
        result = run("config", "set", "--tunnel-id", "other")
        assert result.exit_code == ExitCode.REMOTE_ERROR
        assert "not active" in result.output
        assert config_file.read_text() == before

    def test_test_active_token(self, run, api):
        api.get("/user/tokens/verify").mock(
            return_value=Response(200, json=envelope({"id": "tok", "status": "active"}))
        )
        api.get("/zones").mock(
            return_value=Response(200, json=envelope([{"id": ZONE_ID, "name": "example.com"}]))
        )
        result = run("config", "test")
        assert result.exit_code == 0, result.output
        assert "API token is active." in result.output
        assert "Zone example.com reachable." in result.output

    def test_test_rejected_token(self, run, api):
        api.get("/user/tokens/verify").mock(
            return_value=error_response(401, 1000, "Invalid API Token")
        )
        result = run("config", "test")
        assert result.exit_code == ExitCode.REMOTE_ERROR
        assert "not active" in result.output

    def test_show_masks_token(self, run):
        result = run("config", "show")
        assert result.exit_code == 0
        assert API_TOKEN not in result.output
        assert "abcd***...***5678" in result.output
        assert f"Zone ID:    {ZONE_ID}" in result.output

    def test_clear(self, run, config_file):
        result = run("config", "clear", "--yes")
        assert result.exit_code == 0
        assert "Credentials cleared." in result.output
        assert not config_file.exists()

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output
