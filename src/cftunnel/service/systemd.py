"""systemd backend (Linux)."""

from ..common.exceptions import ServiceNotInstalledError
from ..common.logging import get_logger
from .base import SERVICE_NAME, ServiceSupervisor
from .models import ServiceState, ServiceStatus, tunnel_id_from_command_line

logger = get_logger(__name__)

_ACTIVE_STATES = {
    "active": ServiceStatus.RUNNING,
    "reloading": ServiceStatus.RUNNING,
    "inactive": ServiceStatus.STOPPED,
    "deactivating": ServiceStatus.STOPPED,
    "failed": ServiceStatus.FAILED,
}


def parse_show_output(text: str) -> dict[str, str]:
    """Parse ``systemctl show`` KEY=VALUE lines."""
    properties: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            properties[key.strip()] = value.strip()
    return properties


class SystemdSupervisor(ServiceSupervisor):
    platform_name = "systemd"

    def status(self) -> ServiceState:
        result = self.runner.run(
            [
                "systemctl",
                "show",
                SERVICE_NAME,
                "--property=LoadState,ActiveState,ExecStart",
                "--no-pager",
            ]
        )
        properties = parse_show_output(result.stdout)
        if properties.get("LoadState") in ("not-found", "masked", None):
            raise ServiceNotInstalledError(
                f"systemd unit {SERVICE_NAME}.service is not installed"
            )

        status = _ACTIVE_STATES.get(properties.get("ActiveState", ""), ServiceStatus.UNKNOWN)
        return ServiceState(
            status=status,
            active_tunnel_id=tunnel_id_from_command_line(properties.get("ExecStart", "")),
        )

    def start(self) -> None:
        logger.info("Starting service", platform=self.platform_name)
        self.runner.run(["systemctl", "start", SERVICE_NAME, "--no-pager"])

    def stop(self) -> None:
        logger.info("Stopping service", platform=self.platform_name)
        self.runner.run(["systemctl", "stop", SERVICE_NAME, "--no-pager"])

    def _issue_restart(self) -> None:
        self.runner.run(["systemctl", "restart", SERVICE_NAME, "--no-pager"])

    def logs(self, lines: int = 50) -> str:
        result = self.runner.run(
            ["journalctl", "-u", SERVICE_NAME, "-n", str(max(lines, 1)), "--no-pager"]
        )
        return result.stdout
