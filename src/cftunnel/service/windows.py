"""Windows Service Control Manager backend."""

import re

from ..common.exceptions import ServiceNotInstalledError
from ..common.logging import get_logger
from .base import SERVICE_NAME, ServiceSupervisor
from .models import ServiceState, ServiceStatus, tunnel_id_from_command_line
from .runner import classify_failure

logger = get_logger(__name__)

_STATE_PATTERN = re.compile(r"STATE\s*:\s*(\d+)\s+(\w+)")

# sc.exe numeric states
_SC_STATES = {
    "1": ServiceStatus.STOPPED,
    "2": ServiceStatus.UNKNOWN,  # START_PENDING
    "3": ServiceStatus.UNKNOWN,  # STOP_PENDING
    "4": ServiceStatus.RUNNING,
    "7": ServiceStatus.STOPPED,  # PAUSED
}


class WindowsServiceSupervisor(ServiceSupervisor):
    platform_name = "windows"

    def status(self) -> ServiceState:
        result = self.runner.run(["sc", "query", SERVICE_NAME], check=False)
        if "1060" in result.output:
            raise ServiceNotInstalledError(f"Windows service {SERVICE_NAME} does not exist")
        if not result.ok:
            raise classify_failure(result)

        match = _STATE_PATTERN.search(result.stdout)
        status = ServiceStatus.UNKNOWN
        if match:
            status = _SC_STATES.get(match.group(1), ServiceStatus.UNKNOWN)

        config = self.runner.run(["sc", "qc", SERVICE_NAME], check=False)
        return ServiceState(
            status=status,
            active_tunnel_id=tunnel_id_from_command_line(config.stdout) if config.ok else None,
        )

    def start(self) -> None:
        logger.info("Starting service", platform=self.platform_name)
        self.runner.run(["sc", "start", SERVICE_NAME])

    def stop(self) -> None:
        logger.info("Stopping service", platform=self.platform_name)
        self.runner.run(["sc", "stop", SERVICE_NAME])

    def _issue_restart(self) -> None:
        # sc has no restart verb; an already-stopped service fails stop with 1062
        result = self.runner.run(["sc", "stop", SERVICE_NAME], check=False)
        if not result.ok and "1062" not in result.output:
            raise classify_failure(result)
        self._wait_until_stopped()
        self.runner.run(["sc", "start", SERVICE_NAME])

    def _wait_until_stopped(self) -> None:
        deadline = self._clock() + self.restart_timeout
        while self._clock() < deadline:
            if self.status().status == ServiceStatus.STOPPED:
                return
            self._sleep(self.poll_interval)

    def logs(self, lines: int = 50) -> str:
        lines = max(lines, 1)
        script = (
            f"Get-WinEvent -LogName System -MaxEvents {lines * 10} | "
            "Where-Object { $_.ProviderName -eq 'Service Control Manager' "
            f"-and $_.Message -like '*{SERVICE_NAME}*' }} | "
            f"Select-Object -First {lines} TimeCreated, Id, LevelDisplayName, Message | "
            "Format-Table -AutoSize"
        )
        result = self.runner.run(["powershell", "-NoProfile", "-Command", script])
        return result.stdout
