"""launchd backend (macOS)."""

import os
import re
from pathlib import Path

from ..common.exceptions import ServiceError, ServiceNotInstalledError
from ..common.logging import get_logger
from .base import SERVICE_NAME, ServiceSupervisor
from .models import ServiceState, ServiceStatus, tunnel_id_from_command_line

logger = get_logger(__name__)

LAUNCHD_LABEL = "com.cloudflare.cloudflared"
HOMEBREW_LABEL = "homebrew.mxcl.cloudflared"

_STATE_PATTERN = re.compile(r"^\s*state = (.+)$", re.MULTILINE)
_EXIT_PATTERN = re.compile(r"last exit code = (-?\d+)")


class LaunchdSupervisor(ServiceSupervisor):
    """Controls the agent through launchctl.

    The service may be loaded in the system domain (installed as root) or in
    the user's gui domain (installed per-user or through Homebrew).
    """

    platform_name = "launchd"

    def __init__(self, *args, home: Path | None = None, uid: int | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.home = home or Path.home()
        if uid is None:
            uid = os.getuid() if hasattr(os, "getuid") else 0
        self.uid = uid

    def candidate_targets(self) -> list[str]:
        return [
            f"system/{LAUNCHD_LABEL}",
            f"gui/{self.uid}/{LAUNCHD_LABEL}",
            f"gui/{self.uid}/{HOMEBREW_LABEL}",
        ]

    def bootstrap_sources(self) -> list[tuple[str, Path]]:
        return [
            ("system", Path(f"/Library/LaunchDaemons/{LAUNCHD_LABEL}.plist")),
            (f"gui/{self.uid}", self.home / f"Library/LaunchAgents/{LAUNCHD_LABEL}.plist"),
            (f"gui/{self.uid}", self.home / f"Library/LaunchAgents/{HOMEBREW_LABEL}.plist"),
        ]

    def _find_loaded(self) -> tuple[str, str] | None:
        """Return (target, print output) of the first loaded service."""
        for target in self.candidate_targets():
            result = self.runner.run(["launchctl", "print", target], check=False)
            if result.ok:
                return target, result.stdout
        return None

    def _find_bootstrap_source(self) -> tuple[str, Path] | None:
        for domain, plist in self.bootstrap_sources():
            if plist.exists():
                return domain, plist
        return None

    def status(self) -> ServiceState:
        loaded = self._find_loaded()
        if loaded is None:
            if self._find_bootstrap_source() is not None:
                return ServiceState(status=ServiceStatus.STOPPED)
            raise ServiceNotInstalledError(
                f"{SERVICE_NAME} launchd service not loaded and no plist found"
            )

        _, output = loaded
        state_match = _STATE_PATTERN.search(output)
        state = state_match.group(1).strip() if state_match else ""
        if state == "running":
            status = ServiceStatus.RUNNING
        else:
            exit_match = _EXIT_PATTERN.search(output)
            exit_code = int(exit_match.group(1)) if exit_match else 0
            status = ServiceStatus.FAILED if exit_code != 0 else ServiceStatus.STOPPED

        return ServiceState(
            status=status,
            active_tunnel_id=tunnel_id_from_command_line(output),
        )

    def start(self) -> None:
        logger.info("Starting service", platform=self.platform_name)
        loaded = self._find_loaded()
        if loaded is None:
            source = self._find_bootstrap_source()
            if source is None:
                raise ServiceNotInstalledError(
                    f"No {SERVICE_NAME} plist found in common launchd paths"
                )
            domain, plist = source
            self.runner.run(["launchctl", "bootstrap", domain, str(plist)])
            loaded = self._find_loaded()
            if loaded is None:
                raise ServiceError(
                    "launchd bootstrap succeeded but no service target found"
                )
        self.runner.run(["launchctl", "kickstart", "-k", loaded[0]])

    def stop(self) -> None:
        logger.info("Stopping service", platform=self.platform_name)
        loaded = self._find_loaded()
        if loaded is None:
            raise ServiceNotInstalledError(f"No loaded {SERVICE_NAME} launchd service found")
        self.runner.run(["launchctl", "bootout", loaded[0]])

    def _issue_restart(self) -> None:
        loaded = self._find_loaded()
        if loaded is None:
            self.start()
            return
        self.runner.run(["launchctl", "kickstart", "-k", loaded[0]])

    def logs(self, lines: int = 50) -> str:
        result = self.runner.run(
            [
                "log",
                "show",
                "--last",
                "10m",
                "--predicate",
                f'process == "{SERVICE_NAME}"',
                "--style",
                "compact",
            ]
        )
        return "\n".join(result.stdout.splitlines()[-max(lines, 1):])
