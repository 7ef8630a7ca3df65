"""Platform-neutral interface to the supervised agent service."""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from ..common.exceptions import (
    ServiceError,
    ServiceNotInstalledError,
    ServiceTimeoutError,
)
from ..common.logging import get_logger
from .models import ServiceState, ServiceStatus
from .runner import CommandRunner, classify_failure

logger = get_logger(__name__)

SERVICE_NAME = "cloudflared"
AGENT_BINARY = "cloudflared"


class ServiceSupervisor(ABC):
    """Lifecycle control of the agent through the host's service manager.

    Subclasses implement one platform each. ``restart()`` is shared: it
    issues the platform restart and then polls ``status()`` until the agent
    reports Running or ``restart_timeout`` elapses.
    """

    platform_name: str = "generic"

    def __init__(
        self,
        runner: CommandRunner | None = None,
        restart_timeout: float = 30.0,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.runner = runner or CommandRunner()
        self.restart_timeout = restart_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    @abstractmethod
    def status(self) -> ServiceState:
        """Query the service manager.

        Raises:
            ServiceNotInstalledError: If no service is registered for the agent
            ServicePermissionError: If the query is refused
            ServiceTimeoutError: If the query hangs
        """

    @abstractmethod
    def start(self) -> None:
        """Start the service."""

    @abstractmethod
    def stop(self) -> None:
        """Stop the service."""

    @abstractmethod
    def _issue_restart(self) -> None:
        """Send the platform restart verb without waiting for the outcome."""

    @abstractmethod
    def logs(self, lines: int = 50) -> str:
        """Return the most recent agent log lines."""

    def restart(self) -> ServiceState:
        """Restart and wait until the agent reports Running.

        Raises:
            ServiceTimeoutError: If Running is not observed within restart_timeout
        """
        logger.info("Restarting service", platform=self.platform_name)
        self._issue_restart()
        return self.wait_until_running(self.restart_timeout)

    def wait_until_running(self, timeout: float) -> ServiceState:
        deadline = self._clock() + timeout
        state = ServiceState()
        while True:
            state = self.status()
            if state.is_running:
                logger.info(
                    "Service running",
                    platform=self.platform_name,
                    tunnel_id=state.active_tunnel_id,
                )
                return state
            if self._clock() >= deadline:
                break
            self._sleep(self.poll_interval)

        raise ServiceTimeoutError(
            f"{SERVICE_NAME} did not report running within {timeout:.1f}s "
            f"(last status: {state.status.value})"
        )

    def is_running(self) -> bool:
        return self.status().is_running

    def install(self, token: str, reinstall: bool = False) -> None:
        """Register the agent as a system service bound to a tunnel token.

        Args:
            token: Tunnel run token
            reinstall: Replace an existing installation bound to another tunnel

        Raises:
            ServiceError: If a service is already installed and reinstall is False
        """
        result = self.runner.run([AGENT_BINARY, "service", "install", token], check=False)
        if result.ok:
            logger.info("Service installed", platform=self.platform_name)
            return

        if "already installed" not in result.output.lower():
            raise classify_failure(result)

        if not reinstall:
            raise ServiceError(
                f"{SERVICE_NAME} service is already installed; pass reinstall to replace it"
            )

        logger.warning("Replacing existing service installation", platform=self.platform_name)
        self.uninstall()
        self.runner.run([AGENT_BINARY, "service", "install", token])
        logger.info("Service reinstalled", platform=self.platform_name)

    def uninstall(self) -> None:
        self.runner.run([AGENT_BINARY, "service", "uninstall"])
        logger.info("Service uninstalled", platform=self.platform_name)

    def observe(self) -> ServiceState:
        """Status for reconciliation: a missing service observes as Stopped."""
        try:
            return self.status()
        except ServiceNotInstalledError:
            logger.info("Service not installed, treating as stopped")
            return ServiceState(status=ServiceStatus.STOPPED)
