"""Command execution for service-manager verbs."""

import subprocess
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict

from ..common.exceptions import (
    ServiceError,
    ServiceNotInstalledError,
    ServicePermissionError,
    ServiceTimeoutError,
)
from ..common.logging import get_logger
from ..common.utils import mask_sensitive_data

logger = get_logger(__name__)

PERMISSION_MARKERS = (
    "permission denied",
    "access is denied",
    "interactive authentication required",
    "operation not permitted",
    "must be run as root",
    "must be root",
    "not privileged",
)

NOT_INSTALLED_MARKERS = (
    "could not be found",
    "not-found",
    "not found",
    "does not exist",
    "not loaded",
    "no such process",
    "not installed",
    "failed 1060",
)


class CommandResult(BaseModel):
    """Captured outcome of one service-manager command."""

    model_config = ConfigDict(frozen=True)

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return f"{self.stdout}{self.stderr}"


def _display_args(args: Sequence[str]) -> list[str]:
    """Mask the value after --token and a bare token argument to ``service install``."""
    shown: list[str] = []
    mask_next = False
    for index, arg in enumerate(args):
        if mask_next or (index >= 2 and args[index - 1] == "install" and len(arg) > 40):
            shown.append(mask_sensitive_data(arg))
            mask_next = False
            continue
        shown.append(arg)
        mask_next = arg == "--token"
    return shown


def classify_failure(result: CommandResult) -> ServiceError:
    """Map a failed command to the most specific ServiceError."""
    text = result.output.lower()
    command = " ".join(_display_args(result.args))
    detail = result.output.strip() or f"exit status {result.returncode}"
    if any(marker in text for marker in PERMISSION_MARKERS):
        return ServicePermissionError(f"Permission denied running '{command}': {detail}")
    if any(marker in text for marker in NOT_INSTALLED_MARKERS):
        return ServiceNotInstalledError(f"Service not installed ('{command}'): {detail}")
    return ServiceError(f"'{command}' failed: {detail}")


class CommandRunner:
    """Runs service-manager commands with a bounded timeout."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def run(
        self,
        args: Sequence[str],
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            args: Command and arguments
            timeout: Override for the default timeout
            check: Raise on a non-zero exit status

        Raises:
            ServiceNotInstalledError: If the executable is missing
            ServicePermissionError: If the OS or service manager refuses
            ServiceTimeoutError: If the command exceeds its timeout
            ServiceError: For other non-zero exits when ``check`` is set
        """
        timeout = self.timeout if timeout is None else timeout
        logger.debug("Running command", args=_display_args(args), timeout=timeout)
        try:
            completed = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise ServiceNotInstalledError(f"Executable not found: {args[0]}") from e
        except PermissionError as e:
            raise ServicePermissionError(f"Permission denied executing {args[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise ServiceTimeoutError(
                f"'{' '.join(_display_args(args))}' timed out after {timeout:.1f}s"
            ) from e

        result = CommandResult(
            args=tuple(args),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if check and not result.ok:
            error = classify_failure(result)
            logger.warning(
                "Command failed",
                args=_display_args(args),
                returncode=result.returncode,
                error=type(error).__name__,
            )
            raise error
        return result
