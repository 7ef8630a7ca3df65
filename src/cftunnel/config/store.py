"""On-disk store for the ingress declaration file."""

import os
import stat
import tempfile
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..common.exceptions import (
    ConfigNotFoundError,
    ConfigParseError,
    ConfigWriteError,
)
from ..common.logging import get_logger
from .lock import FileLock
from .models import ConfigSnapshot

logger = get_logger(__name__)

DEFAULT_FILE_MODE = 0o644

FILE_HEADER = "# Managed by cftunnel. Edits are picked up on the next reconciliation.\n"


class ConfigStore:
    """Reads, validates and atomically rewrites the ingress declaration file.

    The path is injected; platform resolution happens in settings. Writers
    must hold ``lock()`` for the whole load-plan-apply-save cycle.
    """

    def __init__(self, path: str | Path, lock_timeout: float = 10.0):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = lock_timeout

    def lock(self, timeout: float | None = None) -> FileLock:
        """Return an unacquired lock guarding this file; use as a context manager."""
        return FileLock(
            self.lock_path,
            timeout=self.lock_timeout if timeout is None else timeout,
        )

    def exists(self) -> bool:
        return self.path.exists()

    def load(self, missing_ok: bool = False) -> ConfigSnapshot:
        """Load and validate the declaration file.

        Args:
            missing_ok: Return an empty snapshot instead of raising when absent

        Raises:
            ConfigNotFoundError: If the file does not exist
            ConfigParseError: If YAML or schema validation fails
        """
        if not self.path.exists():
            if missing_ok:
                logger.debug("Ingress file absent, starting empty", path=str(self.path))
                return ConfigSnapshot()
            raise ConfigNotFoundError(
                f"Ingress config not found at {self.path}", path=str(self.path)
            )

        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigParseError(
                f"Failed to read {self.path}: {e}", path=str(self.path)
            ) from e

        try:
            data = yaml.safe_load(text)
            snapshot = ConfigSnapshot.from_document(data)
        except (yaml.YAMLError, ValidationError, ValueError) as e:
            raise ConfigParseError(
                f"Failed to parse {self.path}: {e}", path=str(self.path)
            ) from e

        logger.debug(
            "Ingress file loaded", path=str(self.path), mappings=len(snapshot.mappings)
        )
        return snapshot

    def save(self, snapshot: ConfigSnapshot) -> None:
        """Atomically replace the declaration file with ``snapshot``.

        The document is written to a temporary file in the same directory,
        flushed to disk, then renamed over the target, so readers observe
        either the old file or the new one.

        Raises:
            ConfigWriteError: If any step fails; the previous file is untouched
        """
        try:
            # Re-validate so an invalid snapshot can never reach disk
            ConfigSnapshot.model_validate(snapshot.model_dump(by_alias=True))
            body = yaml.safe_dump(
                snapshot.to_document(), sort_keys=False, default_flow_style=False
            )
        except (ValidationError, yaml.YAMLError) as e:
            raise ConfigWriteError(
                f"Refusing to write invalid config: {e}", path=str(self.path)
            ) from e

        mode = self._current_mode()
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=directory, prefix=f".{self.path.name}.", suffix=".tmp"
            )
        except OSError as e:
            raise ConfigWriteError(
                f"Failed to create temp file in {directory}: {e}", path=str(self.path)
            ) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(FILE_HEADER)
                f.write(body)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(temp_path, mode)
            self._replace(temp_path)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise ConfigWriteError(
                f"Failed to write {self.path}: {e}", path=str(self.path)
            ) from e

        self._fsync_directory(directory)
        logger.info(
            "Ingress file saved",
            path=str(self.path),
            mappings=len(snapshot.mappings),
            fingerprint=snapshot.fingerprint[:12],
        )

    def _replace(self, temp_path: str) -> None:
        os.replace(temp_path, self.path)

    def _current_mode(self) -> int:
        try:
            return stat.S_IMODE(self.path.stat().st_mode)
        except OSError:
            return DEFAULT_FILE_MODE

    @staticmethod
    def _fsync_directory(directory: Path) -> None:
        """Persist the rename itself where the platform allows it."""
        if os.name != "posix":
            return
        try:
            dir_fd = os.open(directory, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(dir_fd)
        except OSError:
            pass
        finally:
            os.close(dir_fd)
