"""Runtime settings and the persisted credential file.

Priority (highest to lowest):
1. Environment variables (CFT_*)
2. Credential file (~/.cft/config.json)
3. Default values
"""

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from ..common.exceptions import SettingsError
from ..common.logging import get_logger
from ..common.utils import mask_token

logger = get_logger(__name__)

# Fields written back to the credential file; the rest are tunables
PERSISTED_FIELDS = ("api_token", "account_id", "zone_id", "zone_name", "tunnel_id")


def default_config_dir() -> Path:
    return Path.home() / ".cft"


def default_credentials_path() -> Path:
    return default_config_dir() / "config.json"


def default_ingress_path(platform: str | None = None) -> Path:
    """Return the platform's default ingress declaration path."""
    platform = platform or sys.platform
    if platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "cftunnel" / "ingress.yml"
    if platform == "win32":
        program_data = os.environ.get("PROGRAMDATA", r"C:\ProgramData")
        return Path(program_data) / "cftunnel" / "ingress.yml"
    return Path("/etc/cftunnel/ingress.yml")


class Settings(BaseSettings):
    """Credentials, identifiers and engine tunables."""

    model_config = SettingsConfigDict(
        env_prefix="CFT_",
        extra="ignore",
    )

    # Control-plane credentials
    api_token: str | None = Field(default=None, description="Bearer API token")
    account_id: str | None = Field(default=None, description="Account identifier")
    zone_id: str | None = Field(default=None, description="DNS zone identifier")
    zone_name: str | None = Field(default=None, description="DNS zone name")
    tunnel_id: str | None = Field(
        default=None, description="Default tunnel for new mappings"
    )

    # Local files
    ingress_path: Path = Field(
        default_factory=default_ingress_path,
        description="Ingress declaration file",
    )

    # Engine tunables
    lock_timeout: float = Field(default=10.0, gt=0, description="Store lock wait (s)")
    max_workers: int = Field(default=4, ge=1, le=32, description="Parallel hostname chains")
    cycle_timeout: float | None = Field(
        default=None, gt=0, description="Cancel a cycle after this many seconds"
    )

    # Remote client tunables
    request_timeout: float = Field(default=30.0, gt=0, description="Per-call timeout (s)")
    retry_attempts: int = Field(default=5, ge=1, le=10, description="Attempts per call")

    # Service tunables
    service_timeout: float = Field(default=30.0, gt=0, description="Per-command timeout (s)")
    restart_timeout: float = Field(default=30.0, gt=0, description="Restart poll budget (s)")
    metrics_url: str = Field(
        default="http://127.0.0.1:20241/metrics", description="Agent Prometheus endpoint"
    )

    log_level: str = Field(default="WARNING", description="Log level")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # File values arrive as init kwargs; environment must still win
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @property
    def is_api_configured(self) -> bool:
        return bool(self.api_token and self.account_id)

    @property
    def masked_token(self) -> str:
        return mask_token(self.api_token)

    def require_api(self) -> "Settings":
        """Raises SettingsError unless token and account id are set."""
        if not self.is_api_configured:
            raise SettingsError("API not configured. Run `tunnel config set` first.")
        return self

    def require_zone(self) -> "Settings":
        """Raises SettingsError unless token, account id and zone id are set."""
        self.require_api()
        if not self.zone_id:
            raise SettingsError("Zone ID not configured. Run `tunnel config set` first.")
        return self

    def persisted(self) -> dict[str, Any]:
        return {
            key: getattr(self, key)
            for key in PERSISTED_FIELDS
            if getattr(self, key) is not None
        }


def load_settings(config_file: str | Path | None = None) -> Settings:
    """Load settings from the credential file with environment overrides.

    Raises:
        SettingsError: If the file exists but cannot be parsed
    """
    config_path = Path(config_file) if config_file else default_credentials_path()

    file_config: dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SettingsError(f"Failed to parse {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise SettingsError(f"Failed to parse {config_path}: expected an object")
        file_config = {k: v for k, v in data.items() if k in Settings.model_fields}

    try:
        return Settings(**file_config)
    except ValidationError as e:
        raise SettingsError(f"Invalid settings: {e}") from e


def save_settings(settings: Settings, config_file: str | Path | None = None) -> Path:
    """Persist credentials with owner-only permissions (0600)."""
    config_path = Path(config_file) if config_file else default_credentials_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=config_path.parent, prefix=".config.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(settings.persisted(), f, indent=2)
            f.write("\n")
        if os.name == "posix":
            os.chmod(temp_path, 0o600)
        os.replace(temp_path, config_path)
    except OSError:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise

    logger.info("Credentials saved", path=str(config_path), api_token=settings.api_token)
    return config_path


def clear_settings(config_file: str | Path | None = None) -> bool:
    """Delete the credential file. Returns True if a file was removed."""
    config_path = Path(config_file) if config_file else default_credentials_path()
    if config_path.exists():
        config_path.unlink()
        return True
    return False
