"""Configuration loading and settings for the fleet snapshot service."""

from pathlib import Path

import yaml
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from fleet_snapshot.models import FleetFileConfig


def load_fleet_file(path: Path) -> FleetFileConfig:
    """Load and parse a fleet.yaml configuration file.

    Args:
        path: Path to the fleet.yaml file.

    Returns:
        Parsed FleetFileConfig.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If the configuration is invalid.
    """
    with path.open() as f:
        raw_config = yaml.safe_load(f)

    return FleetFileConfig.model_validate(raw_config or {})


def resolve_relative_paths(config: FleetFileConfig, base_dir: Path) -> FleetFileConfig:
    """Anchor roster and mapping paths to the directory of the config file.

    Absolute paths are left untouched.
    """

    def anchor(value: str | None) -> str | None:
        if not value or Path(value).is_absolute():
            return value
        return str(base_dir / value)

    return config.model_copy(
        update={
            "roster": config.roster.model_copy(update={"path": anchor(config.roster.path)}),
            "constraints": config.constraints.model_copy(
                update={"mapping_path": anchor(config.constraints.mapping_path)}
            ),
        }
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=True,
    )

    config_path: Path = Field(
        default=Path("./fleet.yaml"),
        validation_alias="CONFIG_PATH",
        description="Path to fleet.yaml configuration file",
    )

    # Upstream settings
    upstream_api_key: SecretStr | None = Field(
        default=None,
        validation_alias="UPSTREAM_API_KEY",
        description="Subscription key for the dispatch platform API",
    )

    # Runtime settings
    max_concurrent: int = Field(
        default=8,
        ge=1,
        le=100,
        validation_alias="MAX_CONCURRENT",
        description="Maximum number of concurrent upstream calls",
    )
    reload_interval_seconds: int = Field(
        default=900,
        ge=0,
        le=86400,
        validation_alias="RELOAD_INTERVAL_SECONDS",
        description="Seconds between roster/constraint table reloads (0 disables)",
    )

    # Server settings
    http_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        validation_alias="HTTP_PORT",
        description="Port for the snapshot, health and metrics server",
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_format: str = Field(
        default="json",
        validation_alias="LOG_FORMAT",
        description="Log output format (json or text)",
    )

    @property
    def api_key(self) -> str | None:
        if self.upstream_api_key is None:
            return None
        return self.upstream_api_key.get_secret_value()
