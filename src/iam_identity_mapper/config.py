"""Process settings for the identity mapper."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from iam_identity_mapper.mapping.models import BACKEND_MOUNTED_FILE, validate_backend_order

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class MapperSettings(BaseModel):
    """Where mappings come from and how reloads behave.

    ``config_path`` points at a full mapper config (cluster ID, partition,
    scrubbed accounts, inline mappings). Partition, cluster ID and backend
    mode set through the environment override the file; ``env_overrides``
    names the fields that were set that way.
    """

    config_path: str | None = Field(default=None)
    mapping_file: str | None = Field(
        default=None, description="Mounted mapRoles/mapUsers/mapAccounts file"
    )
    partition_id: str = Field(default="aws")
    cluster_id: str = Field(default="")
    backend_mode: tuple[str, ...] = Field(default=(BACKEND_MOUNTED_FILE,))
    reload_timeout_seconds: float = Field(default=10.0, gt=0, le=300)
    scrubbed_accounts: tuple[str, ...] = Field(default=())
    env_overrides: frozenset[str] = Field(default=frozenset())

    @field_validator("backend_mode")
    @classmethod
    def _validate_backend_mode(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(validate_backend_order(list(value)))


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    mapper: MapperSettings = Field(default_factory=MapperSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "config_path": "MAPPER_CONFIG_PATH",
    "mapping_file": "MAPPER_MAPPING_FILE",
    "partition_id": "MAPPER_PARTITION_ID",
    "cluster_id": "MAPPER_CLUSTER_ID",
    "backend_mode": "MAPPER_BACKEND_MODE",
    "reload_timeout": "MAPPER_RELOAD_TIMEOUT_SECONDS",
    "scrubbed_accounts": "MAPPER_SCRUBBED_ACCOUNTS",
}


# MapperSettings fields that take precedence over a MAPPER_CONFIG_PATH file.
OVERRIDABLE_FIELDS = ("partition_id", "cluster_id", "backend_mode")


def _split_csv_preserve_case(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = _project_root() / candidate
    return str(candidate.resolve())


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])
    config_path_env = os.getenv(ENV_KEYS["config_path"])
    mapping_file_env = os.getenv(ENV_KEYS["mapping_file"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "mapper": {
            "config_path": _resolve_path(config_path_env) if config_path_env else None,
            "mapping_file": _resolve_path(mapping_file_env) if mapping_file_env else None,
            "partition_id": os.getenv(ENV_KEYS["partition_id"], MapperSettings().partition_id),
            "cluster_id": os.getenv(ENV_KEYS["cluster_id"], MapperSettings().cluster_id),
            "backend_mode": tuple(
                _split_csv_preserve_case(os.getenv(ENV_KEYS["backend_mode"]))
                or MapperSettings().backend_mode
            ),
            "reload_timeout_seconds": _env_float(
                ENV_KEYS["reload_timeout"],
                MapperSettings().reload_timeout_seconds,
            ),
            "scrubbed_accounts": tuple(
                _split_csv_preserve_case(os.getenv(ENV_KEYS["scrubbed_accounts"]))
            ),
            "env_overrides": frozenset(
                name for name in OVERRIDABLE_FIELDS if os.getenv(ENV_KEYS[name], "").strip()
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    return settings
