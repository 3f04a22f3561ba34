from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import os
import yaml


class ConfigError(RuntimeError):
    """Raised when the configuration file is invalid."""


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    logger_channel_id: Optional[int] = None


@dataclass(slots=True)
class ManualDefaults:
    duration_minutes: int = 1440


@dataclass(slots=True)
class StorageConfig:
    path: Path = Path("data") / "giveaways.sqlite"


@dataclass(slots=True)
class ConclusionConfig:
    store_retry_attempts: int = 3
    store_retry_delay_seconds: float = 0.5


@dataclass(slots=True)
class RecoveryConfig:
    sweep_interval_minutes: int = 1


@dataclass(slots=True)
class PermissionsConfig:
    development_guild_id: Optional[int] = None


@dataclass(slots=True)
class Config:
    token: str
    application_id: int
    default_timezone: str = "UTC"
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    manual_defaults: ManualDefaults = field(default_factory=ManualDefaults)
    storage: StorageConfig = field(default_factory=StorageConfig)
    conclusion: ConclusionConfig = field(default_factory=ConclusionConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ConfigError(f"Missing required config key: {key}")
    return data[key]

def _resolve_env_value(value: str, key: str) -> str:
    trimmed = value.strip()
    if trimmed.startswith("${") and trimmed.endswith("}"):
        env_name = trimmed[2:-1].strip()
        if not env_name:
            raise ConfigError(f"Environment reference for '{key}' is empty.")
        env_value = os.getenv(env_name)
        if env_value is None:
            raise ConfigError(
                f"Environment variable '{env_name}' referenced by '{key}' is not set."
            )
        return env_value
    return value

def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"{key} must be a mapping.")
    return section


def _optional_id(value: Any, key: str) -> Optional[int]:
    if value in (None, "", 0):
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer ID or null.") from exc
    if parsed <= 0:
        raise ConfigError(f"{key} must be a positive integer.")
    return parsed


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO"))
    logger_channel_id = data.get("logger_channel_id")
    if logger_channel_id is not None and not isinstance(logger_channel_id, int):
        raise ConfigError(
            "logging.logger_channel_id must be an integer channel ID or null."
        )
    return LoggingConfig(level=level, logger_channel_id=logger_channel_id)


def _parse_manual_defaults(data: Dict[str, Any]) -> ManualDefaults:
    duration = data.get("duration_minutes", 1440)
    if not isinstance(duration, int) or duration <= 0:
        raise ConfigError(
            "manual_defaults.duration_minutes must be a positive integer."
        )
    return ManualDefaults(duration_minutes=duration)


def _parse_storage(data: Dict[str, Any]) -> StorageConfig:
    raw_path = data.get("path")
    if raw_path in (None, ""):
        return StorageConfig()
    return StorageConfig(path=Path(str(raw_path)))


def _parse_conclusion(data: Dict[str, Any]) -> ConclusionConfig:
    attempts = data.get("store_retry_attempts", 3)
    if not isinstance(attempts, int) or attempts < 1:
        raise ConfigError("conclusion.store_retry_attempts must be an integer >= 1.")
    try:
        delay = float(data.get("store_retry_delay_seconds", 0.5))
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            "conclusion.store_retry_delay_seconds must be a number."
        ) from exc
    if delay < 0:
        raise ConfigError("conclusion.store_retry_delay_seconds must not be negative.")
    return ConclusionConfig(store_retry_attempts=attempts, store_retry_delay_seconds=delay)


def _parse_recovery(data: Dict[str, Any]) -> RecoveryConfig:
    interval = data.get("sweep_interval_minutes", 1)
    if not isinstance(interval, int) or interval < 1:
        raise ConfigError("recovery.sweep_interval_minutes must be an integer >= 1.")
    return RecoveryConfig(sweep_interval_minutes=interval)


def _parse_permissions(data: Dict[str, Any]) -> PermissionsConfig:
    return PermissionsConfig(
        development_guild_id=_optional_id(
            data.get("development_guild_id"), "permissions.development_guild_id"
        )
    )


def load_config(path: Path) -> Config:
    if not path.exists():
        raise ConfigError(f"Config file {path} does not exist.")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping at the root.")

    token_raw = str(_require(data, "token"))
    token = _resolve_env_value(token_raw, "token").strip()
    if not token:
        raise ConfigError("token must not be empty.")
    try:
        application_id = int(_require(data, "application_id"))
    except (TypeError, ValueError) as exc:
        raise ConfigError("application_id must be an integer.") from exc
    default_timezone = str(data.get("default_timezone", "UTC"))
    try:
        ZoneInfo(default_timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Invalid timezone configured: {default_timezone}") from exc

    return Config(
        token=token,
        application_id=application_id,
        default_timezone=default_timezone,
        logging=_parse_logging(_section(data, "logging")),
        manual_defaults=_parse_manual_defaults(_section(data, "manual_defaults")),
        storage=_parse_storage(_section(data, "storage")),
        conclusion=_parse_conclusion(_section(data, "conclusion")),
        recovery=_parse_recovery(_section(data, "recovery")),
        permissions=_parse_permissions(_section(data, "permissions")),
    )
