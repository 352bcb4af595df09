"""Configuration management for the users service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

from .database import resolve_database_path

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}

# Environment variable -> settings field.
_ENV_KEYS: Dict[str, str] = {
    "USERAPI_DB_PATH": "database_path",
    "USERAPI_HOST": "host",
    "PORT": "port",
    "USERAPI_POOL_SIZE": "pool_size",
    "USERAPI_REQUEST_TIMEOUT": "request_timeout",
    "USERAPI_CORS_ORIGINS": "cors_origins",
    "USERAPI_LOG_LEVEL": "log_level",
}


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the HTTP service and its database."""

    database_path: Path = field(default_factory=lambda: resolve_database_path(None))
    host: str = "0.0.0.0"
    port: int = 8080
    pool_size: int = 5
    request_timeout: float = 10.0
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw dictionary data, validating each value."""

        unknown = set(data.keys()) - set(_ENV_KEYS.values())
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        return _apply(Settings(), data, base_path)


def _apply(settings: Settings, data: Mapping[str, object], base_path: Path | None) -> Settings:
    changes: Dict[str, object] = {}

    if data.get("database_path") is not None:
        raw_path = Path(str(data["database_path"])).expanduser()
        if not raw_path.is_absolute() and base_path is not None:
            raw_path = base_path / raw_path
        changes["database_path"] = raw_path.resolve(strict=False)

    if data.get("host") is not None:
        host = str(data["host"]).strip()
        if not host:
            raise ValueError("host must not be empty")
        changes["host"] = host

    if data.get("port") is not None:
        port = _to_int("port", data["port"])
        if not 1 <= port <= 65535:
            raise ValueError("port must be between 1 and 65535")
        changes["port"] = port

    if data.get("pool_size") is not None:
        pool_size = _to_int("pool_size", data["pool_size"])
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        changes["pool_size"] = pool_size

    if data.get("request_timeout") is not None:
        try:
            timeout = float(data["request_timeout"])  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise ValueError("request_timeout must be a number of seconds") from exc
        if timeout <= 0:
            raise ValueError("request_timeout must be positive")
        changes["request_timeout"] = timeout

    if data.get("cors_origins") is not None:
        raw_origins = data["cors_origins"]
        if isinstance(raw_origins, str):
            origins = [item.strip() for item in raw_origins.split(",")]
        elif isinstance(raw_origins, (list, tuple)):
            origins = [str(item).strip() for item in raw_origins]
        else:
            raise ValueError("cors_origins must be a list or comma separated string")
        changes["cors_origins"] = tuple(origin for origin in origins if origin)

    if data.get("log_level") is not None:
        level = str(data["log_level"]).strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(sorted(_LOG_LEVELS))}")
        changes["log_level"] = level

    return replace(settings, **changes)


def _to_int(key: str, value: object) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be an integer") from exc


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "userapi.yaml").resolve(strict=False)
    return candidate


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build settings from defaults, an optional YAML file and the environment."""

    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get("USERAPI_CONFIG"))

    settings = Settings()
    if config_path.is_file():
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")
        settings = Settings.from_dict(raw, base_path=config_path.parent)

    overrides = {
        setting: env[name]
        for name, setting in _ENV_KEYS.items()
        if env.get(name, "").strip()
    }
    return _apply(settings, overrides, None)


__all__ = ["Settings", "load_settings", "resolve_config_path"]
