from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Simple settings container sourced from environment variables and an optional YAML file."""

    host: str
    port: int
    rpc_path: str

    # Feature toggles
    streaming_enabled: bool
    push_notifications_enabled: bool

    # Logging
    log_level: str
    log_file: Optional[str]

    config_path: Optional[Path] = None


def _read_yaml_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
            if not isinstance(data, dict):
                raise ValueError(f"YAML root must be a mapping, got {type(data).__name__}")
            return data
    except Exception as exc:
        logger.error("Failed to read YAML file %s: %s", path, exc)
        raise


def _parse_bool(raw: Any, name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _lookup(env_name: str, file_values: Dict[str, Any], key: str, default: Any) -> Any:
    """Environment wins over the config file, which wins over the default."""
    value = os.getenv(env_name)
    if value is not None:
        return value
    return file_values.get(key, default)


def load_settings() -> Settings:
    """Build settings from the environment without caching or validation."""
    config_path_raw = os.getenv("A2A_CONFIG_FILE")
    config_path = Path(config_path_raw) if config_path_raw else None
    file_values = _read_yaml_file(config_path) if config_path else {}

    log_file = _lookup("LOG_FILE", file_values, "log_file", None)

    return Settings(
        host=str(_lookup("A2A_HOST", file_values, "host", "0.0.0.0")),
        port=int(_lookup("A2A_PORT", file_values, "port", 8000)),
        rpc_path=str(_lookup("A2A_RPC_PATH", file_values, "rpc_path", "/")),
        streaming_enabled=_parse_bool(
            _lookup("A2A_STREAMING_ENABLED", file_values, "streaming_enabled", True),
            "A2A_STREAMING_ENABLED",
        ),
        push_notifications_enabled=_parse_bool(
            _lookup(
                "A2A_PUSH_NOTIFICATIONS_ENABLED",
                file_values,
                "push_notifications_enabled",
                False,
            ),
            "A2A_PUSH_NOTIFICATIONS_ENABLED",
        ),
        log_level=str(_lookup("LOG_LEVEL", file_values, "log_level", "INFO")).upper(),
        log_file=str(log_file) if log_file else None,
        config_path=config_path,
    )


def validate_settings(settings: Settings) -> None:
    """Validate settings and raise ValueError for invalid configurations."""
    errors = []

    if not 0 < settings.port < 65536:
        errors.append("A2A_PORT must be between 1 and 65535")

    if not settings.rpc_path.startswith("/"):
        errors.append("A2A_RPC_PATH must start with '/'")

    if settings.rpc_path.rstrip("/") == "/health":
        errors.append("A2A_RPC_PATH must not shadow the /health endpoint")

    if not isinstance(logging.getLevelName(settings.log_level), int):
        errors.append(f"LOG_LEVEL '{settings.log_level}' is not a known logging level")

    if settings.config_path is not None and not settings.config_path.exists():
        errors.append(f"A2A_CONFIG_FILE '{settings.config_path}' does not exist")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(
            f"  - {error}" for error in errors
        )
        raise ValueError(error_msg)


@lru_cache()
def get_settings() -> Settings:
    """Return cached and validated settings."""
    settings = load_settings()
    validate_settings(settings)
    return settings
