"""Configuration loading from YAML files with environment variable support."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

import yaml
from dotenv import dotenv_values

from .core.exceptions import ConfigurationError

logger = logging.getLogger("oai-gateway")

# Default path to the config file (relative to project root)
DEFAULT_CONFIG_PATH = "configs/config_default.yaml"

# Environment variable to override the config path
CONFIG_PATH_ENV = "OAI_GATEWAY_CONFIG"
HOST_ENV = "OAI_GATEWAY_HOST"
PORT_ENV = "OAI_GATEWAY_PORT"

LOG_LEVELS = ("error", "warning", "info", "debug")
MAX_RETRY_ATTEMPTS = 11

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def resolve_config_path(path: str) -> Path:
    """Resolve config path relative to project root if needed."""
    if Path(path).is_absolute():
        return Path(path)
    project_root = Path(__file__).parent.parent
    return project_root / path


def resolve_env_path(config_path: Path, env_path: Optional[str] = None) -> Path:
    """Resolve the env file path for a config file."""
    if env_path:
        return resolve_config_path(env_path)
    stem = config_path.stem
    if stem.startswith("config_"):
        suffix = stem[len("config_"):]
        return config_path.with_name(f".env_{suffix}")
    return config_path.with_name(".env")


def load_env_values(env_path: Path) -> dict[str, str]:
    """Load environment values from a .env file without mutating os.environ."""
    if not env_path.exists():
        return {}
    raw_values = dotenv_values(env_path)
    return {key: value for key, value in raw_values.items() if value is not None}


def load_config(
    path: Optional[str] = None,
    env_path: Optional[str] = None,
    substitute_env: bool = True,
) -> dict:
    """Load configuration from a YAML file.

    Args:
        path: Path to the config file. Defaults to $OAI_GATEWAY_CONFIG,
              or configs/config_default.yaml in the project root.
        env_path: Optional .env path override for env substitution.
        substitute_env: Whether to substitute environment variables in the config.

    Returns:
        Parsed configuration dictionary.
    """
    if path is None:
        path = os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH

    config_path = resolve_config_path(path)

    logger.info(f"Loading configuration from {config_path}")

    if not config_path.exists():
        logger.error(f"Config file not found: {config_path}")
        raise ConfigurationError(f"Config file not found: {config_path}")

    env_values: dict[str, str] = {}
    if substitute_env:
        env_file = resolve_env_path(config_path, env_path)
        if env_file.exists():
            logger.info(f"Loading environment variables from {env_file}")
            env_values = load_env_values(env_file)

    with config_path.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    if substitute_env:
        data = _substitute_env_vars(data, env_values)

    logger.info(f"Configuration loaded successfully from {config_path}")
    return data


def _substitute_env_vars(
    obj: Any, env_values: Optional[Mapping[str, str]] = None
) -> Any:
    """Recursively substitute environment variables in configuration values.

    Supports ``${VAR_NAME}`` and ``$VAR_NAME``. Values from the .env file win
    over the process environment; unset variables are left as literal
    placeholders.
    """
    env_values = env_values or {}

    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v, env_values) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item, env_values) for item in obj]
    if isinstance(obj, str):

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            value = env_values.get(var_name)
            if value is None:
                value = os.getenv(var_name)
            if value is None:
                logger.warning(
                    f"CONFIG ERROR: Environment variable '${var_name}' is not set! "
                    f"The literal placeholder will be used."
                )
                return match.group(0)
            return value

        return _ENV_PATTERN.sub(replace_var, obj)
    return obj


@dataclass(frozen=True)
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 3000


@dataclass(frozen=True)
class OpenAISettings:
    api_key: str
    base_url: str = "https://api.openai.com/v1"
    default_model: str = "gpt-4o"
    timeout_ms: int = 60000
    organization: Optional[str] = None


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 4
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "info"
    dir: str = "./logs"
    log_to_disk: bool = True


@dataclass(frozen=True)
class StreamingSettings:
    session_max_entries: int = 1000


@dataclass(frozen=True)
class GatewaySettings:
    openai: OpenAISettings
    server: ServerSettings = field(default_factory=ServerSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    streaming: StreamingSettings = field(default_factory=StreamingSettings)


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name)
    return value if isinstance(value, Mapping) else {}


def _to_int(value: Any, name: str, errors: list[str], default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        errors.append(f"{name} must be an integer")
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        errors.append(f"{name} must be an integer (got {value!r})")
        return default


def _to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def build_settings(config: Mapping[str, Any]) -> GatewaySettings:
    """Validate a loaded config and turn it into ``GatewaySettings``.

    Raises:
        ConfigurationError: listing every invalid field.
    """
    errors: list[str] = []

    server_cfg = _section(config, "server")
    host = os.getenv(HOST_ENV) or str(server_cfg.get("host") or ServerSettings.host)
    port = _to_int(os.getenv(PORT_ENV) or server_cfg.get("port"), "server.port", errors, ServerSettings.port)
    if port <= 0:
        errors.append("server.port must be positive")

    openai_cfg = _section(config, "openai")
    api_key = str(openai_cfg.get("api_key") or "")
    if not api_key:
        errors.append("openai.api_key is required")
    elif not api_key.startswith("sk-"):
        errors.append("openai.api_key must start with 'sk-'")
    base_url = str(openai_cfg.get("base_url") or OpenAISettings.base_url)
    parsed = urlparse(base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        errors.append(f"openai.base_url must be an http(s) URL (got {base_url!r})")
    default_model = str(openai_cfg.get("default_model") or OpenAISettings.default_model)
    timeout_ms = _to_int(openai_cfg.get("timeout_ms"), "openai.timeout_ms", errors, OpenAISettings.timeout_ms)
    if timeout_ms <= 0:
        errors.append("openai.timeout_ms must be positive")
    organization = openai_cfg.get("organization") or None

    retry_cfg = _section(config, "retry")
    max_attempts = _to_int(retry_cfg.get("max_attempts"), "retry.max_attempts", errors, RetrySettings.max_attempts)
    if not 1 <= max_attempts <= MAX_RETRY_ATTEMPTS:
        errors.append(f"retry.max_attempts must be between 1 and {MAX_RETRY_ATTEMPTS}")
    base_delay_ms = _to_int(retry_cfg.get("base_delay_ms"), "retry.base_delay_ms", errors, RetrySettings.base_delay_ms)
    if base_delay_ms <= 0:
        errors.append("retry.base_delay_ms must be positive")
    max_delay_ms = _to_int(retry_cfg.get("max_delay_ms"), "retry.max_delay_ms", errors, RetrySettings.max_delay_ms)
    if max_delay_ms < base_delay_ms:
        errors.append("retry.max_delay_ms must be >= retry.base_delay_ms")

    logging_cfg = _section(config, "logging")
    level = str(logging_cfg.get("level") or LoggingSettings.level).lower()
    if level not in LOG_LEVELS:
        errors.append(f"logging.level must be one of {', '.join(LOG_LEVELS)}")
    log_dir = str(logging_cfg.get("dir") or LoggingSettings.dir)
    log_to_disk = _to_bool(logging_cfg.get("log_to_disk"), LoggingSettings.log_to_disk)

    streaming_cfg = _section(config, "streaming")
    session_max_entries = _to_int(
        streaming_cfg.get("session_max_entries"),
        "streaming.session_max_entries",
        errors,
        StreamingSettings.session_max_entries,
    )
    if session_max_entries <= 0:
        errors.append("streaming.session_max_entries must be positive")

    if errors:
        raise ConfigurationError("Invalid configuration: " + "; ".join(errors))

    return GatewaySettings(
        openai=OpenAISettings(
            api_key=api_key,
            base_url=base_url.rstrip("/"),
            default_model=default_model,
            timeout_ms=timeout_ms,
            organization=str(organization) if organization else None,
        ),
        server=ServerSettings(host=host, port=port),
        retry=RetrySettings(
            max_attempts=max_attempts,
            base_delay_ms=base_delay_ms,
            max_delay_ms=max_delay_ms,
        ),
        logging=LoggingSettings(level=level, dir=log_dir, log_to_disk=log_to_disk),
        streaming=StreamingSettings(session_max_entries=session_max_entries),
    )
