"""Configuration management for shellrelay.

Loads settings from a YAML configuration file with environment variable
overrides (``SHELLRELAY_`` prefix, ``__`` for nested sections). Supports
.env files.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/shellrelay.yaml")


class SessionConfig(BaseModel):
    shell: str | None = Field(default=None, description="Shell program; platform default if unset")
    shell_args: list[str] | None = Field(default=None)
    cwd: str | None = Field(default=None, description="Starting directory; process cwd if unset")
    default_timeout_ms: int = Field(default=30000, gt=0)
    sweep_interval_minutes: float = Field(default=30.0, gt=0)
    max_idle_minutes: float = Field(default=60.0, gt=0)
    kill_grace_period: float = Field(default=0.5, ge=0)
    report_shell_pwd: bool = Field(default=True)
    pwd_probe_timeout: float = Field(default=5.0, gt=0)
    track_exit_status: bool = Field(default=False)
    max_backlog_chars: int = Field(default=1_000_000, gt=0)
    oneshot_output_limit: int = Field(default=1024 * 1024, gt=0)


class EndpointConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8765, ge=1, le=65535)


class ClientConfig(BaseModel):
    base_url: str = Field(default="http://127.0.0.1:8765")
    timeout: float = Field(default=120.0, gt=0)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the shellrelay system.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "SHELLRELAY_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    sessions: SessionConfig = Field(default_factory=SessionConfig)
    endpoint: EndpointConfig = Field(default_factory=EndpointConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Build settings from a YAML file plus ``.env`` and the environment.

    Keys set in the file take precedence; the rest come from ``SHELLRELAY_``
    variables or defaults. The default path may be absent (defaults are
    used); an explicitly named file must exist.

    Raises:
        FileNotFoundError: If ``config_path`` was given and does not exist.
        ValueError: If the file does not hold a YAML mapping.
    """
    if config_path is None:
        path = DEFAULT_CONFIG_PATH
        if not path.exists():
            logger.warning("Config file %s not found, using defaults + env vars", path)
            return Settings()
    else:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file {path} not found")

    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    logger.info("Loaded configuration from %s", path)
    return Settings(**data)
