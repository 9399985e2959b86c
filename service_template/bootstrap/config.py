"""Environment-backed settings and CLI argument parsing."""

import argparse
import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from service_template.bootstrap.logging_setup import resolve_level
from service_template.domain.request_context import get_logger
from service_template.errors import ConfigError

ENV_PREFIX = "SERVER_"
DEFAULT_ENV_FILE = ".env"
DRAIN_TIMEOUT_SECONDS = 30
DEFAULT_SOCKET_TIMEOUT = 60
ALL_INTERFACES = "0.0.0.0"

CONFIG_LOGGER = get_logger("bootstrap.config")

LogLevel = Literal["debug", "info", "warn", "error"]
Environment = Literal["local", "dev", "staging", "prod"]


class ServerSettings(BaseSettings):
    """Server settings read from ``SERVER_*`` environment variables.

    Attributes:
        address: Bind address; empty binds every interface.
        port: TCP port, 1-65535.
        log_level: One of debug, info, warn, error.
        env: Deployment environment tag: local, dev, staging or prod.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    address: str = Field(default="")
    port: int = Field(ge=1, le=65535)
    log_level: LogLevel = Field(default="info")
    env: Environment

    @field_validator("address", "log_level", "env", mode="before")
    @classmethod
    def _strip_whitespace(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @property
    def is_prod(self) -> bool:
        return self.env == "prod"

    @property
    def bind_address(self) -> str:
        return self.address or ALL_INTERFACES

    def logging_level(self) -> int:
        """Return the stdlib logging level matching ``log_level``."""
        return resolve_level(self.log_level)

    def to_log_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def _describe_errors(error: ValidationError) -> list[str]:
    problems = []
    for detail in error.errors():
        location = detail.get("loc") or ("settings",)
        variable = f"{ENV_PREFIX}{str(location[0]).upper()}"
        problems.append(f"{variable}: {detail.get('msg', 'invalid value')}")
    return problems


def load_settings(env_file: Optional[str] = DEFAULT_ENV_FILE) -> ServerSettings:
    """Load and validate settings from the environment and an optional dotenv file.

    Args:
        env_file: Path of a dotenv file seeding the environment. A missing
            file is logged and ignored. ``None`` skips the file.

    Returns:
        ServerSettings: Validated, immutable settings.

    Raises:
        ConfigError: Raised when a variable is missing or invalid.
    """

    dotenv_path: Optional[str] = None
    if env_file:
        if Path(env_file).is_file():
            dotenv_path = env_file
        else:
            CONFIG_LOGGER.warning(
                "Environment file not found, using process environment only",
                extra={"event": "env_file_missing", "path": env_file},
            )

    try:
        settings = ServerSettings(_env_file=dotenv_path)
    except ValidationError as error:
        raise ConfigError(_describe_errors(error)) from error
    return settings


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for process-level options."""
    parser = argparse.ArgumentParser(description="HTTP service")
    parser.add_argument(
        "--env-file",
        default=DEFAULT_ENV_FILE,
        help="dotenv file used to seed SERVER_* variables",
    )
    parser.add_argument(
        "--log-destination",
        default=os.getenv("SERVER_LOG_DESTINATION", "stdout"),
        help="stdout or a file path",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=float,
        default=DRAIN_TIMEOUT_SECONDS,
        help="Time allowed for in-flight requests to finish after a shutdown signal",
    )
    parser.add_argument(
        "--socket-timeout",
        type=float,
        default=DEFAULT_SOCKET_TIMEOUT,
        help="Idle timeout in seconds for client connections",
    )
    return parser.parse_args(argv)
