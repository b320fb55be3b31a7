"""
Client configuration.

Credentials and defaults are read from the environment (or a ``.env`` file)
with pydantic-settings, the same variable names the IC examples use:
``API_KEY`` and ``INSTANCE``.
"""

import sys
from typing import Literal

from loguru import logger
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from inspector_client.models import (
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_TIMEOUT,
    ReportWaitOptions,
)


class InspectorSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: SecretStr = Field(..., alias="API_KEY")
    instance: str = Field(..., alias="INSTANCE")
    http_timeout: float = Field(default=DEFAULT_HTTP_TIMEOUT, alias="HTTP_TIMEOUT")
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, alias="POLL_INTERVAL")
    poll_timeout: float = Field(default=DEFAULT_POLL_TIMEOUT, alias="POLL_TIMEOUT")
    log_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )

    @field_validator("instance")
    @classmethod
    def validate_instance(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("INSTANCE must be an absolute http(s) URL")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    def wait_options(self, **overrides) -> ReportWaitOptions:
        """Build polling options from the configured interval and timeout."""
        values = {"interval": self.poll_interval, "timeout": self.poll_timeout}
        values.update(overrides)
        return ReportWaitOptions(**values)


def configure_logging(level: str = "INFO") -> None:
    """Send loguru output to stderr at ``level``."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
