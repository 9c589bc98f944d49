"""Environment-based configuration for the RAW viewer API."""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def split_address(addr: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address; an empty host means all interfaces."""
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"listen address must be host:port, got {addr!r}")
    port_number = int(port)
    if not 1 <= port_number <= 65535:
        raise ValueError(f"port out of range: {port_number}")
    host = host.strip("[]")
    return host or "0.0.0.0", port_number  # noqa: S104


class Settings(BaseSettings):
    """Application settings loaded from RAWVIEWER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RAWVIEWER_",
        case_sensitive=False,
    )

    # Server
    api_addr: str = ":8080"

    # Input limits
    max_upload_size: int = Field(default=209_715_200, ge=1)
    default_extension: str = ".dng"

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=30.0, gt=0)

    log_level: str = "INFO"

    @field_validator("api_addr")
    @classmethod
    def _check_api_addr(cls, value: str) -> str:
        split_address(value)
        return value

    @property
    def listen_host(self) -> str:
        return split_address(self.api_addr)[0]

    @property
    def listen_port(self) -> int:
        return split_address(self.api_addr)[1]


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
