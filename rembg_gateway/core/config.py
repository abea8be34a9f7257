from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_REMBG_PATH = "/usr/local/bin/rembg"


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables.

    Configuration is loaded from:
    1. Environment variables
    2. .env file (if present)

    A single instance is built at process entry and handed to the
    lifecycle and the application factory; nothing reads it globally.

    Example:
        LISTEN_ADDRESS=0.0.0.0:8080
        LOG_LEVEL=debug
        REMBG_PATH=/usr/local/bin/rembg
    """

    # Logging
    log_level: str = Field(
        default="info",
        validation_alias=AliasChoices("LOG_LEVEL", "LEVEL"),
    )  # Minimum severity of diagnostic output
    log_format: Literal["text", "json"] = "text"  # json for log collectors

    # Listener
    listen_address: str | None = Field(
        default=None,
        validation_alias=AliasChoices("LISTEN_ADDRESS", "LISTEN"),
    )  # host:port, required
    shutdown_timeout: float = 30.0  # Grace period for in-flight requests (seconds)
    cors_origins: list[str] = ["*"]

    # External tool
    rembg_path: str = DEFAULT_REMBG_PATH  # Absolute path to the executable
    rembg_args: list[str] = ["i"]  # Fixed subcommand, input/output on stdio
    rembg_timeout: float | None = None  # Per-call deadline (seconds), None = unbounded

    # Request handling
    max_body_size: int = 50 * 1024 * 1024  # 50 MB
    disconnect_poll_interval: float = 0.5  # Seconds between client disconnect checks

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def rembg_command(self) -> list[str]:
        """Argument vector used to spawn the external tool."""
        return [self.rembg_path, *self.rembg_args]


def parse_listen_address(value: str | None) -> tuple[str, int]:
    """Split a ``host:port`` listen address.

    An empty host (``":8080"``) binds all interfaces. IPv6 hosts may be
    given in brackets (``"[::1]:8080"``).

    Raises:
        ValueError: If the address is missing or malformed.
    """
    if not value:
        raise ValueError("listen address is not set")

    host, sep, port_str = value.strip().rpartition(":")
    if not sep:
        raise ValueError(f"listen address {value!r} must be in host:port form")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not host:
        host = "0.0.0.0"

    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"invalid port in listen address {value!r}") from None

    if not 0 <= port <= 65535:
        raise ValueError(f"port {port} out of range in listen address {value!r}")

    return host, port
