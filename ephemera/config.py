"""Settings with environment variable support."""
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process configuration for provisioning.

    Values are read from the environment when a Settings object is created
    and then injected into the launchers; nothing is cached at import time.
    Example: DOCKER_PROXY=mirror.example.com rewrites every image through
    that registry mirror.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Image resolution
    docker_proxy: str | None = Field(
        default=None,
        validation_alias=AliasChoices("docker_proxy", "DOCKER_PROXY"),
        description="Registry mirror prepended to every image",
    )
    singbox_image: str = Field(
        default="ghcr.io/sagernet/sing-box",
        validation_alias=AliasChoices("singbox_image", "SINGBOX_IMAGE"),
        description="Default sing-box image",
    )

    # Runtime
    docker_binary: str = Field(
        default="docker",
        validation_alias=AliasChoices("docker_binary", "EPHEMERA_DOCKER"),
        description="Docker CLI executable",
    )
    host_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("host_override", "EPHEMERA_HOST_OVERRIDE"),
        description="Host reported for every provisioned instance",
    )
    command_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        validation_alias=AliasChoices("command_timeout_seconds", "EPHEMERA_COMMAND_TIMEOUT"),
        description="Max time for a single docker CLI call",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("log_level", "EPHEMERA_LOG_LEVEL"),
        description="Minimum log level for configure_logging()",
    )
