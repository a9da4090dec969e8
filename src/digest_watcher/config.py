"""Configuration management for the digest watcher."""

import re
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PLATFORM_RE = re.compile(r"^[a-z0-9]+/[a-z0-9_]+(?:/[a-z0-9]+)?$")


class Settings(BaseSettings):
    """Watcher settings loaded from ``WATCHER_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="WATCHER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Tracked image
    repository_owner: str = Field(default="simplestakingcom", description="Registry namespace")
    repository_name: str = Field(default="tezedge", description="Image name within the namespace")
    tag: str = Field(default="latest", description="Tag to track")

    # Registry
    registry: Literal["dockerhub", "oci"] = Field(
        default="dockerhub", description="Which registry API to query"
    )
    hub_api_url: str = Field(
        default="https://hub.docker.com/v2", description="Docker Hub tag API base URL"
    )
    registry_url: str = Field(
        default="https://registry-1.docker.io", description="OCI distribution API base URL"
    )
    platform: str = Field(
        default="linux/amd64", description="Platform used when a tag has no index digest"
    )
    registry_username: str | None = Field(default=None, description="Registry user")
    registry_password: SecretStr | None = Field(default=None, description="Registry password")
    registry_timeout_seconds: float = Field(default=30.0, gt=0)

    # Deployment
    deploy_subdir: str = Field(default="deploy", description="Compose project dir under ROOT")
    compose_file: str = Field(default="docker-compose.yml", description="Compose file name")
    bring_up_command: str | None = Field(
        default=None, description="Shell command that starts the service from scratch"
    )
    recreate_after_pull: bool = Field(
        default=True, description="Recreate containers after a successful pull"
    )
    command_timeout_seconds: int = Field(default=180, gt=0)
    pull_timeout_seconds: int = Field(default=1200, gt=0)

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("repository_owner", "repository_name", "tag")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("platform")
    @classmethod
    def _valid_platform(cls, value: str) -> str:
        value = value.strip().lower()
        if not _PLATFORM_RE.match(value):
            raise ValueError("platform must look like os/arch or os/arch/variant")
        return value

    @property
    def repository(self) -> str:
        """Repository as docker records it, e.g. ``owner/name``.

        Official images (owner ``library``) use the bare name, matching the
        ``nginx@sha256:…`` form docker writes into ``RepoDigests``.
        """
        if self.repository_owner == "library":
            return self.repository_name
        return f"{self.repository_owner}/{self.repository_name}"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
