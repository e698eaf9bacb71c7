"""
Configuration management for ShareGate.

Loads settings from YAML and environment variables using Pydantic.
"""

import os
from pathlib import Path
from typing import Literal, Optional, Tuple, Type

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
    PydanticBaseSettingsSource
)


class ServerConfig(BaseModel):
    """Bind addresses for the admin and user apps."""
    admin_enabled: bool = True
    admin_host: str = "127.0.0.1"
    admin_port: int = 8000
    user_host: str = "0.0.0.0"
    user_port: int = 8080
    user_localhost_only: bool = False
    # Prefix used when rendering links, e.g. behind a reverse proxy
    external_url: Optional[str] = None
    # Honor CF-Connecting-IP / X-Forwarded-For only when a proxy sets them
    trusted_proxy: bool = False

    @property
    def bound_user_host(self) -> str:
        return "127.0.0.1" if self.user_localhost_only else self.user_host

    def link_base(self) -> str:
        if self.external_url:
            return self.external_url.rstrip("/")
        host = self.bound_user_host
        if host == "0.0.0.0":
            host = "127.0.0.1"
        return f"http://{host}:{self.user_port}"


# Define project root relative to this config file (sharegate/config.py -> sharegate/ -> root/)
PROJECT_ROOT = Path(__file__).parent.parent.resolve()


class PathConfig(BaseModel):
    """The three roots the store works under."""
    files_root: Path = Path("data/files")
    shares_root: Path = Path("data/shares")
    uploads_root: Path = Path("data/uploads")

    @model_validator(mode='after')
    def resolve_relative_paths(self):
        """Ensure all paths are absolute, resolving relative ones against PROJECT_ROOT."""
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            if isinstance(value, Path) and not value.is_absolute():
                setattr(self, field_name, PROJECT_ROOT / value)
        return self

    def ensure(self) -> None:
        """Create the roots if they are missing."""
        for root in (self.files_root, self.shares_root, self.uploads_root):
            root.mkdir(parents=True, exist_ok=True)


class SecurityConfig(BaseModel):
    """Security-specific settings."""
    master_key: Optional[str] = None  # required on admin calls when set
    locator: Literal["hashed", "literal"] = "hashed"
    token_bytes: int = Field(32, ge=16)


class LogicConfig(BaseModel):
    """Upload limits and resource defaults."""
    max_file_size: Optional[int] = None
    default_quota: Optional[int] = 1_000_000_000
    default_expiry_hours: Optional[float] = None


class RateLimitConfig(BaseModel):
    """API rate limiting settings."""
    enabled: bool = True
    user_limit: str = "60/minute"
    admin_limit: str = "120/minute"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Config(BaseSettings):
    """Global configuration object."""
    server: ServerConfig = ServerConfig()
    paths: PathConfig = PathConfig()
    security: SecurityConfig = SecurityConfig()
    logic: LogicConfig = LogicConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    logging: LoggingConfig = LoggingConfig()

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Reorder settings sources to prioritize environment variables over YAML."""
        return (
            env_settings,
            dotenv_settings,
            init_settings,  # YAML data passed via load() kwargs
            file_secret_settings,
        )

    @classmethod
    def load(cls, yaml_path: Optional[str] = None) -> "Config":
        """Load configuration from YAML and override with environment variables.

        Args:
            yaml_path: Path to the YAML configuration file. Falls back to
                ``$SHAREGATE_CONFIG`` and then ``sharegate/config.yaml``.

        Returns:
            A populated Config instance.
        """
        if not yaml_path:
            yaml_path = os.environ.get(
                "SHAREGATE_CONFIG",
                os.path.join(os.path.dirname(__file__), "config.yaml"),
            )

        data = {}
        if os.path.exists(yaml_path):
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

        return cls(**data)
