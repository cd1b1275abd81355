"""Configuration management for ngdp-fetch."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

from ngdp_fetch.core.types import LocaleFlags

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = Path.home() / ".config" / "ngdp-fetch" / "config.json"
VALID_REGIONS = {"us", "eu", "kr", "tw", "cn", "sg"}


class CDNConfig(BaseModel):
    """CDN client configuration."""

    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, description="Maximum retry attempts per host")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    # Tried after the hosts announced by version discovery
    fallback_mirrors: list[str] = Field(
        default=[
            "https://cdn.arctium.tools",
            "https://casc.wago.tools",
            "https://tact.mirror.reliquaryhq.com"
        ],
        description="Extra CDN base URLs, tried in order after discovered hosts"
    )

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate max retries value."""
        if v < 0:
            raise ValueError("Max retries must be non-negative")
        return v


class TACTConfig(BaseModel):
    """Version server configuration."""

    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, description="Maximum retry attempts")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    base_url_template: str = Field(
        default="https://{region}.version.battle.net",
        description="Version server URL, formatted with the region"
    )

    def get_base_url(self, region: str) -> str:
        """Get base URL for a region."""
        return self.base_url_template.format(region=region)

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate max retries value."""
        if v < 0:
            raise ValueError("Max retries must be non-negative")
        return v


class AppConfig(BaseModel):
    """Application configuration."""

    cache_dir: Path = Field(
        default=Path.home() / ".cache" / "ngdp-fetch",
        description="Cache directory"
    )
    wow_path: Path | None = Field(
        default=None,
        description="Local installation directory; enables the local data source"
    )

    program: str = Field(default="wow", description="Product code")
    region: str = Field(default="us", description="Version server region")
    locale: str = Field(default="enUS", description="Locale used for root lookups")

    key_file: Path | None = Field(default=None, description="Extra decryption keys (name;value lines)")
    allow_loose_files: bool = Field(
        default=True,
        description="Fetch encoding keys missing from archive indexes as loose CDN files"
    )

    output_format: str = Field(default="rich", description="Output format (rich, json)")
    log_level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")

    cdn: CDNConfig = Field(default_factory=CDNConfig)
    tact: TACTConfig = Field(default_factory=TACTConfig)

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = DEFAULT_CONFIG_FILE

        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)
                return cls(**data)

        return cls()

    def save(self, config_file: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file, uses default if None
        """
        if config_file is None:
            config_file = DEFAULT_CONFIG_FILE

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @property
    def locale_flag(self) -> LocaleFlags:
        return LocaleFlags.from_code(self.locale)

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate region."""
        v = v.lower()
        if v not in VALID_REGIONS:
            raise ValueError(f"Invalid region: {v}. Valid regions: {VALID_REGIONS}")
        return v

    @field_validator("locale")
    @classmethod
    def validate_locale(cls, v: str) -> str:
        """Validate locale code."""
        LocaleFlags.from_code(v)
        return v

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v
