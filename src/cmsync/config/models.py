"""Configuration models describing cmsync settings."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cmsync.definitions.models import RecurInterval, RefreshType


class CmsyncBaseModel(BaseModel):
    """Shared configuration for cmsync Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class SiteSettings(CmsyncBaseModel):
    """Connection settings for the ConfigMgr site.

    Attributes:
        provider: Store backend; `adminservice` talks to the site, `snapshot` uses a JSON file.
        server: Host name of the SMS Provider running the AdminService.
        site_code: Three-character site code expected on the provider.
        username: Optional account used for basic authentication.
        password: Optional password paired with `username`.
        verify_tls: Whether to verify the AdminService TLS certificate.
        timeout_seconds: Per-request timeout applied by the HTTP client.
        snapshot_path: JSON snapshot file used by the `snapshot` provider.
    """

    provider: Literal["adminservice", "snapshot"] = "adminservice"
    server: Optional[str] = None
    site_code: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    verify_tls: bool = True
    timeout_seconds: float = 30.0
    snapshot_path: Optional[str] = None


class CollectionDefaults(CmsyncBaseModel):
    """Values applied when a collection definition omits them.

    Attributes:
        description: Comment written to collections without a description.
        recur_count: Refresh interval count used when `recurcount` is absent.
        recur_interval: Refresh interval unit used when `recurinterval` is absent.
        refresh_type: Refresh type used when `refreshtype` is absent.
    """

    description: str = ""
    recur_count: int = 7
    recur_interval: RecurInterval = RecurInterval.DAYS
    refresh_type: RefreshType = RefreshType.PERIODIC

    @field_validator("recur_count")
    @classmethod
    def _positive_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError("recur_count must be a positive integer")
        return value


class LoggingSettings(CmsyncBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Path of the append-only run log.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "INFO"
    file: str = "~/.cmsync/cmsync.log"
    max_size_mb: int = 10
    backup_count: int = 5

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown logging level '{value}'")
        return "WARNING" if normalized == "WARN" else normalized


class CLIOptions(CmsyncBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        summary_default: Whether commands only print summary lines by default.
    """

    quiet_default: bool = False
    summary_default: bool = False


class CmsyncConfig(CmsyncBaseModel):
    """Top-level configuration struct for cmsync.

    Attributes:
        site: Site connection settings.
        defaults: Fallback values for collection definitions.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    site: SiteSettings = Field(default_factory=SiteSettings)
    defaults: CollectionDefaults = Field(default_factory=CollectionDefaults)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "CmsyncBaseModel",
    "SiteSettings",
    "CollectionDefaults",
    "LoggingSettings",
    "CLIOptions",
    "CmsyncConfig",
]
