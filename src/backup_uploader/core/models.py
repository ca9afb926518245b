"""
Pydantic models for Backup Uploader.

Configuration is one ``Settings`` document loaded from JSON; the same models
validate and serialize the HTTP service's payloads.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "/etc/backup-uploader/config.json"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Configuration Models
class StartupSettings(BaseModel):
    """Settings needed before anything else can run."""

    config_file_path: str = Field(DEFAULT_CONFIG_FILE, description="Config file path; created if missing")
    log_path: str = Field("/var/log/backup-uploader/", description="Directory for log files")
    export_path: str = Field(
        "/tmp/backup-uploader/exports/", description="Directory holding compressed exports"
    )
    listen_addr: str = Field("0.0.0.0:8000", description="host:port for the HTTP service")

    @field_validator("listen_addr")
    @classmethod
    def validate_listen_addr(cls, v: str) -> str:
        """Validate listen address."""
        host, sep, port = v.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError("listen_addr must look like host:port")
        return v

    @property
    def host(self) -> str:
        return self.listen_addr.rpartition(":")[0]

    @property
    def port(self) -> int:
        return int(self.listen_addr.rpartition(":")[2])


class DropboxSettings(BaseModel):
    """Dropbox destination."""

    access_token: str = Field("", description="Dropbox OAuth2 access token")
    dest_path: str = Field("/Backup/redundant", description="Dropbox folder exports are stored in")
    timeout: float = Field(300.0, gt=0, description="Request timeout in seconds")

    @field_validator("dest_path")
    @classmethod
    def validate_dest_path(cls, v: str) -> str:
        """Dropbox paths are absolute."""
        if not v.startswith("/"):
            v = "/" + v
        return v


class GDriveSettings(BaseModel):
    """Google Drive destination."""

    access_token: str = Field("", description="Google OAuth2 access token with the Drive scope")
    dir_id: str = Field("", description="ID (not name) of the Drive folder exports are stored in")
    timeout: float = Field(300.0, gt=0, description="Request timeout in seconds")


class UploadSettings(BaseModel):
    """Tuning for parallel block uploads."""

    parallelism: int = Field(20, ge=1, le=100, description="Blocks uploaded in parallel")
    block_size: int = Field(4 * 1024 * 1024, gt=0, description="Remote block size in bytes")
    blocks_per_request: int = Field(2, ge=1, description="Blocks sent per append request")
    block_retries: int = Field(3, ge=1, description="Attempts per block for ordinary errors")


class Action(BaseModel):
    """One unit of queued work."""

    upload_dropbox: bool = Field(False, description="Upload exports to Dropbox")
    upload_gdrive: bool = Field(False, description="Upload exports to Google Drive")
    source: str = Field("", description="Only act on this source; empty means all sources")

    @field_validator("source")
    @classmethod
    def strip_source(cls, v: str) -> str:
        return v.strip()


class Settings(BaseModel):
    """The whole configuration document."""

    startup: StartupSettings = Field(default_factory=StartupSettings)
    sources: List[str] = Field(default_factory=list, description="Names of the exported sources")
    dropbox: DropboxSettings = Field(default_factory=DropboxSettings)
    gdrive: GDriveSettings = Field(default_factory=GDriveSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Settings":
        """
        Load settings from a JSON file.

        If the file doesn't exist, a file with default settings is written there
        first so there is something to edit.

        Raises:
            ConfigurationError: If the file can't be read, written or validated.
        """
        path = Path(path)
        if not path.exists():
            settings = cls()
            settings.startup.config_file_path = str(path)
            logger.info(f"Config file not found, writing defaults to {path}")
            settings.save(path)
            return settings

        try:
            settings = cls.model_validate_json(path.read_text())
        except OSError as e:
            raise ConfigurationError(f"Couldn't read config file {path}: {e}") from e
        except ValidationError as e:
            raise ConfigurationError(f"Invalid config file {path}: {e}") from e
        settings.startup.config_file_path = str(path)
        return settings

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(self.model_dump_json(indent=2))
        except OSError as e:
            raise ConfigurationError(f"Couldn't write config file {path}: {e}") from e

    def selected_sources(self, source: str) -> List[str]:
        """
        Resolve an action's source selection.

        Raises:
            ConfigurationError: If ``source`` is not one of the configured sources.
        """
        if not source:
            return list(self.sources)
        if source not in self.sources:
            raise ConfigurationError(
                f"active source {source} not found in sources list ({','.join(self.sources)})"
            )
        return [source]


# Response Models
class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status", examples=["healthy"])
    version: str = Field(..., description="API version", examples=["1.0.0"])
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")


class QueueStatusResponse(BaseModel):
    """The action being run and the actions waiting behind it."""

    current: Optional[Action] = Field(None, description="Action currently running")
    queued: List[Action] = Field(default_factory=list, description="Actions waiting to run, in order")


class ActionQueuedResponse(BaseModel):
    """Response for a newly queued action."""

    action: Action = Field(..., description="The queued action")
    position: int = Field(..., ge=1, description="Position in the queue, 1 being next")


class SourcesResponse(BaseModel):
    """Configured sources."""

    sources: List[str] = Field(..., description="Names of the exported sources")
    total_count: int = Field(..., description="Number of sources")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type", examples=["ConfigurationError"])
    message: str = Field(..., description="Error message")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
