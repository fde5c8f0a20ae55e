"""Pydantic models describing the imapcore client configuration document."""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


IMAPS_PORT = 993
IMAP_PORT = 143


class ValidationError(ValueError):
    """Raised when configuration data does not satisfy the schema."""


class ConnectionSettings(BaseModel):
    """Where and how to reach the IMAP server.

    Credentials other than the user name are deliberately absent: passwords are
    supplied by the caller at connect time.
    """

    model_config = ConfigDict(extra="forbid")

    host: Optional[str] = None
    port: Optional[int] = Field(default=None, gt=0, le=65535)
    use_tls: bool = True
    timeout: float = Field(default=30.0, gt=0)
    username: Optional[str] = None
    mailbox: str = "INBOX"

    def resolved_port(self) -> int:
        if self.port is not None:
            return self.port
        return IMAPS_PORT if self.use_tls else IMAP_PORT


class ProtocolSettings(BaseModel):
    """Limits and defaults applied by the codec and pipeline."""

    model_config = ConfigDict(extra="forbid")

    tag_prefix: str = Field(default="A", pattern=r"^[A-Za-z0-9]+$")
    max_line_bytes: int = Field(default=64 * 1024, gt=0)
    max_literal_bytes: int = Field(default=64 * 1024 * 1024, gt=0)
    peek: bool = True


class LoggingSettings(BaseModel):
    """Threshold for the structured JSON logs."""

    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARN", "WARNING", "ERROR"] = "INFO"


class ClientConfig(BaseModel):
    """Root configuration loaded from ``imapcore.yaml``."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    protocol: ProtocolSettings = Field(default_factory=ProtocolSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="after")
    def _validate_version(self) -> "ClientConfig":
        if self.version != 1:
            raise ValidationError(f"unsupported configuration version {self.version}")
        return self


__all__ = [
    "ClientConfig",
    "ConnectionSettings",
    "LoggingSettings",
    "ProtocolSettings",
    "ValidationError",
    "IMAPS_PORT",
    "IMAP_PORT",
]
