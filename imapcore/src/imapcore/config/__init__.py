"""Configuration loading for imapcore.

Re-exports the loader helpers and the pydantic schema that form the supported
configuration surface.
"""

from .loader import (
    ClientConfigError,
    ConfigLoadError,
    get_client_config,
    load_client_config,
    reset_client_config,
)
from .schema import (
    ClientConfig,
    ConnectionSettings,
    LoggingSettings,
    ProtocolSettings,
    ValidationError,
)

__all__ = [
    "load_client_config",
    "get_client_config",
    "reset_client_config",
    "ConfigLoadError",
    "ClientConfigError",
    "ClientConfig",
    "ConnectionSettings",
    "LoggingSettings",
    "ProtocolSettings",
    "ValidationError",
]
