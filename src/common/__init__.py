"""
vfio-preflight Common Utilities

Shared exceptions and logging setup.
"""

from .exceptions import (
    PreflightError, CollectionError, EnvironmentFatal, EnvironmentWarning,
    UnsupportedPath, HypervisorError, LibvirtConnectionError, DomainNotFoundError,
)
from .logging_config import setup_logging, LogContext, ColoredFormatter, JSONFormatter

__all__ = [
    # Exceptions
    "PreflightError", "CollectionError", "EnvironmentFatal", "EnvironmentWarning",
    "UnsupportedPath", "HypervisorError", "LibvirtConnectionError",
    "DomainNotFoundError",
    # Logging
    "setup_logging", "LogContext", "ColoredFormatter", "JSONFormatter",
]
