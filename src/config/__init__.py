"""
Shelfsignal Configuration
=========================

Environment-driven settings and logging setup shared by the tracking
client, the ingestion API and the CLIs.
"""

from .settings import (
    Settings,
    TrackingConfig,
    StorageConfig,
    DatabaseConfig,
    ApiConfig,
    LoggingConfig,
    get_settings,
)
from .logging_config import setup_logging, configure_logging, JSONFormatter

__all__ = [
    "Settings",
    "TrackingConfig",
    "StorageConfig",
    "DatabaseConfig",
    "ApiConfig",
    "LoggingConfig",
    "get_settings",
    "setup_logging",
    "configure_logging",
    "JSONFormatter",
]
