"""
Core package: config, database, errors, logging.
"""

from nutridb.core.config import config, Config
from nutridb.core.database import (
    check_connection,
    close_engine,
    get_engine,
    get_session,
    install_shutdown_hooks,
    normalize_database_url,
    run_in_session,
)
from nutridb.core.errors import (
    ConfigurationError,
    MigrationError,
    NutriDbError,
    ReadinessTimeoutError,
    ResourceStartError,
    ResourceUnreachableError,
    ToolingMissingError,
)
from nutridb.core.logging_config import setup_logging, JsonFormatter

__all__ = [
    "config",
    "Config",
    "check_connection",
    "close_engine",
    "get_engine",
    "get_session",
    "install_shutdown_hooks",
    "normalize_database_url",
    "run_in_session",
    "ConfigurationError",
    "MigrationError",
    "NutriDbError",
    "ReadinessTimeoutError",
    "ResourceStartError",
    "ResourceUnreachableError",
    "ToolingMissingError",
    "setup_logging",
    "JsonFormatter",
]
