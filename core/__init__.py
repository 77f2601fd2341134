"""
Core utilities and configuration for the data acquisition system.

Modules:
    config: Settings loaded from the environment and .env
    database: Async engine and session management
    exceptions: Exception hierarchy carrying structured error context
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker, check_connection
    from core.exceptions import TransportError, FormatError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "async_session_maker",
    "check_connection",
    "setup_logging",
    # Exceptions
    "ETLException",
    "TransportError",
    "ArchiveFetchError",
    "FormatError",
    "SchemaViolationError",
    "PersistenceError",
    "ConfigurationError",
]
