"""
Custom exceptions for the acquisition pipeline with structured error context.

Every failure raised by an adapter, the persistence layer or the sync
controller derives from ETLException so the controller can log it with its
context and move on to the next configured source.

Exception Hierarchy:
    ETLException (base)
    ├── TransportError
    │   └── ArchiveFetchError
    ├── FormatError
    ├── SchemaViolationError
    ├── PersistenceError
    └── ConfigurationError
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ETLException(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, url, line, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Transport Errors
# ============================================================================

class TransportError(ETLException):
    """
    Raised when a network call fails.

    Covers connect and read failures, timeouts and non-success HTTP or FTP
    outcomes alike; a timeout is not distinguished from any other failure.

    Context should include:
        - url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - source_id: The configured source being fetched
    """
    pass


class ArchiveFetchError(TransportError):
    """
    Raised when the anonymous FTP retrieval of an archive fails.

    Context should include:
        - host: FTP host
        - path: Remote path of the archive
        - stage: connect, login, transfer_mode or retrieve
    """
    pass


# ============================================================================
# Decoding Errors
# ============================================================================

class FormatError(ETLException):
    """
    Raised when upstream bytes do not have the expected layout.

    Examples: unrecognized flag code, missing mandatory anchor line,
    unparseable date, invalid JSON envelope, corrupt archive.
    """
    pass


class SchemaViolationError(ETLException):
    """
    Raised when a column the report schema declares is entirely absent.

    This signals structural drift upstream rather than a one-off defect.

    Context should include:
        - report: Report name
        - section: Section name
        - column: The missing column
    """
    pass


# ============================================================================
# Storage Errors
# ============================================================================

class PersistenceError(ETLException):
    """
    Raised when DDL, DML or a watermark query fails in the store.

    Context should include:
        - operation: CREATE, INSERT or SELECT
        - table_name: Name of the table
    """
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(ETLException):
    """
    Raised for invalid registry files, unknown source or report ids and
    inconsistent request parameters.
    """
    pass
