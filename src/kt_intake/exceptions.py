"""
KT Intake Exceptions

Custom exception types for I/O and configuration boundaries, with remediation hints.

Core operations (migration, cause decisions, action conversion) never raise these
for user-driven states; they return defaults or result objects instead.
"""

from pathlib import Path
from typing import Optional, Union


class KTIntakeError(Exception):
    """Base exception for all KT Intake errors."""

    def __init__(
        self,
        message: str,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        """Initialize the error.

        Args:
            message: Human-readable error message
            remediation: Suggested fix for the user
            details: Technical details for debugging
        """
        super().__init__(message)
        self.message = message
        self.remediation = remediation
        self.details = details

    def __str__(self) -> str:
        parts = [self.message]
        if self.details:
            parts.append(f"Details: {self.details}")
        if self.remediation:
            parts.append(f"To fix: {self.remediation}")
        return "\n".join(parts)


class ConfigError(KTIntakeError):
    """Configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.config_key = config_key
        if not remediation and config_key:
            remediation = f"Check '{config_key}' in config.yaml or run: kt-intake config set {config_key} <value>"
        super().__init__(message, remediation, details)


class StorageError(KTIntakeError):
    """Persisted store could not be read or written."""

    def __init__(
        self,
        message: str,
        path: Optional[Union[str, Path]] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.path = str(path) if path is not None else None
        if not remediation and self.path:
            remediation = f"Check that {self.path} is writable, or point storage.file somewhere else"
        super().__init__(message, remediation, details)


class SnapshotError(KTIntakeError):
    """A payload could not be turned into an intake snapshot."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.source = source
        if not remediation:
            remediation = "Select a JSON file exported by kt-intake (or the browser intake tool)"
        super().__init__(message, remediation, details)


class ValidationError(KTIntakeError):
    """Input validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        expected_format: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.field = field
        self.expected_format = expected_format
        if not remediation and field and expected_format:
            remediation = f"The {field} should be in format: {expected_format}"
        super().__init__(message, remediation, details)


# Error code mapping for CLI exit codes
ERROR_CODES = {
    ConfigError: 10,
    StorageError: 11,
    SnapshotError: 12,
    ValidationError: 14,
    KTIntakeError: 1,
}


def get_error_code(error: Exception) -> int:
    """Get the exit code for an error type."""
    for error_type, code in ERROR_CODES.items():
        if isinstance(error, error_type):
            return code
    return 1
