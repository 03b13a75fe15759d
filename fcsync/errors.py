"""fcsync error hierarchy.

All project exceptions inherit from FcsyncError so that the CLI can catch
them at the top-level boundary while the engine catches the narrower kinds
where they are scoped (a lane, a run directory).

Hierarchy:
    FcsyncError
    ├── ConfigError
    ├── RunDirectoryError
    │   ├── ParseError
    │   └── IoError
    ├── DecodeError
    │   ├── CorruptHeaderError        # fatal for one tile/cycle
    │   ├── MissingCycleError         # in-progress run, not fatal
    │   └── UnsupportedFormatError    # fatal for the run directory
    └── ServiceError
        ├── ServiceUnavailable
        └── ServiceRejected
"""

from __future__ import annotations

from pathlib import Path


class FcsyncError(Exception):
    """Base class for all fcsync errors."""


class ConfigError(FcsyncError):
    """Invalid or unreadable configuration."""


class RunDirectoryError(FcsyncError):
    """Problem with a run directory as a whole."""

    def __init__(self, message: str, path: Path | str | None = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class ParseError(RunDirectoryError):
    """Malformed or missing metadata fields."""


class IoError(RunDirectoryError):
    """Run directory or metadata file could not be read."""


class DecodeError(FcsyncError):
    """Base class for base call decoding errors."""

    def __init__(self, message: str, path: Path | str | None = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class CorruptHeaderError(DecodeError):
    """A base call file has a damaged header or truncated payload."""


class MissingCycleError(DecodeError):
    """The file for a cycle has not been written (yet)."""

    def __init__(self, message: str, path: Path | str | None = None, cycle: int | None = None):
        super().__init__(message, path)
        self.cycle = cycle


class UnsupportedFormatError(DecodeError):
    """The run directory uses an encoding or layout that cannot be decoded."""


class ServiceError(FcsyncError):
    """Base class for errors reported by the flow cell service."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ServiceUnavailable(ServiceError):
    """Network failure, timeout or server-side error."""


class ServiceRejected(ServiceError):
    """The service refused the request."""
