"""selenoid-cm error types.

Error codes are stable strings for programmatic handling. Backends raise
these; the lifecycle controller propagates the first one raised by a step and
the CLI turns it into a non-zero exit status.
"""

from __future__ import annotations

from typing import Any


class SelenoidCMError(Exception):
    """Base error for all selenoid-cm exceptions."""

    code: str = "internal_error"
    message: str = "An internal error occurred"

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.__class__.message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InitializationError(SelenoidCMError):
    """Backend clients could not be constructed (e.g. registry unreachable)."""

    code = "initialization_error"
    message = "Failed to initialize backend"


class FetchError(SelenoidCMError):
    """Network fetch failed: tag listing, image pull, manifest or archive download."""

    code = "fetch_error"
    message = "Failed to fetch remote resource"


class ReleaseNotFoundError(FetchError):
    """No release (or no matching asset) exists for the requested version."""

    code = "release_not_found"
    message = "Release not found"


class ArchiveError(SelenoidCMError):
    """Archive could not be extracted."""

    code = "archive_error"
    message = "Failed to extract archive"


class UnsupportedFormatError(ArchiveError):
    """Archive magic bytes match no known format."""

    code = "unsupported_format"
    message = "Unknown archive type"


class MissingEntryError(ArchiveError):
    """Requested file is absent from the archive."""

    code = "missing_entry"
    message = "File does not exist in archive"


class InvariantViolationError(SelenoidCMError):
    """Lifecycle steps were sequenced incorrectly.

    Raised when starting the service without a downloaded image. This is a
    bug in the caller, not a transient condition.
    """

    code = "invariant_violation"
    message = "Lifecycle invariant violated"


class StartError(SelenoidCMError):
    """Service container could not be created or started."""

    code = "start_error"
    message = "Failed to start service"


class StopError(SelenoidCMError):
    """Service container could not be removed."""

    code = "stop_error"
    message = "Failed to stop service"
