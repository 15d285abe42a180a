"""selenoid-cm.

Provisions Selenoid either in Docker or, without Docker, with native
webdriver binaries.
"""

from importlib.metadata import PackageNotFoundError, version as _pkg_version

from selenoid_cm.config import LifecycleConfig, Settings, get_settings
from selenoid_cm.errors import (
    ArchiveError,
    FetchError,
    InitializationError,
    InvariantViolationError,
    MissingEntryError,
    ReleaseNotFoundError,
    SelenoidCMError,
    StartError,
    StopError,
    UnsupportedFormatError,
)
from selenoid_cm.lifecycle import LifecycleController
from selenoid_cm.models import (
    BrowserEntry,
    BrowserManifest,
    BrowserVersions,
    ResolvedArtifact,
    ServiceConfig,
)

__all__ = [
    # Lifecycle
    "LifecycleController",
    "LifecycleConfig",
    "Settings",
    "get_settings",
    # Types
    "BrowserEntry",
    "BrowserManifest",
    "BrowserVersions",
    "ResolvedArtifact",
    "ServiceConfig",
    # Errors
    "SelenoidCMError",
    "InitializationError",
    "FetchError",
    "ReleaseNotFoundError",
    "ArchiveError",
    "UnsupportedFormatError",
    "MissingEntryError",
    "InvariantViolationError",
    "StartError",
    "StopError",
]

try:
    __version__ = _pkg_version("selenoid-cm")
except PackageNotFoundError:
    __version__ = "unknown"
