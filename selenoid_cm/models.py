"""Data models for the generated configuration and the driver manifest."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, RootModel

DEFAULT_PORT = "4444"
DEFAULT_PATH = "/"


class BrowserEntry(BaseModel):
    """How to launch one browser version."""

    image: str | list[str]  # image reference, or driver command line
    port: str = DEFAULT_PORT
    path: str = DEFAULT_PATH
    tmpfs: dict[str, str] | None = None


class BrowserVersions(BaseModel):
    """All resolved versions of one browser."""

    default: str
    versions: dict[str, BrowserEntry] = Field(default_factory=dict)


class ServiceConfig(RootModel[dict[str, BrowserVersions]]):
    """The browsers.json document: browser name -> versions."""

    root: dict[str, BrowserVersions] = Field(default_factory=dict)

    def __getitem__(self, name: str) -> BrowserVersions:
        return self.root[name]

    def __contains__(self, name: object) -> bool:
        return name in self.root

    def __len__(self) -> int:
        return len(self.root)

    def add(self, name: str, versions: BrowserVersions) -> None:
        # a browser without versions never makes it into the document
        if versions.versions:
            self.root[name] = versions

    def to_json(self) -> str:
        return self.model_dump_json(indent=4, exclude_none=True)


class DriverFile(BaseModel):
    """Download location of a driver archive and the file to take from it."""

    url: str
    filename: str


class ManifestBrowser(BaseModel):
    """Manifest entry: command template plus files per OS and architecture."""

    command: str
    files: dict[str, dict[str, DriverFile]] = Field(default_factory=dict)

    def driver_for(self, os_name: str, arch: str) -> DriverFile | None:
        return self.files.get(os_name, {}).get(arch)


class BrowserManifest(RootModel[dict[str, ManifestBrowser]]):
    """Externally hosted driver manifest (browsers.json of the drivers mode)."""

    root: dict[str, ManifestBrowser] = Field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedArtifact:
    """Outcome of a download: a pulled image or a binary on disk."""

    image: str | None = None
    path: Path | None = None
