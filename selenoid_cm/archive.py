"""Extraction of a single named file from a driver archive.

The archive format is sniffed from its first two bytes:

    50 4b  -> zip
    1f 8b  -> gzip compressed tar

Both formats look the file up by name. The extracted file keeps the mode
bits stored in the archive.
"""

from __future__ import annotations

import gzip
import io
import os
import posixpath
import shutil
import tarfile
import zipfile
import zlib
from collections.abc import Callable
from pathlib import Path
from typing import IO

from selenoid_cm.errors import ArchiveError, MissingEntryError, UnsupportedFormatError

ZIP_MAGIC = b"PK"
GZIP_MAGIC = b"\x1f\x8b"

DEFAULT_MODE = 0o644


def _normalize(name: str) -> str:
    return posixpath.normpath(name.replace("\\", "/")).lstrip("/")


def _output_path(output_dir: Path, name: str) -> Path:
    target = (output_dir / _normalize(name)).resolve()
    root = output_dir.resolve()
    if target != root and root not in target.parents:
        raise ArchiveError(f"refusing to extract {name} outside of {output_dir}")
    return target


def _write(output_path: Path, mode: int, source: IO[bytes]) -> Path:
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "wb") as f:
            shutil.copyfileobj(source, f)
        os.chmod(output_path, mode)
    except OSError as e:
        raise ArchiveError(
            f"failed to write {output_path}: {e}",
            details={"path": str(output_path)},
        ) from e
    return output_path


def extract_zip(data: bytes, entry_name: str, output_dir: Path) -> Path:
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"invalid zip archive: {e}") from e

    wanted = _normalize(entry_name)
    with archive:
        for info in archive.infolist():
            if _normalize(info.filename) != wanted:
                continue
            if info.is_dir():
                raise ArchiveError(f"can only unzip files but {info.filename} is a directory")
            mode = (info.external_attr >> 16) & 0o7777 or DEFAULT_MODE
            output_path = _output_path(output_dir, info.filename)
            with archive.open(info) as source:
                return _write(output_path, mode, source)

    raise MissingEntryError(
        f"file {entry_name} does not exist in archive",
        details={"entry": entry_name},
    )


def extract_tar_gz(data: bytes, entry_name: str, output_dir: Path) -> Path:
    wanted = _normalize(entry_name)
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
            for member in archive:
                if _normalize(member.name) != wanted:
                    continue
                if member.isdir():
                    raise ArchiveError(f"can only untar files but {member.name} is a directory")
                source = archive.extractfile(member)
                if source is None:
                    raise ArchiveError(f"{member.name} is not a regular file")
                output_path = _output_path(output_dir, member.name)
                with source:
                    return _write(output_path, member.mode & 0o7777 or DEFAULT_MODE, source)
    except (tarfile.TarError, EOFError, gzip.BadGzipFile, zlib.error) as e:
        raise ArchiveError(f"invalid tar.gz archive: {e}") from e

    raise MissingEntryError(
        f"file {entry_name} does not exist in archive",
        details={"entry": entry_name},
    )


Extractor = Callable[[bytes, str, Path], Path]

# magic bytes -> extraction strategy
EXTRACTORS: dict[bytes, Extractor] = {
    ZIP_MAGIC: extract_zip,
    GZIP_MAGIC: extract_tar_gz,
}


def extract(data: bytes, entry_name: str, output_dir: Path) -> Path:
    """Extract ``entry_name`` from archive ``data`` into ``output_dir``.

    Returns:
        Path of the written file

    Raises:
        UnsupportedFormatError: Data is neither zip nor gzip
        MissingEntryError: No entry with that name
        ArchiveError: Entry is a directory or the archive is corrupt
    """
    extractor = EXTRACTORS.get(bytes(data[:2]))
    if extractor is None:
        raise UnsupportedFormatError(details={"magic": bytes(data[:2]).hex()})
    return extractor(data, entry_name, Path(output_dir))
