"""Version tag ordering helpers."""

from __future__ import annotations

import re
from collections.abc import Iterable

from selenoid_cm.config import LATEST

_CHUNK_RE = re.compile(r"(\d+)")


def natural_key(value: str) -> tuple[tuple[int, int | str], ...]:
    """Sort key comparing digit runs as numbers ("10.0" > "9.0")."""
    chunks = []
    for chunk in _CHUNK_RE.split(value):
        if not chunk:
            continue
        if chunk.isdigit():
            chunks.append((0, int(chunk)))
        else:
            chunks.append((1, chunk))
    return tuple(chunks)


def sort_tags(tags: Iterable[str]) -> list[str]:
    """Drop the ``latest`` tag and sort the rest newest first."""
    return sorted((t for t in tags if t != LATEST), key=natural_key, reverse=True)


def limit(tags: list[str], last_versions: int) -> list[str]:
    """Keep the first ``last_versions`` tags (0 keeps all)."""
    if last_versions > 0:
        return tags[:last_versions]
    return tags
