"""Source descriptors and the directory-backed source watcher.

The core never trusts a watcher's own notion of "changed": it compares each
descriptor against the stored watermark (see IngestionCoordinator.detect).
A watcher only has to report what currently exists.
"""

from __future__ import annotations

import csv
import fnmatch
import io
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

TEXT_EXTS = frozenset([".txt", ".md", ".markdown", ".rst", ".text", ".log"])
TABULAR_EXTS = frozenset([".csv", ".json"])
ALL_EXTS = TEXT_EXTS | TABULAR_EXTS


@dataclass
class SourceDescriptor:
    """One source as reported by a watcher.

    Exactly one of ``content`` (textual source) or ``rows`` (tabular source)
    is expected to be set.
    """

    id: str
    title: str
    url: str = ""
    content: str | bytes | None = None
    rows: list[dict[str, Any]] | None = None
    last_modified: datetime | None = None

    @property
    def kind(self) -> str:
        return "tabular" if self.rows is not None else "text"

    @property
    def last_modified_iso(self) -> str | None:
        """UTC ISO-8601 form of ``last_modified`` (naive values are taken as UTC)."""
        if self.last_modified is None:
            return None
        ts = self.last_modified
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc).isoformat()


class SourceWatcher(Protocol):
    def poll(self) -> Iterable[SourceDescriptor]:
        """Return a descriptor for every source that currently exists."""
        ...


class StaticWatcher:
    """Watcher over a fixed list of descriptors (API callers, tests)."""

    def __init__(self, descriptors: Iterable[SourceDescriptor]) -> None:
        self._descriptors = list(descriptors)

    def poll(self) -> list[SourceDescriptor]:
        return list(self._descriptors)


class DirectoryWatcher:
    """Report supported files under one or more paths.

    Document ids are paths relative to the scanned directory (or the file
    name for a single file), so they stay stable across runs. With more than
    one path, each id is prefixed with the name of the directory it was
    found under, so `docs/README.md` and `notes/README.md` stay distinct.

    ``.csv`` files and ``.json`` files holding an array of objects are
    delivered as rows; every other supported file is delivered as raw bytes
    for the text extractor.
    """

    def __init__(
        self,
        paths: Iterable[Path | str],
        recursive: bool = True,
        exclude: Iterable[str] = (),
        max_depth: int = 10,
    ) -> None:
        self.paths = [Path(p) for p in paths]
        self.recursive = recursive
        self.exclude = list(exclude)
        self.max_depth = max_depth

    def poll(self) -> list[SourceDescriptor]:
        descriptors: list[SourceDescriptor] = []
        qualify = len(self.paths) > 1
        for root in self.paths:
            if root.is_dir():
                files = self._scan_dir(root, depth=0)
                base = root
            elif root.is_file():
                files = [root]
                base = root.parent
            else:
                logger.warning("Source path does not exist: %s", root)
                continue
            prefix = base.resolve().name if qualify else ""
            for path in files:
                descriptor = self._describe(path, base, prefix)
                if descriptor is not None:
                    descriptors.append(descriptor)
        return descriptors

    # ------------------------------------------------------------------

    def _scan_dir(self, directory: Path, depth: int) -> list[Path]:
        """Return supported files in *directory* (optionally recursive)."""
        if depth > self.max_depth:
            return []
        files: list[Path] = []
        try:
            entries = sorted(directory.iterdir())
        except PermissionError:
            logger.warning("Permission denied: %s", directory)
            return []
        for entry in entries:
            if entry.name.startswith(".") or any(
                fnmatch.fnmatch(entry.name, pat) for pat in self.exclude
            ):
                continue
            if entry.is_file() and entry.suffix.lower() in ALL_EXTS:
                files.append(entry)
            elif entry.is_dir() and self.recursive and depth < self.max_depth:
                files.extend(self._scan_dir(entry, depth=depth + 1))
        return files

    def _describe(self, path: Path, base: Path, prefix: str = "") -> SourceDescriptor | None:
        try:
            raw = path.read_bytes()
            mtime = path.stat().st_mtime
        except OSError as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            return None
        relative = path.relative_to(base).as_posix()

        descriptor = SourceDescriptor(
            id=f"{prefix}/{relative}" if prefix else relative,
            title=path.name,
            url=path.resolve().as_uri(),
            last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
        )
        ext = path.suffix.lower()
        rows = _read_rows(raw, ext) if ext in TABULAR_EXTS else None
        if rows is not None:
            descriptor.rows = rows
        else:
            descriptor.content = raw
        return descriptor


def _read_rows(raw: bytes, ext: str) -> list[dict[str, Any]] | None:
    """Parse CSV / JSON-array bytes into records; None means "treat as text"."""
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return None
    if ext == ".csv":
        try:
            return [dict(r) for r in csv.DictReader(io.StringIO(text))]
        except csv.Error as exc:
            logger.warning("Cannot parse CSV, treating it as text: %s", exc)
            return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(data, list) and data and all(isinstance(item, dict) for item in data):
        return data
    return None
