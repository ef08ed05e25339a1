"""Key/value build metadata persisted in the cache for the next build."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path

METADATA_FILENAME = "nodejs"
PREVIOUS_FILENAME = "nodejs-prev"


class MetadataWriter:
    """Write-only handle given to pipeline stages."""

    __slots__ = ("_store",)

    def __init__(self, store: "BuildMetadata") -> None:
        self._store = store

    def set(self, key: str, value: object) -> None:
        self._store.set(key, value)


class BuildMetadata:
    """Build facts accumulated by the pipeline and written to ``<cache>/build-data``.

    On :meth:`load` the file left by the previous build is rotated to
    ``nodejs-prev`` so it stays readable for comparison while this build
    records its own values.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._values: dict[str, str] = {}
        self.previous: dict[str, str] = {}
        self.logger = logging.getLogger("nodebuild.metadata")

    @property
    def path(self) -> Path:
        return self.directory / METADATA_FILENAME

    @property
    def previous_path(self) -> Path:
        return self.directory / PREVIOUS_FILENAME

    def load(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            shutil.move(str(self.path), self.previous_path)
        if self.previous_path.exists():
            self.previous = parse_metadata(self.previous_path.read_text())
            self.logger.debug("Loaded metadata from previous build: %s", self.previous)

    def set(self, key: str, value: object) -> None:
        if "\n" in key or "=" in key:
            raise ValueError(f"Invalid metadata key: {key!r}")
        self._values[key] = _stringify(value)

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def writer(self) -> MetadataWriter:
        return MetadataWriter(self)

    def as_dict(self) -> dict[str, str]:
        return dict(self._values)

    def persist(self) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        body = "".join(f"{key}={value}\n" for key, value in self._values.items())
        self.path.write_text(body)
        return self.path


def parse_metadata(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key] = value
    return values


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).replace("\n", " ")
