"""Parsed view of package.json and lockfile detection."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from .errors import ConflictingLockfilesError, InvalidManifestError

NPM_LOCKFILE = "package-lock.json"
YARN_LOCKFILE = "yarn.lock"

logger = logging.getLogger("nodebuild.manifest")


class LockfileKind(str, Enum):
    NONE = "none"
    NPM = "npm"
    YARN = "yarn"
    BOTH = "both"


def detect_lockfile(build_dir: Path) -> LockfileKind:
    has_npm = (build_dir / NPM_LOCKFILE).is_file()
    has_yarn = (build_dir / YARN_LOCKFILE).is_file()
    if has_npm and has_yarn:
        return LockfileKind.BOTH
    if has_yarn:
        return LockfileKind.YARN
    if has_npm:
        return LockfileKind.NPM
    return LockfileKind.NONE


@dataclass(frozen=True, slots=True)
class PackageManifest:
    """Engine constraints, scripts and cache hints declared by the application."""

    engines: Mapping[str, str] = field(default_factory=dict)
    scripts: Mapping[str, str] = field(default_factory=dict)
    cache_directories: tuple[str, ...] = ()
    has_dependencies: bool = False
    has_dev_dependencies: bool = False
    lockfile: LockfileKind = LockfileKind.NONE
    exists: bool = True

    @property
    def node_requirement(self) -> str | None:
        return self.engines.get("node")

    @property
    def iojs_requirement(self) -> str | None:
        return self.engines.get("iojs")

    @property
    def npm_requirement(self) -> str | None:
        return self.engines.get("npm")

    @property
    def yarn_requirement(self) -> str | None:
        return self.engines.get("yarn")

    @property
    def uses_yarn(self) -> bool:
        return self.lockfile is LockfileKind.YARN

    def script(self, name: str) -> str | None:
        return self.scripts.get(name)

    def require_single_lockfile(self) -> None:
        if self.lockfile is LockfileKind.BOTH:
            raise ConflictingLockfilesError()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], lockfile: LockfileKind = LockfileKind.NONE) -> "PackageManifest":
        engines = _string_mapping(payload.get("engines"), "engines")
        scripts = _string_mapping(payload.get("scripts"), "scripts")
        raw_dirs = payload.get("cacheDirectories") or payload.get("cache_directories") or []
        if not isinstance(raw_dirs, list) or not all(isinstance(item, str) for item in raw_dirs):
            raise InvalidManifestError("cacheDirectories must be a list of relative paths")
        return cls(
            engines=engines,
            scripts=scripts,
            cache_directories=tuple(item.strip().rstrip("/") for item in raw_dirs if item.strip()),
            has_dependencies=bool(payload.get("dependencies")),
            has_dev_dependencies=bool(payload.get("devDependencies")),
            lockfile=lockfile,
        )


def load_manifest(build_dir: Path) -> PackageManifest:
    """Read ``package.json`` from ``build_dir``; a missing file yields an empty manifest."""
    lockfile = detect_lockfile(build_dir)
    path = build_dir / "package.json"
    if not path.exists():
        logger.warning("No package.json found; continuing with an empty manifest")
        return PackageManifest(lockfile=lockfile, exists=False)

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidManifestError(f"Unable to parse package.json: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidManifestError("package.json must contain a JSON object")
    return PackageManifest.from_dict(payload, lockfile=lockfile)


def _string_mapping(value: Any, section: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidManifestError(f"package.json field {section!r} must be an object")
    return {str(key): str(item) for key, item in value.items() if item is not None}
