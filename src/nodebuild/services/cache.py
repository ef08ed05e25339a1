"""Restore and save dependency directories across builds."""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator

from ..errors import InvalidManifestError, PolicyViolationError
from ..workspace import BuildContext
from .signature import CacheSignature, CacheStatus, write_signature

DEFAULT_CACHE_DIRECTORIES = ("node_modules", "bower_components")


@dataclass(frozen=True, slots=True)
class CacheDirectorySet:
    directories: tuple[str, ...]
    custom: bool = False

    @classmethod
    def from_manifest(cls, declared: Iterable[str]) -> "CacheDirectorySet":
        paths: list[PurePosixPath] = []
        for entry in declared:
            path = PurePosixPath(entry)
            if path.is_absolute() or ".." in path.parts:
                raise InvalidManifestError(f"cacheDirectories entry must be a relative path: {entry!r}")
            if path.parts and path not in paths:
                paths.append(path)
        if not paths:
            return cls(directories=DEFAULT_CACHE_DIRECTORIES)
        # a directory nested in another entry is already copied with its parent
        kept = [path for path in paths if not any(other in path.parents for other in paths)]
        return cls(directories=tuple(str(path) for path in kept), custom=True)

    def __iter__(self) -> Iterator[str]:
        return iter(self.directories)

    def __len__(self) -> int:
        return len(self.directories)


class CacheManager:
    """Mirror the directories of a :class:`CacheDirectorySet` between build and cache dirs."""

    def __init__(self, context: BuildContext) -> None:
        self.context = context
        self.logger = logging.getLogger("nodebuild.cache")

    def enforce_modules_policy(self, policy: str, *, uses_yarn: bool) -> bool:
        """Apply the checked-in ``node_modules`` policy; return True when the directory was removed."""
        modules = self.context.build_dir / "node_modules"
        if not modules.exists():
            return False
        if policy == "forbid":
            raise PolicyViolationError(
                "node_modules is checked into source control, which NODE_MODULES_POLICY=forbid does not allow. "
                "Add node_modules to .gitignore and remove it from the repository."
            )
        if uses_yarn:
            self.logger.warning(
                "node_modules checked into source control is not supported with yarn; "
                "deleting it before installing dependencies. Add node_modules to .gitignore."
            )
            shutil.rmtree(modules)
            return True
        self.logger.warning(
            "node_modules checked into source control. "
            "It is recommended to install dependencies during the build instead."
        )
        return False

    def restore(self, directories: CacheDirectorySet, status: CacheStatus) -> list[str]:
        if status is CacheStatus.DISABLED:
            self.logger.info("Caching has been disabled because NODE_MODULES_CACHE=false")
            return []
        if status is CacheStatus.EMPTY:
            self.logger.info("Cache directories not restored: no cache found from a previous build")
            return []
        if status is CacheStatus.NEW_SIGNATURE:
            self.logger.info(
                "Cached directories were not restored due to a change in version of node, npm, yarn or stack"
            )
            self.logger.info("Module installation may take longer for this build")
            return []

        label = "custom" if directories.custom else "default"
        self.logger.info("Loading %d from cacheDirectories (%s):", len(directories), label)
        restored: list[str] = []
        for name in directories:
            source = self.context.cached_dirs_root / name
            target = self.context.build_dir / name
            if target.exists():
                self.logger.info("- %s (exists - skipping)", name)
            elif not source.exists():
                self.logger.info("- %s (not cached - skipping)", name)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                _copy(source, target)
                self.logger.info("- %s", name)
                restored.append(name)
        return restored

    def save(self, directories: CacheDirectorySet, status: CacheStatus, signature: CacheSignature) -> list[str]:
        if status is CacheStatus.DISABLED:
            self.logger.info("Skipping cache save (disabled by config)")
            return []

        self.clear()
        label = "custom" if directories.custom else "default"
        self.logger.info("Saving %d cacheDirectories (%s):", len(directories), label)
        saved: list[str] = []
        for name in directories:
            source = self.context.build_dir / name
            if not source.exists():
                self.logger.info("- %s (nothing to cache)", name)
                continue
            target = self.context.cached_dirs_root / name
            target.parent.mkdir(parents=True, exist_ok=True)
            _copy(source, target)
            self.logger.info("- %s", name)
            saved.append(name)

        write_signature(self.context.signature_path, signature)
        return saved

    def clear(self) -> None:
        if self.context.cached_dirs_root.exists():
            shutil.rmtree(self.context.cached_dirs_root)
        self.context.cached_dirs_root.mkdir(parents=True, exist_ok=True)


def _copy(source: Path, target: Path) -> None:
    if source.is_dir():
        shutil.copytree(source, target, symlinks=True)
    else:
        shutil.copy2(source, target)
