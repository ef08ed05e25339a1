"""Shared runtime context for pipeline stages."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..config.models import BuildConfig
from ..logging_utils import CapturedLog
from ..manifest import PackageManifest
from ..services.signature import CacheSignature, CacheStatus
from ..workspace import BuildContext
from .metadata import MetadataWriter

if TYPE_CHECKING:
    from ..services.cache import CacheDirectorySet
    from ..services.dependencies import DependencyInstaller, InstallBranch
    from ..services.versions import ResolvedVersions


class PipelineState(str, Enum):
    INIT = "init"
    ENVIRONMENT_READY = "environment-ready"
    BINARIES_INSTALLED = "binaries-installed"
    CACHE_RESTORED = "cache-restored"
    DEPENDENCIES_INSTALLED = "dependencies-installed"
    CACHE_SAVED = "cache-saved"
    PRUNED = "pruned"
    SUMMARIZED = "summarized"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PipelineContext:
    build: BuildContext
    config: BuildConfig
    metadata: MetadataWriter
    captured_log: CapturedLog
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("nodebuild.pipeline"))
    manifest: PackageManifest | None = None
    prebuilt: bool = False
    resolved: "ResolvedVersions | None" = None
    cache_directories: "CacheDirectorySet | None" = None
    signature: CacheSignature | None = None
    branch: "InstallBranch | None" = None
    dependencies: "DependencyInstaller | None" = None
    diagnostics: dict[str, Any] = field(default_factory=dict)
    _cache_status: CacheStatus | None = None

    @property
    def cache_status(self) -> CacheStatus | None:
        return self._cache_status

    def set_cache_status(self, status: CacheStatus) -> None:
        if self._cache_status is not None:
            raise RuntimeError("Cache status is computed once per build")
        self._cache_status = status

    def require(self, name: str) -> Any:
        value = getattr(self, name)
        if value is None:
            raise RuntimeError(f"Pipeline context has no {name}; an earlier stage did not run")
        return value

    def record_diagnostic(self, stage: str, payload: Any) -> None:
        self.diagnostics.setdefault("stages", {})[stage] = payload
