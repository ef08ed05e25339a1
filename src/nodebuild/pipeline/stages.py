"""Concrete pipeline stage implementations."""
from __future__ import annotations

import dataclasses
import logging
from abc import ABC, abstractmethod

from ..config.models import BuildConfig
from ..manifest import load_manifest
from ..services.cache import CacheDirectorySet, CacheManager
from ..services.dependencies import DependencyInstaller, select_branch
from ..services.installer import BinaryInstaller
from ..services.process import CommandRunner
from ..services.signature import compare, compute_signature, read_signature
from ..services.versions import ReleaseIndex, ResolvedVersions, VersionResolver
from ..workspace import BuildContext
from .context import PipelineContext, PipelineState

_ECHOED_ENV_PREFIXES = ("NPM_CONFIG_", "YARN_", "NODE_")


class PipelineStage(ABC):
    name: str
    state: PipelineState

    @abstractmethod
    def run(self, ctx: PipelineContext) -> None:  # pragma: no cover - runtime behaviour
        """Execute the stage."""


class EnvironmentStage(PipelineStage):
    name = "Environment"
    state = PipelineState.ENVIRONMENT_READY

    def __init__(self) -> None:
        self.logger = logging.getLogger("nodebuild.stages.environment")

    def run(self, ctx: PipelineContext) -> None:
        build = ctx.build
        self.logger.info("Creating runtime environment")
        for key in sorted(build.env):
            if key.startswith(_ECHOED_ENV_PREFIXES):
                self.logger.info("%s=%s", key, build.env[key])

        manifest = load_manifest(build.build_dir)
        manifest.require_single_lockfile()
        ctx.manifest = manifest
        ctx.prebuilt = (build.build_dir / "node_modules").exists()
        ctx.cache_directories = CacheDirectorySet.from_manifest(manifest.cache_directories)
        ctx.branch = select_branch(manifest.lockfile, ctx.prebuilt)

        self.logger.info("Resolving node version")
        for engine in ("node", "iojs", "npm", "yarn"):
            requirement = manifest.engines.get(engine)
            if requirement is not None or engine in {"node", "npm"}:
                self.logger.info("engines.%s (package.json): %s", engine, requirement or "unspecified")
        if manifest.node_requirement is None and manifest.iojs_requirement is None:
            self.logger.warning("Node version not specified in package.json; the latest stable release will be used")

        ctx.metadata.set("node-version-request", manifest.node_requirement or "")
        ctx.metadata.set("iojs-version-request", manifest.iojs_requirement or "")
        ctx.metadata.set("npm-version-request", manifest.npm_requirement or "")
        ctx.metadata.set("yarn-version-request", manifest.yarn_requirement or "")
        ctx.metadata.set("lockfile", manifest.lockfile.value)
        ctx.metadata.set("uses-yarn", manifest.uses_yarn)
        ctx.metadata.set("prebuild", ctx.prebuilt)
        ctx.metadata.set("custom-cache-dirs", ctx.cache_directories.custom)
        ctx.record_diagnostic(
            self.name,
            {
                "lockfile": manifest.lockfile.value,
                "prebuilt": ctx.prebuilt,
                "branch": ctx.branch.value,
                "cache_directories": list(ctx.cache_directories),
            },
        )


class BinaryInstallStage(PipelineStage):
    name = "Binaries"
    state = PipelineState.BINARIES_INSTALLED

    def __init__(self, resolver: VersionResolver, installer: BinaryInstaller, runner: CommandRunner) -> None:
        self.resolver = resolver
        self.installer = installer
        self.runner = runner
        self.logger = logging.getLogger("nodebuild.stages.binaries")

    def run(self, ctx: PipelineContext) -> None:
        manifest = ctx.require("manifest")
        platform = ctx.build.platform

        self.logger.info("Installing binaries")
        resolved: ResolvedVersions = self.resolver.resolve(manifest)
        runtime = self.installer.install(resolved.runtime, resolved.runtime_version, platform)
        ctx.metadata.set(f"{resolved.runtime}-version", runtime.version)

        if resolved.uses_yarn:
            package_manager = self.installer.install("yarn", resolved.package_manager_version or "", platform)
        else:
            package_manager = self.installer.install_npm(resolved.package_manager_version, self.runner)
        ctx.metadata.set(f"{resolved.package_manager}-version", package_manager.version)

        ctx.resolved = dataclasses.replace(resolved, installed_package_manager_version=package_manager.version)
        ctx.record_diagnostic(
            self.name,
            {
                "runtime": f"{resolved.runtime} {runtime.version}",
                "package_manager": f"{resolved.package_manager} {package_manager.version}",
            },
        )


class CacheRestoreStage(PipelineStage):
    name = "CacheRestore"
    state = PipelineState.CACHE_RESTORED

    def __init__(self, cache: CacheManager) -> None:
        self.cache = cache
        self.logger = logging.getLogger("nodebuild.stages.cache")

    def run(self, ctx: PipelineContext) -> None:
        resolved: ResolvedVersions = ctx.require("resolved")
        directories: CacheDirectorySet = ctx.require("cache_directories")

        self.logger.info("Restoring cache")
        self.cache.enforce_modules_policy(ctx.config.modules_policy, uses_yarn=resolved.uses_yarn)

        ctx.signature = compute_signature(resolved, ctx.build.platform)
        stored = read_signature(ctx.build.signature_path)
        status = compare(stored, ctx.signature, ctx.config.cache_enabled)
        ctx.set_cache_status(status)
        ctx.metadata.set("cache-status", status.value)

        restored = self.cache.restore(directories, status)
        ctx.record_diagnostic(self.name, {"status": status.value, "restored": restored})


class DependencyInstallStage(PipelineStage):
    name = "Dependencies"
    state = PipelineState.DEPENDENCIES_INSTALLED

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner
        self.logger = logging.getLogger("nodebuild.stages.dependencies")

    def run(self, ctx: PipelineContext) -> None:
        self.logger.info("Building dependencies")
        dependencies = DependencyInstaller(
            context=ctx.build,
            config=ctx.config,
            manifest=ctx.require("manifest"),
            runner=self.runner,
            branch=ctx.require("branch"),
        )
        ctx.dependencies = dependencies

        prebuild_script = dependencies.run_prebuild_script()
        branch = dependencies.install()
        build_script = dependencies.run_build_script()

        ctx.metadata.set("install-branch", branch.value)
        ctx.metadata.set("build-script", build_script or "")
        ctx.record_diagnostic(
            self.name,
            {"branch": branch.value, "prebuild_script": prebuild_script, "build_script": build_script},
        )


class CacheSaveStage(PipelineStage):
    name = "CacheSave"
    state = PipelineState.CACHE_SAVED

    def __init__(self, cache: CacheManager) -> None:
        self.cache = cache
        self.logger = logging.getLogger("nodebuild.stages.cache")

    def run(self, ctx: PipelineContext) -> None:
        self.logger.info("Caching build")
        saved = self.cache.save(ctx.require("cache_directories"), ctx.require("cache_status"), ctx.require("signature"))
        ctx.record_diagnostic(self.name, {"saved": saved})


class PruneStage(PipelineStage):
    name = "Prune"
    state = PipelineState.PRUNED

    def run(self, ctx: PipelineContext) -> None:
        ctx.require("dependencies").prune()


class SummaryStage(PipelineStage):
    name = "Summary"
    state = PipelineState.SUMMARIZED

    def __init__(self) -> None:
        self.logger = logging.getLogger("nodebuild.stages.summary")

    def run(self, ctx: PipelineContext) -> None:
        self.logger.info("Build succeeded!")
        listing = ctx.require("dependencies").list_dependencies()
        profile = ctx.build.write_profile()
        ctx.record_diagnostic(
            self.name,
            {
                "profile": str(profile),
                "listed": listing.ok,
                "cache_status": ctx.cache_status.value if ctx.cache_status else None,
            },
        )


def build_default_stages(
    config: BuildConfig,
    context: BuildContext,
    *,
    release_index: ReleaseIndex,
    installer: BinaryInstaller,
    runner: CommandRunner,
) -> list[PipelineStage]:
    cache = CacheManager(context)
    return [
        EnvironmentStage(),
        BinaryInstallStage(
            resolver=VersionResolver(release_index, context.platform),
            installer=installer,
            runner=runner,
        ),
        CacheRestoreStage(cache=cache),
        DependencyInstallStage(runner=runner),
        CacheSaveStage(cache=cache),
        PruneStage(),
        SummaryStage(),
    ]
