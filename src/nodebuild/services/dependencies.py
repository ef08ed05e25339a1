"""Drive npm or yarn to materialize, build and prune application dependencies."""
from __future__ import annotations

import logging
from enum import Enum

from ..config.models import BuildConfig
from ..errors import BuildScriptFailedError
from ..manifest import LockfileKind, PackageManifest
from ..workspace import BuildContext
from .process import CommandRunner, ProcessResult

PREBUILD_SCRIPT = "heroku-prebuild"
BUILD_SCRIPTS = ("heroku-postbuild", "build")


class InstallBranch(str, Enum):
    YARN = "yarn"
    REBUILD = "rebuild"
    FRESH = "fresh"


def select_branch(lockfile: LockfileKind, prebuilt: bool) -> InstallBranch:
    if lockfile is LockfileKind.YARN:
        return InstallBranch.YARN
    if prebuilt:
        return InstallBranch.REBUILD
    return InstallBranch.FRESH


class DependencyInstaller:
    """Run the package-manager workflow chosen once per build by :func:`select_branch`."""

    def __init__(
        self,
        context: BuildContext,
        config: BuildConfig,
        manifest: PackageManifest,
        runner: CommandRunner,
        branch: InstallBranch,
    ) -> None:
        self.context = context
        self.config = config
        self.manifest = manifest
        self.runner = runner
        self.branch = branch
        self.logger = logging.getLogger("nodebuild.dependencies")

    @property
    def uses_yarn(self) -> bool:
        return self.branch is InstallBranch.YARN

    def run_prebuild_script(self) -> str | None:
        if self.manifest.script(PREBUILD_SCRIPT) is None:
            return None
        self.logger.info("Running %s", PREBUILD_SCRIPT)
        self._check(self._run_script(PREBUILD_SCRIPT), PREBUILD_SCRIPT)
        return PREBUILD_SCRIPT

    def install(self) -> InstallBranch:
        if self.branch is InstallBranch.YARN:
            self.logger.info("Installing node modules (yarn.lock)")
            command = [
                "yarn",
                "install",
                f"--production={_flag(self.config.yarn_production)}",
                "--frozen-lockfile",
                "--ignore-engines",
                *self._yarn_cache_args(),
            ]
            self._check(self.runner.run(command, env=self._env(), echo=True), "yarn install")
        elif self.branch is InstallBranch.REBUILD:
            self.logger.info("Prebuild detected (node_modules already exists)")
            self.logger.info("Rebuilding any native modules")
            self._check(self.runner.run(["npm", "rebuild"], env=self._env(), echo=True), "npm rebuild")
            if self.manifest.exists:
                self.logger.info("Installing any new modules (package.json)")
                self._check(self.runner.run(self._npm_install_command(), env=self._env(), echo=True), "npm install")
        else:
            if self.manifest.lockfile is LockfileKind.NPM:
                self.logger.info("Installing node modules (package.json + package-lock)")
            else:
                self.logger.info("Installing node modules (package.json)")
            command = self._npm_ci_command() if self._use_npm_ci() else self._npm_install_command()
            self._check(self.runner.run(command, env=self._env(), echo=True), " ".join(command[:2]))
        return self.branch

    def run_build_script(self) -> str | None:
        for name in BUILD_SCRIPTS:
            if self.manifest.script(name) is not None:
                self.logger.info("Running %s", name)
                self._check(self._run_script(name), name)
                return name
        return None

    def prune(self) -> None:
        if self.uses_yarn:
            self.logger.info("Pruning devDependencies with yarn")
            command = [
                "yarn",
                "install",
                "--production=true",
                "--frozen-lockfile",
                "--ignore-engines",
                "--prefer-offline",
                *self._yarn_cache_args(),
            ]
            self._check(self.runner.run(command, env=self._env()), "yarn install --production")
        else:
            self.logger.info("Pruning devDependencies with npm")
            self._check(self.runner.run(["npm", "prune", "--production"], env=self._env()), "npm prune")

    def list_dependencies(self) -> ProcessResult:
        if self.uses_yarn:
            return self.runner.run(["yarn", "list", "--depth=0"], env=self._env(), echo=True)
        return self.runner.run(["npm", "ls", "--depth=0"], env=self._env(), echo=True)

    def _run_script(self, name: str) -> ProcessResult:
        tool = "yarn" if self.uses_yarn else "npm"
        return self.runner.run([tool, "run", name], env=self._env(), echo=True)

    def _use_npm_ci(self) -> bool:
        return self.manifest.lockfile is LockfileKind.NPM and not self.config.use_npm_install

    def _npm_install_command(self) -> list[str]:
        return ["npm", "install", f"--production={_flag(self.config.npm_production)}", "--unsafe-perm"]

    def _npm_ci_command(self) -> list[str]:
        return ["npm", "ci", f"--production={_flag(self.config.npm_production)}", "--unsafe-perm"]

    def _yarn_cache_args(self) -> list[str]:
        if self.config.yarn_cache_folder is None:
            return []
        return ["--cache-folder", str(self.config.yarn_cache_folder)]

    def _env(self) -> dict[str, str]:
        env: dict[str, str] = {}
        if self.config.npm_cache_folder is not None:
            env["npm_config_cache"] = str(self.config.npm_cache_folder)
        if self.config.yarn_cache_folder is not None:
            env["YARN_CACHE_FOLDER"] = str(self.config.yarn_cache_folder)
        return env

    def _check(self, result: ProcessResult, label: str) -> None:
        if not result.ok:
            self.logger.error("%s exited with code %s", label, result.returncode)
            raise BuildScriptFailedError(label, result.returncode)


def _flag(value: bool) -> str:
    return "true" if value else "false"
