from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import pytest

from nodebuild.config.loader import build_environment, load_config
from nodebuild.config.models import BuildConfig, MirrorSettings
from nodebuild.pipeline.runner import PipelineRunner
from nodebuild.pipeline.stages import build_default_stages
from nodebuild.services.installer import BinaryInstaller, InstalledVersion
from nodebuild.services.process import CommandRunner
from nodebuild.services.versions import Release, StaticReleaseIndex
from nodebuild.workspace import BuildContext

PLATFORM = "linux-x64"

CATALOG = StaticReleaseIndex(
    {
        "node": [
            Release("20.5.0"),
            Release("18.17.1", lts=True),
            Release("18.16.0", lts=True),
            Release("16.20.2", lts=True),
            Release("21.0.0-rc.1"),
        ],
        "iojs": [Release("3.3.1"), Release("2.5.0")],
        "yarn": [Release("1.22.19"), Release("1.22.4")],
        "npm": [Release("9.8.1"), Release("8.19.4")],
    }
)

INSTALL_COMMANDS = {("npm", "install"), ("npm", "ci"), ("yarn", "install")}


class FakeCommandRunner(CommandRunner):
    """Records commands instead of spawning them; scripted failures are matched by argv prefix."""

    def __init__(self, context: BuildContext, npm_version: str = "9.6.7") -> None:
        super().__init__(context)
        self.npm_version = npm_version
        self.calls: list[tuple[str, ...]] = []
        self.failures: dict[tuple[str, ...], tuple[int, str]] = {}
        self.modules_present_at_install: list[bool] = []

    def fail(self, prefix: tuple[str, ...], returncode: int = 1, output: str = "") -> None:
        self.failures[prefix] = (returncode, output)

    def _spawn(self, argv: tuple[str, ...], cwd: Path, env: dict[str, str]) -> tuple[int, str]:
        self.calls.append(argv)
        for prefix, (returncode, output) in self.failures.items():
            if argv[: len(prefix)] == prefix:
                return returncode, output
        if argv == ("npm", "--version"):
            return 0, f"{self.npm_version}\n"
        if argv[:2] in INSTALL_COMMANDS and "-g" not in argv:
            modules = cwd / "node_modules"
            self.modules_present_at_install.append(modules.exists())
            (modules / "left-pad").mkdir(parents=True, exist_ok=True)
            (modules / "left-pad" / "index.js").write_text("module.exports = () => {};\n")
        return 0, ""

    def ran(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == prefix for call in self.calls)


class FakeInstaller(BinaryInstaller):
    def __init__(self, context: BuildContext) -> None:
        super().__init__(context, MirrorSettings(), client=None)  # type: ignore[arg-type]
        self.calls: list[tuple[str, str, str]] = []

    def install(self, kind: str, version: str, platform: str) -> InstalledVersion:
        self._claim(kind)
        prefix = self.prefix_for(kind)
        (prefix / "bin").mkdir(parents=True, exist_ok=True)
        installed = InstalledVersion(kind=kind, version=version, prefix=prefix)
        self._installed[kind] = installed
        self.calls.append((kind, version, platform))
        return installed


@dataclass
class BuildHarness:
    root: Path
    env_vars: dict[str, str] = field(default_factory=dict)
    build_count: int = 0

    @property
    def cache_dir(self) -> Path:
        return self.root / "cache"

    def new_build_dir(self, package: dict | None = None, files: dict[str, str] | None = None) -> Path:
        self.build_count += 1
        build_dir = self.root / f"build{self.build_count}"
        build_dir.mkdir(parents=True)
        if package is not None:
            (build_dir / "package.json").write_text(json.dumps(package))
        for name, content in (files or {}).items():
            path = build_dir / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return build_dir

    def context(self, build_dir: Path) -> BuildContext:
        env_dir = self.root / "env"
        env_dir.mkdir(exist_ok=True)
        for key, value in self.env_vars.items():
            (env_dir / key).write_text(value)
        env = build_environment(env_dir, base_env={"PATH": "/usr/bin:/bin", "NODEBUILD_PLATFORM": PLATFORM})
        return BuildContext.create(
            build_dir=build_dir,
            cache_dir=self.cache_dir,
            env_dir=env_dir,
            platform=PLATFORM,
            env=env,
        )

    def runner(
        self,
        build_dir: Path,
        configure: Callable[[FakeCommandRunner], None] | None = None,
    ) -> tuple[PipelineRunner, FakeInstaller, FakeCommandRunner]:
        context = self.context(build_dir)
        config: BuildConfig = load_config(context.env)
        commands = FakeCommandRunner(context)
        if configure is not None:
            configure(commands)
        installer = FakeInstaller(context)
        stages = build_default_stages(
            config=config,
            context=context,
            release_index=CATALOG,
            installer=installer,
            runner=commands,
        )
        return PipelineRunner(context=context, config=config, stages=stages), installer, commands


@pytest.fixture
def harness(tmp_path: Path) -> BuildHarness:
    return BuildHarness(root=tmp_path)
