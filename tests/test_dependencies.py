from pathlib import Path

import pytest

from nodebuild.config.loader import load_config
from nodebuild.errors import BuildScriptFailedError
from nodebuild.manifest import LockfileKind, PackageManifest
from nodebuild.services.dependencies import DependencyInstaller, InstallBranch, select_branch
from nodebuild.workspace import BuildContext

from conftest import FakeCommandRunner


@pytest.mark.parametrize(
    ("lockfile", "prebuilt", "expected"),
    [
        (LockfileKind.YARN, True, InstallBranch.YARN),
        (LockfileKind.YARN, False, InstallBranch.YARN),
        (LockfileKind.NPM, True, InstallBranch.REBUILD),
        (LockfileKind.NONE, True, InstallBranch.REBUILD),
        (LockfileKind.NPM, False, InstallBranch.FRESH),
        (LockfileKind.NONE, False, InstallBranch.FRESH),
    ],
)
def test_select_branch(lockfile: LockfileKind, prebuilt: bool, expected: InstallBranch) -> None:
    assert select_branch(lockfile, prebuilt) is expected


def _installer(
    tmp_path: Path,
    manifest: PackageManifest,
    branch: InstallBranch,
    env: dict[str, str] | None = None,
) -> tuple[DependencyInstaller, FakeCommandRunner]:
    build_dir = tmp_path / "build"
    build_dir.mkdir(exist_ok=True)
    context = BuildContext.create(
        build_dir=build_dir,
        cache_dir=tmp_path / "cache",
        env_dir=tmp_path / "env",
        platform="linux-x64",
        env=env or {},
    )
    commands = FakeCommandRunner(context)
    config = load_config(env or {"NODEBUILD_PLATFORM": "linux-x64"})
    return DependencyInstaller(context, config, manifest, commands, branch), commands


def test_yarn_install_and_prune_commands(tmp_path: Path) -> None:
    manifest = PackageManifest(lockfile=LockfileKind.YARN)
    installer, commands = _installer(
        tmp_path, manifest, InstallBranch.YARN, env={"YARN_PRODUCTION": "false", "YARN_CACHE_FOLDER": "/tmp/yc"}
    )

    installer.install()
    installer.prune()

    assert commands.calls == [
        ("yarn", "install", "--production=false", "--frozen-lockfile", "--ignore-engines", "--cache-folder", "/tmp/yc"),
        (
            "yarn",
            "install",
            "--production=true",
            "--frozen-lockfile",
            "--ignore-engines",
            "--prefer-offline",
            "--cache-folder",
            "/tmp/yc",
        ),
    ]


def test_fresh_install_prefers_npm_ci_with_lockfile(tmp_path: Path) -> None:
    installer, commands = _installer(tmp_path, PackageManifest(lockfile=LockfileKind.NPM), InstallBranch.FRESH)
    installer.install()
    assert commands.calls == [("npm", "ci", "--production=true", "--unsafe-perm")]


def test_use_npm_install_overrides_npm_ci(tmp_path: Path) -> None:
    installer, commands = _installer(
        tmp_path,
        PackageManifest(lockfile=LockfileKind.NPM),
        InstallBranch.FRESH,
        env={"USE_NPM_INSTALL": "true", "NPM_CONFIG_PRODUCTION": "false"},
    )
    installer.install()
    assert commands.calls == [("npm", "install", "--production=false", "--unsafe-perm")]


def test_rebuild_branch_rebuilds_then_installs(tmp_path: Path) -> None:
    installer, commands = _installer(tmp_path, PackageManifest(), InstallBranch.REBUILD)
    installer.install()
    assert [call[:2] for call in commands.calls] == [("npm", "rebuild"), ("npm", "install")]


def test_rebuild_without_manifest_skips_install(tmp_path: Path) -> None:
    installer, commands = _installer(tmp_path, PackageManifest(exists=False), InstallBranch.REBUILD)
    installer.install()
    assert commands.calls == [("npm", "rebuild")]


def test_build_script_precedence(tmp_path: Path) -> None:
    manifest = PackageManifest(scripts={"build": "webpack", "heroku-postbuild": "make"})
    installer, commands = _installer(tmp_path, manifest, InstallBranch.FRESH)
    assert installer.run_build_script() == "heroku-postbuild"
    assert commands.calls == [("npm", "run", "heroku-postbuild")]


def test_scripts_run_through_yarn_on_yarn_branch(tmp_path: Path) -> None:
    manifest = PackageManifest(scripts={"heroku-prebuild": "echo"}, lockfile=LockfileKind.YARN)
    installer, commands = _installer(tmp_path, manifest, InstallBranch.YARN)
    assert installer.run_prebuild_script() == "heroku-prebuild"
    assert installer.run_build_script() is None
    assert commands.calls == [("yarn", "run", "heroku-prebuild")]


def test_npm_cache_folder_is_exported(tmp_path: Path) -> None:
    installer, _ = _installer(
        tmp_path, PackageManifest(), InstallBranch.FRESH, env={"NPM_CONFIG_CACHE": "/tmp/npm-cache"}
    )
    assert installer._env() == {"npm_config_cache": "/tmp/npm-cache"}


def test_failed_command_raises_with_exit_code(tmp_path: Path) -> None:
    installer, commands = _installer(tmp_path, PackageManifest(), InstallBranch.FRESH)
    commands.fail(("npm", "prune"), returncode=3)
    with pytest.raises(BuildScriptFailedError) as excinfo:
        installer.prune()
    assert excinfo.value.returncode == 3
