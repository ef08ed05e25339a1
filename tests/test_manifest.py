import json
from pathlib import Path

import pytest

from nodebuild.errors import ConflictingLockfilesError, InvalidManifestError
from nodebuild.manifest import LockfileKind, PackageManifest, detect_lockfile, load_manifest


def test_load_manifest_reads_engines_scripts_and_cache_dirs(tmp_path: Path) -> None:
    (tmp_path / "package.json").write_text(
        json.dumps(
            {
                "engines": {"node": "18.x", "npm": "9.x"},
                "scripts": {"build": "tsc"},
                "cacheDirectories": ["client/node_modules/", " "],
                "dependencies": {"express": "^4"},
            }
        )
    )
    (tmp_path / "package-lock.json").write_text("{}")

    manifest = load_manifest(tmp_path)

    assert manifest.node_requirement == "18.x"
    assert manifest.npm_requirement == "9.x"
    assert manifest.yarn_requirement is None
    assert manifest.script("build") == "tsc"
    assert manifest.cache_directories == ("client/node_modules",)
    assert manifest.has_dependencies and not manifest.has_dev_dependencies
    assert manifest.lockfile is LockfileKind.NPM
    assert not manifest.uses_yarn


def test_missing_manifest_is_empty(tmp_path: Path) -> None:
    (tmp_path / "yarn.lock").write_text("")
    manifest = load_manifest(tmp_path)
    assert not manifest.exists
    assert manifest.engines == {}
    assert manifest.uses_yarn


@pytest.mark.parametrize("body", ["{not json", "[1, 2]", '{"engines": "18.x"}', '{"cacheDirectories": "dist"}'])
def test_malformed_manifest(tmp_path: Path, body: str) -> None:
    (tmp_path / "package.json").write_text(body)
    with pytest.raises(InvalidManifestError):
        load_manifest(tmp_path)


def test_lockfile_detection(tmp_path: Path) -> None:
    assert detect_lockfile(tmp_path) is LockfileKind.NONE
    (tmp_path / "yarn.lock").write_text("")
    assert detect_lockfile(tmp_path) is LockfileKind.YARN
    (tmp_path / "package-lock.json").write_text("{}")
    assert detect_lockfile(tmp_path) is LockfileKind.BOTH

    with pytest.raises(ConflictingLockfilesError, match="Two different lockfiles found"):
        PackageManifest(lockfile=LockfileKind.BOTH).require_single_lockfile()
