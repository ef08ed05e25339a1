from pathlib import Path

import pytest

from nodebuild.errors import InvalidManifestError, PolicyViolationError
from nodebuild.services.cache import DEFAULT_CACHE_DIRECTORIES, CacheDirectorySet, CacheManager
from nodebuild.services.signature import CacheSignature, CacheStatus, read_signature
from nodebuild.workspace import BuildContext

SIGNATURE = CacheSignature(runtime_version="node-18.17.1", package_manager_version="npm-9.6.7", platform="linux-x64")


def _context(tmp_path: Path, name: str = "build") -> BuildContext:
    build_dir = tmp_path / name
    build_dir.mkdir(exist_ok=True)
    return BuildContext.create(
        build_dir=build_dir,
        cache_dir=tmp_path / "cache",
        env_dir=tmp_path / "env",
        platform="linux-x64",
        env={},
    )


def _snapshot(root: Path) -> dict[str, str]:
    return {str(path.relative_to(root)): path.read_text() for path in sorted(root.rglob("*")) if path.is_file()}


def test_custom_directories_replace_defaults() -> None:
    assert CacheDirectorySet.from_manifest([]).directories == DEFAULT_CACHE_DIRECTORIES
    custom = CacheDirectorySet.from_manifest(["client/node_modules", ".cache"])
    assert custom.directories == ("client/node_modules", ".cache")
    assert custom.custom


def test_repeated_and_nested_directories_collapse() -> None:
    directories = CacheDirectorySet.from_manifest(
        ["node_modules", "node_modules/", "./node_modules/left-pad", "client/node_modules", "client"]
    )
    assert directories.directories == ("node_modules", "client")
    assert directories.custom


def test_save_with_overlapping_entries(tmp_path: Path) -> None:
    context = _context(tmp_path)
    (context.build_dir / "node_modules" / "left-pad").mkdir(parents=True)
    (context.build_dir / "node_modules" / "left-pad" / "index.js").write_text("pad")
    directories = CacheDirectorySet.from_manifest(["node_modules", "node_modules/left-pad", "node_modules/"])

    assert CacheManager(context).save(directories, CacheStatus.EMPTY, SIGNATURE) == ["node_modules"]
    assert (context.cached_dirs_root / "node_modules" / "left-pad" / "index.js").read_text() == "pad"


def test_custom_directories_must_stay_inside_build() -> None:
    with pytest.raises(InvalidManifestError):
        CacheDirectorySet.from_manifest(["../elsewhere"])


def test_save_then_restore_into_new_build(tmp_path: Path) -> None:
    first = _context(tmp_path, "first")
    (first.build_dir / "node_modules" / "a").mkdir(parents=True)
    (first.build_dir / "node_modules" / "a" / "index.js").write_text("a")
    directories = CacheDirectorySet.from_manifest([])

    saved = CacheManager(first).save(directories, CacheStatus.EMPTY, SIGNATURE)
    assert saved == ["node_modules"]
    assert read_signature(first.signature_path) == SIGNATURE

    second = _context(tmp_path, "second")
    restored = CacheManager(second).restore(directories, CacheStatus.VALID)
    assert restored == ["node_modules"]
    assert (second.build_dir / "node_modules" / "a" / "index.js").read_text() == "a"


def test_restore_then_save_is_idempotent(tmp_path: Path) -> None:
    seed = _context(tmp_path, "seed")
    (seed.build_dir / "node_modules" / "b").mkdir(parents=True)
    (seed.build_dir / "node_modules" / "b" / "package.json").write_text("{}")
    (seed.build_dir / "bower_components").mkdir()
    (seed.build_dir / "bower_components" / "x.js").write_text("x")
    directories = CacheDirectorySet.from_manifest([])
    CacheManager(seed).save(directories, CacheStatus.EMPTY, SIGNATURE)
    before = _snapshot(seed.cache_dir)

    context = _context(tmp_path, "again")
    manager = CacheManager(context)
    manager.restore(directories, CacheStatus.VALID)
    manager.save(directories, CacheStatus.VALID, SIGNATURE)

    assert _snapshot(context.cache_dir) == before


def test_new_signature_and_disabled_restore_nothing(tmp_path: Path) -> None:
    seed = _context(tmp_path, "seed")
    (seed.build_dir / "node_modules").mkdir()
    CacheManager(seed).save(CacheDirectorySet.from_manifest([]), CacheStatus.EMPTY, SIGNATURE)

    context = _context(tmp_path, "next")
    manager = CacheManager(context)
    assert manager.restore(CacheDirectorySet.from_manifest([]), CacheStatus.NEW_SIGNATURE) == []
    assert manager.restore(CacheDirectorySet.from_manifest([]), CacheStatus.DISABLED) == []
    assert not (context.build_dir / "node_modules").exists()


def test_missing_custom_directories_are_skipped(tmp_path: Path) -> None:
    context = _context(tmp_path)
    directories = CacheDirectorySet.from_manifest(["client/node_modules", "never-built"])
    (context.build_dir / "client" / "node_modules").mkdir(parents=True)
    manager = CacheManager(context)

    assert manager.save(directories, CacheStatus.EMPTY, SIGNATURE) == ["client/node_modules"]

    fresh = _context(tmp_path, "fresh")
    assert CacheManager(fresh).restore(directories, CacheStatus.VALID) == ["client/node_modules"]
    assert (fresh.build_dir / "client" / "node_modules").is_dir()


def test_disabled_save_writes_nothing(tmp_path: Path) -> None:
    context = _context(tmp_path)
    (context.build_dir / "node_modules").mkdir()
    assert CacheManager(context).save(CacheDirectorySet.from_manifest([]), CacheStatus.DISABLED, SIGNATURE) == []
    assert not context.signature_path.exists()


def test_save_clears_previous_content(tmp_path: Path) -> None:
    context = _context(tmp_path)
    stale = context.cached_dirs_root / "old_dir"
    stale.mkdir(parents=True)
    CacheManager(context).save(CacheDirectorySet.from_manifest([]), CacheStatus.NEW_SIGNATURE, SIGNATURE)
    assert not stale.exists()


def test_checked_in_modules_policy(tmp_path: Path) -> None:
    context = _context(tmp_path)
    manager = CacheManager(context)
    assert manager.enforce_modules_policy("allow", uses_yarn=True) is False

    (context.build_dir / "node_modules").mkdir()
    with pytest.raises(PolicyViolationError):
        manager.enforce_modules_policy("forbid", uses_yarn=False)
    assert manager.enforce_modules_policy("allow", uses_yarn=False) is False
    assert (context.build_dir / "node_modules").exists()
    assert manager.enforce_modules_policy("allow", uses_yarn=True) is True
    assert not (context.build_dir / "node_modules").exists()
