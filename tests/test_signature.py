from pathlib import Path

from nodebuild.services.signature import (
    CacheSignature,
    CacheStatus,
    compare,
    compute_signature,
    read_signature,
    write_signature,
)
from nodebuild.services.versions import ResolvedVersions

CURRENT = CacheSignature(runtime_version="node-18.17.1", package_manager_version="npm-9.6.7", platform="linux-x64")


def test_compare_states() -> None:
    other = CacheSignature(runtime_version="node-16.20.2", package_manager_version="npm-9.6.7", platform="linux-x64")
    assert compare(None, CURRENT, caching_enabled=True) is CacheStatus.EMPTY
    assert compare(CURRENT, CURRENT, caching_enabled=True) is CacheStatus.VALID
    assert compare(other, CURRENT, caching_enabled=True) is CacheStatus.NEW_SIGNATURE


def test_disabled_overrides_every_stored_signature() -> None:
    other = CacheSignature(runtime_version="node-16.20.2", package_manager_version="npm-8.19.4", platform="darwin-arm64")
    for stored in (None, CURRENT, other):
        assert compare(stored, CURRENT, caching_enabled=False) is CacheStatus.DISABLED


def test_platform_change_invalidates() -> None:
    moved = CacheSignature(runtime_version="node-18.17.1", package_manager_version="npm-9.6.7", platform="linux-arm64")
    assert compare(moved, CURRENT, caching_enabled=True) is CacheStatus.NEW_SIGNATURE


def test_compute_signature_uses_installed_package_manager() -> None:
    resolved = ResolvedVersions(
        runtime="node",
        runtime_version="18.17.1",
        package_manager="npm",
        installed_package_manager_version="9.6.7",
    )
    assert compute_signature(resolved, "linux-x64") == CURRENT


def test_signature_file_round_trip_and_garbage(tmp_path: Path) -> None:
    path = tmp_path / "node" / "signature"
    assert read_signature(path) is None

    write_signature(path, CURRENT)
    assert path.read_text() == "v1; linux-x64; node-18.17.1; npm-9.6.7\n"
    assert read_signature(path) == CURRENT

    path.write_text("v2; something else")
    assert read_signature(path) is None
