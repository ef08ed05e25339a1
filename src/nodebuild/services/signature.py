"""Cache signature computation and comparison."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .versions import ResolvedVersions

SIGNATURE_VERSION = "v1"


class CacheStatus(str, Enum):
    DISABLED = "disabled"
    EMPTY = "empty"
    VALID = "valid"
    NEW_SIGNATURE = "new-signature"


@dataclass(frozen=True, slots=True)
class CacheSignature:
    runtime_version: str
    package_manager_version: str
    platform: str

    def serialize(self) -> str:
        return "; ".join(
            [SIGNATURE_VERSION, self.platform, self.runtime_version, self.package_manager_version]
        )

    @classmethod
    def parse(cls, text: str) -> "CacheSignature | None":
        parts = [part.strip() for part in text.strip().split(";")]
        if len(parts) != 4 or parts[0] != SIGNATURE_VERSION:
            return None
        _, platform, runtime, package_manager = parts
        return cls(runtime_version=runtime, package_manager_version=package_manager, platform=platform)


def compute_signature(resolved: "ResolvedVersions", platform: str) -> CacheSignature:
    """Fingerprint the toolchain a dependency tree was built with."""
    return CacheSignature(
        runtime_version=f"{resolved.runtime}-{resolved.runtime_version}",
        package_manager_version=f"{resolved.package_manager}-{resolved.effective_package_manager_version}",
        platform=platform,
    )


def compare(stored: CacheSignature | None, current: CacheSignature, caching_enabled: bool) -> CacheStatus:
    if not caching_enabled:
        return CacheStatus.DISABLED
    if stored is None:
        return CacheStatus.EMPTY
    if stored == current:
        return CacheStatus.VALID
    return CacheStatus.NEW_SIGNATURE


def read_signature(path: Path) -> CacheSignature | None:
    if not path.is_file():
        return None
    return CacheSignature.parse(path.read_text())


def write_signature(path: Path, signature: CacheSignature) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(signature.serialize() + "\n")
