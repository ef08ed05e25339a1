"""Build directory layout and per-run environment."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

PREFIX_DIRNAME = ".nodebuild"

PROFILE_TEMPLATE = """\
export PATH="$HOME/{prefix}/node/bin:$HOME/{prefix}/yarn/bin:$PATH:$HOME/bin:$HOME/node_modules/.bin"
export NODE_HOME="$HOME/{prefix}/node"
export NODE_ENV=${{NODE_ENV:-production}}
"""


@dataclass(frozen=True, slots=True)
class BuildContext:
    """Immutable facts about one build: where things live and what environment it runs in."""

    build_dir: Path
    cache_dir: Path
    env_dir: Path
    platform: str
    env: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        *,
        build_dir: Path,
        cache_dir: Path,
        env_dir: Path,
        platform: str,
        env: Mapping[str, str],
    ) -> "BuildContext":
        cache_dir.mkdir(parents=True, exist_ok=True)
        return cls(
            build_dir=build_dir,
            cache_dir=cache_dir,
            env_dir=env_dir,
            platform=platform,
            env=MappingProxyType(dict(env)),
        )

    @property
    def prefix_dir(self) -> Path:
        return self.build_dir / PREFIX_DIRNAME

    @property
    def node_prefix(self) -> Path:
        return self.prefix_dir / "node"

    @property
    def yarn_prefix(self) -> Path:
        return self.prefix_dir / "yarn"

    @property
    def bin_dirs(self) -> list[Path]:
        return [self.node_prefix / "bin", self.yarn_prefix / "bin", self.build_dir / "node_modules" / ".bin"]

    @property
    def cache_root(self) -> Path:
        return self.cache_dir / "node"

    @property
    def cached_dirs_root(self) -> Path:
        return self.cache_root / "cache"

    @property
    def signature_path(self) -> Path:
        return self.cache_root / "signature"

    @property
    def metadata_dir(self) -> Path:
        return self.cache_dir / "build-data"

    @property
    def manifest_path(self) -> Path:
        return self.build_dir / "package.json"

    def with_env(self, **updates: str) -> "BuildContext":
        env = dict(self.env)
        env.update(updates)
        return replace(self, env=MappingProxyType(env))

    def process_env(self) -> dict[str, str]:
        """Environment handed to package-manager processes, with the private prefix first on PATH."""
        env = dict(self.env)
        search_path = [str(path) for path in self.bin_dirs]
        existing = env.get("PATH", os.defpath)
        env["PATH"] = os.pathsep.join([*search_path, existing])
        return env

    def write_profile(self) -> Path:
        """Write the runtime profile script that puts the installed binaries on PATH at boot."""
        profile_dir = self.build_dir / ".profile.d"
        profile_dir.mkdir(parents=True, exist_ok=True)
        path = profile_dir / "nodejs.sh"
        path.write_text(PROFILE_TEMPLATE.format(prefix=PREFIX_DIRNAME))
        return path
