"""Pydantic models representing the nodebuild configuration."""
from __future__ import annotations

import platform as _platform
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ARCH_LABELS = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armv7l",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}


def detect_platform() -> str:
    """Return the OS+architecture label used by Node.js release archives (e.g. ``linux-x64``)."""
    system = _platform.system().lower()
    machine = _platform.machine().lower()
    return f"{system}-{_ARCH_LABELS.get(machine, machine)}"


class MirrorSettings(BaseModel):
    """Locations of release catalogs and binary archives."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    node: str = Field(
        default="https://nodejs.org/dist",
        alias="NODEBUILD_NODE_MIRROR",
        description="Base URL serving index.json and node-v<version>-<platform>.tar.gz archives.",
    )
    iojs: str = Field(
        default="https://iojs.org/dist",
        alias="NODEBUILD_IOJS_MIRROR",
        description="Base URL serving io.js releases in the same layout as the Node.js mirror.",
    )
    npm_registry: str = Field(
        default="https://registry.npmjs.org",
        alias="NODEBUILD_NPM_REGISTRY",
        description="npm registry used to list npm and yarn releases and fetch yarn tarballs.",
    )


class BuildConfig(BaseModel):
    """Typed view of the recognised build options, validated once before the pipeline starts."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    cache_enabled: bool = Field(
        default=True,
        alias="NODE_MODULES_CACHE",
        description="Set to false to disable restoring and saving the dependency cache.",
    )
    npm_cache_folder: Path | None = Field(
        default=None,
        alias="NPM_CONFIG_CACHE",
        description="Override for npm's cache folder.",
    )
    yarn_cache_folder: Path | None = Field(
        default=None,
        alias="YARN_CACHE_FOLDER",
        description="Override for yarn's cache folder.",
    )
    verbose: bool = Field(default=False, alias="NODE_VERBOSE", description="Echo package-manager output.")
    npm_production: bool = Field(
        default=True,
        alias="NPM_CONFIG_PRODUCTION",
        description="Install only production dependencies with npm.",
    )
    yarn_production: bool = Field(
        default=True,
        alias="YARN_PRODUCTION",
        description="Install only production dependencies with yarn.",
    )
    use_npm_install: bool = Field(
        default=False,
        alias="USE_NPM_INSTALL",
        description="Use `npm install` instead of `npm ci` when a package-lock.json is present.",
    )
    modules_policy: Literal["allow", "forbid"] = Field(
        default="allow",
        alias="NODE_MODULES_POLICY",
        description="Whether a node_modules directory checked into source control is tolerated.",
    )
    platform: str = Field(
        default_factory=detect_platform,
        alias="NODEBUILD_PLATFORM",
        description="OS+architecture label used to pick release archives.",
    )
    download_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        alias="NODEBUILD_DOWNLOAD_RETRIES",
        description="Connection retries applied by the HTTP transport for catalog and binary downloads.",
    )
    download_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        alias="NODEBUILD_DOWNLOAD_TIMEOUT",
        description="Timeout applied to each HTTP request.",
    )
    mirrors: MirrorSettings = Field(default_factory=MirrorSettings)

    @field_validator("npm_cache_folder", "yarn_cache_folder", mode="before")
    @classmethod
    def blank_as_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("modules_policy", mode="before")
    @classmethod
    def normalise_policy(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value
