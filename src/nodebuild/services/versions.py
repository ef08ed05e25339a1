"""Engine constraint parsing and runtime/package-manager version resolution."""
from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

import httpx

from ..config.models import MirrorSettings
from ..errors import DownloadFailedError, UnresolvableVersionError
from ..manifest import PackageManifest

logger = logging.getLogger("nodebuild.versions")

DEFAULT_YARN_REQUIREMENT = "1.x"
LEGACY_PRECEDENCE_WARNING = "engines.iojs takes precedence over engines.node"

_VERSION_RE = re.compile(
    r"^\s*v?=?\s*(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?\s*$"
)
_PARTIAL_RE = re.compile(
    r"^v?(\d+|[xX*])(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)
_OPERATOR_RE = re.compile(r"^(\^|~>?|[<>]=?|=)?(.*)$")
_HYPHEN_RE = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")


class InvalidRangeError(ValueError):
    """Raised when a version requirement is not a valid npm-style range."""


@dataclass(frozen=True, slots=True)
class Version:
    major: int
    minor: int
    patch: int
    prerelease: str = ""

    @classmethod
    def parse(cls, text: str) -> "Version":
        match = _VERSION_RE.match(text)
        if match is None:
            raise InvalidRangeError(f"Invalid version: {text!r}")
        major, minor, patch, prerelease = match.groups()
        return cls(int(major), int(minor), int(patch), prerelease or "")

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    @property
    def sort_key(self) -> tuple:
        # prereleases sort below the release they precede
        return (self.major, self.minor, self.patch, 0 if self.prerelease else 1, self.prerelease)

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{self.prerelease}" if self.prerelease else base


@dataclass(frozen=True, slots=True)
class Comparator:
    operator: str
    version: Version

    def test(self, candidate: Version) -> bool:
        left, right = candidate.sort_key, self.version.sort_key
        if self.operator == "=":
            return left == right
        if self.operator == ">":
            return left > right
        if self.operator == ">=":
            return left >= right
        if self.operator == "<":
            return left < right
        if self.operator == "<=":
            return left <= right
        raise ValueError(f"Unknown comparator {self.operator!r}")


@dataclass(frozen=True, slots=True)
class SemverRange:
    """Union of comparator sets, following npm's range grammar."""

    raw: str
    alternatives: tuple[tuple[Comparator, ...], ...]

    @classmethod
    def parse(cls, text: str) -> "SemverRange":
        alternatives = tuple(_parse_alternative(part) for part in text.split("||"))
        return cls(raw=text, alternatives=alternatives)

    def satisfied_by(self, version: Version) -> bool:
        if version.is_prerelease:
            return False
        return any(all(comp.test(version) for comp in alternative) for alternative in self.alternatives)

    def best_match(self, versions: Iterable[Version]) -> Version | None:
        matches = [version for version in versions if self.satisfied_by(version)]
        return max(matches, key=lambda item: item.sort_key) if matches else None


def _parse_alternative(text: str) -> tuple[Comparator, ...]:
    hyphen = _HYPHEN_RE.match(text)
    if hyphen:
        return _hyphen_range(*hyphen.groups())

    normalised = re.sub(r"(\^|~>?|[<>]=?|=)\s+", r"\1", text.strip())
    comparators: list[Comparator] = []
    for token in normalised.split():
        comparators.extend(_parse_token(token))
    return tuple(comparators)


def _parse_partial(text: str) -> tuple[int | None, int | None, int | None, str]:
    match = _PARTIAL_RE.match(text)
    if match is None:
        raise InvalidRangeError(f"Invalid semver requirement: {text!r}")
    raw_major, raw_minor, raw_patch, prerelease = match.groups()

    def _number(value: str | None) -> int | None:
        if value is None or value in {"x", "X", "*"}:
            return None
        return int(value)

    major = _number(raw_major)
    minor = _number(raw_minor) if major is not None else None
    patch = _number(raw_patch) if minor is not None else None
    return major, minor, patch, prerelease or ""


def _parse_token(token: str) -> list[Comparator]:
    operator, rest = _OPERATOR_RE.match(token).groups()  # type: ignore[union-attr]
    if not rest:
        raise InvalidRangeError(f"Invalid semver requirement: {token!r}")
    major, minor, patch, pre = _parse_partial(rest)

    if major is None:
        if operator in {">", "<"}:
            return [Comparator("<", Version(0, 0, 0))]
        return []

    floor = Version(major, minor or 0, patch or 0, pre)
    if operator in {None, "="}:
        if minor is None:
            return [Comparator(">=", floor), Comparator("<", Version(major + 1, 0, 0))]
        if patch is None:
            return [Comparator(">=", floor), Comparator("<", Version(major, minor + 1, 0))]
        return [Comparator("=", floor)]
    if operator == "^":
        if major > 0 or minor is None:
            ceiling = Version(major + 1, 0, 0)
        elif minor > 0 or patch is None:
            ceiling = Version(0, minor + 1, 0)
        else:
            ceiling = Version(0, 0, patch + 1)
        return [Comparator(">=", floor), Comparator("<", ceiling)]
    if operator in {"~", "~>"}:
        ceiling = Version(major + 1, 0, 0) if minor is None else Version(major, minor + 1, 0)
        return [Comparator(">=", floor), Comparator("<", ceiling)]
    if operator == ">":
        if minor is None:
            return [Comparator(">=", Version(major + 1, 0, 0))]
        if patch is None:
            return [Comparator(">=", Version(major, minor + 1, 0))]
        return [Comparator(">", floor)]
    if operator == ">=":
        return [Comparator(">=", floor)]
    if operator == "<":
        return [Comparator("<", floor)]
    # "<="
    if minor is None:
        return [Comparator("<", Version(major + 1, 0, 0))]
    if patch is None:
        return [Comparator("<", Version(major, minor + 1, 0))]
    return [Comparator("<=", floor)]


def _hyphen_range(low: str, high: str) -> tuple[Comparator, ...]:
    comparators: list[Comparator] = []
    major, minor, patch, pre = _parse_partial(low)
    if major is not None:
        comparators.append(Comparator(">=", Version(major, minor or 0, patch or 0, pre)))

    major, minor, patch, pre = _parse_partial(high)
    if major is None:
        return tuple(comparators)
    if minor is None:
        comparators.append(Comparator("<", Version(major + 1, 0, 0)))
    elif patch is None:
        comparators.append(Comparator("<", Version(major, minor + 1, 0)))
    else:
        comparators.append(Comparator("<=", Version(major, minor, patch, pre)))
    return tuple(comparators)


@dataclass(frozen=True, slots=True)
class Release:
    version: str
    lts: bool = False


class ReleaseIndex(ABC):
    """Catalog of installable releases per tool and platform."""

    @abstractmethod
    def releases(self, tool: str, platform: str) -> list[Release]:
        """Return every published release of ``tool`` that ships a binary for ``platform``."""


@dataclass
class StaticReleaseIndex(ReleaseIndex):
    """In-memory catalog, used for pinned mirrors and tests."""

    catalog: Mapping[str, Sequence[Release]] = field(default_factory=dict)

    def releases(self, tool: str, platform: str) -> list[Release]:
        return list(self.catalog.get(tool, ()))


def dist_file_token(platform: str) -> str:
    """Map an archive platform label to the token ``index.json`` lists in ``files``."""
    system, _, arch = platform.partition("-")
    if system == "darwin":
        return f"osx-{arch}-tar"
    return platform


class HttpReleaseIndex(ReleaseIndex):
    """Read release listings from the Node.js/io.js dist mirrors and the npm registry."""

    def __init__(self, mirrors: MirrorSettings, client: httpx.Client) -> None:
        self.mirrors = mirrors
        self.client = client
        self._cache: dict[tuple[str, str], list[Release]] = {}

    def releases(self, tool: str, platform: str) -> list[Release]:
        key = (tool, platform)
        if key not in self._cache:
            if tool in {"node", "iojs"}:
                base = self.mirrors.node if tool == "node" else self.mirrors.iojs
                self._cache[key] = self._dist_releases(base, platform)
            else:
                self._cache[key] = self._registry_releases(tool)
        return self._cache[key]

    def _get_json(self, url: str) -> object:
        logger.debug("Fetching release catalog %s", url)
        try:
            response = self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DownloadFailedError(
                f"Release catalog request to {url} failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DownloadFailedError(f"Release catalog request to {url} failed: {exc}") from exc
        return response.json()

    def _dist_releases(self, base_url: str, platform: str) -> list[Release]:
        data = self._get_json(base_url.rstrip("/") + "/index.json")
        if not isinstance(data, list):
            raise DownloadFailedError(f"Unexpected release index format from {base_url}")
        token = dist_file_token(platform)
        releases = []
        for entry in data:
            files = entry.get("files") or []
            if token not in files:
                continue
            releases.append(Release(version=str(entry["version"]).lstrip("v"), lts=bool(entry.get("lts"))))
        return releases

    def _registry_releases(self, package: str) -> list[Release]:
        data = self._get_json(f"{self.mirrors.npm_registry.rstrip('/')}/{package}")
        if not isinstance(data, dict) or not isinstance(data.get("versions"), dict):
            raise DownloadFailedError(f"Unexpected registry document for {package}")
        return [Release(version=version) for version in data["versions"]]


@dataclass(frozen=True, slots=True)
class ResolvedVersions:
    runtime: str
    runtime_version: str
    package_manager: str
    package_manager_version: str | None = None
    installed_package_manager_version: str | None = None

    @property
    def uses_yarn(self) -> bool:
        return self.package_manager == "yarn"

    @property
    def uses_iojs(self) -> bool:
        return self.runtime == "iojs"

    @property
    def effective_package_manager_version(self) -> str:
        return self.installed_package_manager_version or self.package_manager_version or "bundled"


class VersionResolver:
    def __init__(self, index: ReleaseIndex, platform: str) -> None:
        self.index = index
        self.platform = platform

    def resolve(self, manifest: PackageManifest) -> ResolvedVersions:
        manifest.require_single_lockfile()

        if manifest.iojs_requirement:
            if manifest.node_requirement:
                logger.warning(
                    "Both engines.node (%s) and engines.iojs (%s) are declared; %s",
                    manifest.node_requirement,
                    manifest.iojs_requirement,
                    LEGACY_PRECEDENCE_WARNING,
                )
            runtime = "iojs"
            runtime_version = self.resolve_version("iojs", manifest.iojs_requirement)
        else:
            runtime = "node"
            runtime_version = self.resolve_version("node", manifest.node_requirement)

        if manifest.uses_yarn:
            if manifest.npm_requirement:
                logger.info("yarn.lock found; ignoring engines.npm (%s)", manifest.npm_requirement)
            package_manager = "yarn"
            package_manager_version = self.resolve_version(
                "yarn", manifest.yarn_requirement or DEFAULT_YARN_REQUIREMENT
            )
        else:
            package_manager = "npm"
            package_manager_version = (
                self.resolve_version("npm", manifest.npm_requirement) if manifest.npm_requirement else None
            )

        return ResolvedVersions(
            runtime=runtime,
            runtime_version=runtime_version,
            package_manager=package_manager,
            package_manager_version=package_manager_version,
        )

    def resolve_version(self, tool: str, requirement: str | None) -> str:
        candidates = self._stable_releases(tool)
        if requirement is None or not requirement.strip():
            pool = [release for release, _ in candidates if release.lts] or [release for release, _ in candidates]
            if not pool:
                raise UnresolvableVersionError(tool, "latest", f"no releases available for {self.platform}")
            chosen = max(pool, key=lambda release: Version.parse(release.version).sort_key)
            logger.info("%s version not specified; using latest stable %s", tool, chosen.version)
            return chosen.version

        try:
            requested = SemverRange.parse(requirement)
        except InvalidRangeError as exc:
            logger.error("Invalid semver requirement for %s: %r", tool, requirement)
            raise UnresolvableVersionError(tool, requirement, "invalid semver requirement") from exc

        best = requested.best_match(version for _, version in candidates)
        if best is None:
            logger.error("No %s release for %s matches %r", tool, self.platform, requirement)
            raise UnresolvableVersionError(tool, requirement, f"no release available for {self.platform}")
        logger.info("Resolved %s %r to %s", tool, requirement, best)
        return str(best)

    def _stable_releases(self, tool: str) -> list[tuple[Release, Version]]:
        stable = []
        for release in self.index.releases(tool, self.platform):
            try:
                version = Version.parse(release.version)
            except InvalidRangeError:
                continue
            if not version.is_prerelease:
                stable.append((release, version))
        return stable
