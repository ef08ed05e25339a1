"""Download and unpack runtime and package-manager binaries into the build prefix."""
from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import httpx

from ..config.models import BuildConfig, MirrorSettings
from ..errors import BuildScriptFailedError, DownloadFailedError, VersionNotFoundError
from ..workspace import BuildContext
from .process import CommandRunner


@dataclass(frozen=True, slots=True)
class InstalledVersion:
    kind: str
    version: str
    prefix: Path

    @property
    def bin_dir(self) -> Path:
        return self.prefix / "bin"


def create_http_client(config: BuildConfig) -> httpx.Client:
    """HTTP client shared by the release catalog and the installer, retrying failed connects."""
    transport = httpx.HTTPTransport(retries=config.download_retries)
    return httpx.Client(
        transport=transport,
        timeout=config.download_timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": "nodebuild"},
    )


def archive_url(kind: str, version: str, platform: str, mirrors: MirrorSettings) -> str:
    if kind == "node":
        return f"{mirrors.node.rstrip('/')}/v{version}/node-v{version}-{platform}.tar.gz"
    if kind == "iojs":
        return f"{mirrors.iojs.rstrip('/')}/v{version}/iojs-v{version}-{platform}.tar.gz"
    if kind == "yarn":
        return f"{mirrors.npm_registry.rstrip('/')}/yarn/-/yarn-{version}.tgz"
    raise ValueError(f"Unsupported binary kind: {kind}")


class BinaryInstaller:
    """Install each binary kind at most once per build into the context's private prefix."""

    def __init__(self, context: BuildContext, mirrors: MirrorSettings, client: httpx.Client) -> None:
        self.context = context
        self.mirrors = mirrors
        self.client = client
        self.logger = logging.getLogger("nodebuild.installer")
        self._installed: dict[str, InstalledVersion] = {}

    def prefix_for(self, kind: str) -> Path:
        return self.context.yarn_prefix if kind == "yarn" else self.context.node_prefix

    def install(self, kind: str, version: str, platform: str) -> InstalledVersion:
        self._claim(kind)
        url = archive_url(kind, version, platform, self.mirrors)
        prefix = self.prefix_for(kind)
        self.logger.info("Downloading and installing %s %s...", kind, version)

        with tempfile.TemporaryDirectory(prefix="nodebuild-") as tmp:
            archive = Path(tmp) / "archive.tar.gz"
            self._download(url, archive, kind=kind, version=version)
            if prefix.exists():
                shutil.rmtree(prefix)
            prefix.mkdir(parents=True)
            extract_stripped(archive, prefix)

        installed = InstalledVersion(kind=kind, version=version, prefix=prefix)
        self._installed[kind] = installed
        return installed

    def install_npm(self, requested: str | None, runner: CommandRunner) -> InstalledVersion:
        """Replace the npm bundled with the runtime when a different version was requested."""
        self._claim("npm")
        bundled = runner.run(["npm", "--version"])
        if not bundled.ok:
            raise BuildScriptFailedError("npm --version", bundled.returncode)
        bundled_version = bundled.first_line()

        if requested is None:
            self.logger.info("Using default npm version: %s", bundled_version)
            version = bundled_version
        elif requested == bundled_version:
            self.logger.info("npm %s already installed with node", requested)
            version = requested
        else:
            self.logger.info("Bootstrapping npm %s (replacing %s)...", requested, bundled_version)
            result = runner.run(["npm", "install", "--unsafe-perm", "--quiet", "-g", f"npm@{requested}"])
            if not result.ok:
                self.logger.error("Unable to install npm %s", requested)
                raise BuildScriptFailedError(f"npm install -g npm@{requested}", result.returncode)
            self.logger.info("npm %s installed", requested)
            version = requested

        installed = InstalledVersion(kind="npm", version=version, prefix=self.context.node_prefix)
        self._installed["npm"] = installed
        return installed

    def _claim(self, kind: str) -> None:
        if kind in self._installed:
            raise RuntimeError(f"{kind} was already installed during this build")

    def _download(self, url: str, destination: Path, *, kind: str, version: str) -> None:
        self.logger.debug("GET %s", url)
        try:
            with self.client.stream("GET", url) as response:
                if response.status_code == 404:
                    raise VersionNotFoundError(f"{kind} {version} is not available at {url}")
                response.raise_for_status()
                with destination.open("wb") as handle:
                    for chunk in response.iter_bytes():
                        handle.write(chunk)
        except httpx.HTTPStatusError as exc:
            raise DownloadFailedError(
                f"Downloading {kind} {version} failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DownloadFailedError(f"Downloading {kind} {version} failed: {exc}") from exc


def extract_stripped(archive: Path, destination: Path) -> None:
    """Unpack a tarball into ``destination``, dropping the archive's top-level directory."""
    try:
        with tarfile.open(archive, "r:*") as tar:
            for member in tar.getmembers():
                parts = PurePosixPath(member.name).parts[1:]
                if not parts or ".." in parts:
                    continue
                member.name = str(PurePosixPath(*parts))
                if member.islnk():
                    link_parts = PurePosixPath(member.linkname).parts[1:]
                    member.linkname = str(PurePosixPath(*link_parts)) if link_parts else member.linkname
                tar.extract(member, destination, filter="tar")
    except (tarfile.TarError, OSError) as exc:
        raise DownloadFailedError(f"Unable to extract {archive.name}: {exc}") from exc
