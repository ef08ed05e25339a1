"""Scan a failed build's captured log for known problems and suggest fixes."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from ..logging_utils import CapturedLog
from ..manifest import PackageManifest
from ..workspace import BuildContext


@dataclass(frozen=True, slots=True)
class Finding:
    code: str
    title: str
    remediation: str
    evidence: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "code": self.code,
            "title": self.title,
            "remediation": self.remediation,
            "evidence": self.evidence,
        }


@dataclass(frozen=True, slots=True)
class LogMatcher:
    code: str
    pattern: re.Pattern[str]
    title: str
    remediation: str

    def match(self, text: str) -> Finding | None:
        found = self.pattern.search(text)
        if found is None:
            return None
        title = self.title.format(*found.groups()) if found.groups() else self.title
        return Finding(code=self.code, title=title, remediation=self.remediation, evidence=found.group(0).strip())


def _matcher(code: str, pattern: str, title: str, remediation: str) -> LogMatcher:
    return LogMatcher(code=code, pattern=re.compile(pattern, re.IGNORECASE | re.MULTILINE), title=title, remediation=remediation)


LOG_MATCHERS: tuple[LogMatcher, ...] = (
    _matcher(
        "conflicting-lockfiles",
        r"Two different lockfiles found",
        "Both yarn.lock and package-lock.json are present",
        "Delete whichever lockfile belongs to the package manager you are not using, then commit.",
    ),
    _matcher(
        "outdated-yarn-lockfile",
        r"Your lockfile needs to be updated",
        "Outdated yarn lockfile",
        "Run `yarn install` locally and commit the updated yarn.lock.",
    ),
    _matcher(
        "outdated-npm-lockfile",
        r"`?npm ci`? can only install packages when your package\.json and package-lock\.json",
        "package-lock.json is out of sync with package.json",
        "Run `npm install` locally and commit the updated package-lock.json, or set USE_NPM_INSTALL=true.",
    ),
    _matcher(
        "network-flake",
        r"ECONNRESET|ETIMEDOUT|EAI_AGAIN|network timeout|socket hang up",
        "Network error while installing dependencies",
        "This is usually a transient registry problem; retry the build. Persistent failures may indicate a private registry outage.",
    ),
    _matcher(
        "invalid-semver",
        r"Invalid semver requirement|Invalid Version",
        "Invalid version requirement in package.json",
        "engines.node, engines.npm and engines.yarn must be valid semver ranges such as \"18.x\" or \">=16 <19\".",
    ),
    _matcher(
        "no-matching-version",
        r"No matching version found for (\S+)|notarget",
        "A dependency version could not be found",
        "Check that the version referenced in package.json has been published to the registry.",
    ),
    _matcher(
        "unresolvable-engine",
        r"Could not resolve (\w+) version for requirement",
        "No {0} release satisfies the declared engine requirement",
        "Declare a range that matches a published release for this platform.",
    ),
    _matcher(
        "missing-module",
        r"Cannot find module '([^']+)'",
        "Module '{0}' is missing",
        "Make sure the module is listed in dependencies (not only devDependencies) and that the import path is correct.",
    ),
    _matcher(
        "missing-dev-dependency",
        r"^\s*sh: \d+: (\S+): not found\s*$",
        "Command '{0}' not found",
        "Tools used by build scripts must be declared in package.json; devDependencies are pruned after the build.",
    ),
    _matcher(
        "node-gyp-python",
        r"gyp ERR!.*(?:Can't find Python|find Python)",
        "node-gyp could not find Python",
        "A native module needs Python to compile; upgrade the module to a version with prebuilt binaries.",
    ),
    _matcher(
        "heap-out-of-memory",
        r"JavaScript heap out of memory",
        "The build ran out of memory",
        "Reduce build memory usage or raise the limit with NODE_OPTIONS=--max_old_space_size=<MB>.",
    ),
    _matcher(
        "legacy-runtime-precedence",
        r"engines\.iojs takes precedence over engines\.node",
        "engines.iojs overrides engines.node",
        "io.js is no longer maintained; remove engines.iojs to build with Node.js.",
    ),
)

ContextCheck = Callable[[BuildContext, PackageManifest | None], Finding | None]


def missing_start_command(context: BuildContext, manifest: PackageManifest | None) -> Finding | None:
    build_dir = context.build_dir
    if (build_dir / "Procfile").exists() or (build_dir / "server.js").exists():
        return None
    if manifest is not None and manifest.script("start"):
        return None
    return Finding(
        code="missing-start-command",
        title="This app may not specify any way to start a node process",
        remediation="Add a `start` script to package.json or a Procfile declaring a web process.",
    )


@dataclass
class FailureDiagnoser:
    """Run every matcher against the log independently; never raise."""

    matchers: tuple[LogMatcher, ...] = LOG_MATCHERS
    context_checks: tuple[ContextCheck, ...] = (missing_start_command,)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("nodebuild.diagnoser"))

    def diagnose(
        self,
        log: CapturedLog,
        context: BuildContext,
        manifest: PackageManifest | None = None,
    ) -> list[Finding]:
        text = log.text()
        findings: list[Finding] = []
        for matcher in self.matchers:
            try:
                finding = matcher.match(text)
            except Exception:  # noqa: BLE001
                self.logger.debug("Matcher %s raised", matcher.code, exc_info=True)
                continue
            if finding is not None:
                findings.append(finding)
        for check in self.context_checks:
            try:
                finding = check(context, manifest)
            except Exception:  # noqa: BLE001
                self.logger.debug("Check %s raised", getattr(check, "__name__", check), exc_info=True)
                continue
            if finding is not None:
                findings.append(finding)
        return findings
