"""Custom exception types used across the nodebuild pipeline."""
from __future__ import annotations


class NodeBuildError(Exception):
    """Base exception for nodebuild-specific errors."""


class ConfigurationError(NodeBuildError):
    """Raised when the exported build environment fails validation."""


class InvalidManifestError(NodeBuildError):
    """Raised when package.json cannot be parsed."""


class ConflictingLockfilesError(NodeBuildError):
    """Raised when both yarn.lock and package-lock.json are present."""

    def __init__(self) -> None:
        super().__init__(
            "Two different lockfiles found: package-lock.json and yarn.lock. "
            "Both npm and yarn have created lockfiles for this application, "
            "but only one can be used to install dependencies."
        )


class UnresolvableVersionError(NodeBuildError):
    """Raised when a declared engine constraint matches no available release."""

    def __init__(self, tool: str, requirement: str, detail: str | None = None) -> None:
        message = f"Could not resolve {tool} version for requirement {requirement!r}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.tool = tool
        self.requirement = requirement


class VersionNotFoundError(NodeBuildError):
    """Raised when the release mirror has no binary for a resolved version."""


class DownloadFailedError(NodeBuildError):
    """Raised when a binary download or extraction fails."""


class BuildScriptFailedError(NodeBuildError):
    """Raised when an invoked package-manager command or script exits non-zero."""

    def __init__(self, script: str, returncode: int) -> None:
        super().__init__(f"{script} failed with exit code {returncode}")
        self.script = script
        self.returncode = returncode


class PolicyViolationError(NodeBuildError):
    """Raised when the build directory violates an enforced build policy."""


class PipelineStageError(NodeBuildError):
    """Raised when a pipeline stage fails irrecoverably."""

    def __init__(self, stage: str, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(f"Stage '{stage}' failed: {message}")
        self.stage = stage
        self.cause = cause
        self.message = message
