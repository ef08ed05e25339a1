"""Pipeline runner orchestrating stage execution."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterable, List

from pydantic import BaseModel, Field

from ..config.models import BuildConfig
from ..errors import NodeBuildError, PipelineStageError
from ..logging_utils import CapturedLog, attach_capture, detach_capture
from ..services.diagnoser import FailureDiagnoser, Finding
from ..services.installer import BinaryInstaller, create_http_client
from ..services.process import CommandRunner
from ..services.versions import HttpReleaseIndex
from ..workspace import BuildContext
from .context import PipelineContext, PipelineState
from .metadata import BuildMetadata
from .stages import PipelineStage, build_default_stages

FAILURE_FOOTER = (
    "Some possible problems are listed above. If the build keeps failing, compare this log "
    "with the last successful build; its metadata is kept in the cache directory."
)


class StageResult(BaseModel):
    name: str
    status: str
    duration_seconds: float
    detail: str | None = None


class PipelineResult(BaseModel):
    state: PipelineState
    stage_results: List[StageResult] = Field(default_factory=list)
    cache_status: str | None = None
    error: str | None = None
    error_kind: str | None = None
    findings: List[dict[str, str | None]] = Field(default_factory=list)
    report: str | None = None
    metadata_path: Path | None = None
    duration_seconds: float = 0.0
    diagnostics: dict = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.DONE


class PipelineRunner:
    """Run the build stages in order; the first failure routes to a single failure handler."""

    def __init__(
        self,
        context: BuildContext,
        config: BuildConfig,
        stages: Iterable[PipelineStage] | None = None,
        diagnoser: FailureDiagnoser | None = None,
    ) -> None:
        self.context = context
        self.config = config
        self.logger = logging.getLogger("nodebuild.pipeline")
        self.diagnoser = diagnoser or FailureDiagnoser()
        self.metadata = BuildMetadata(context.metadata_dir)
        self.captured_log = CapturedLog()
        self._client = None
        if stages is None:
            self._client = create_http_client(config)
            stages = build_default_stages(
                config=config,
                context=context,
                release_index=HttpReleaseIndex(config.mirrors, self._client),
                installer=BinaryInstaller(context, config.mirrors, self._client),
                runner=CommandRunner(context, verbose=config.verbose),
            )
        self.stages = list(stages)
        self.state = PipelineState.INIT
        self._failure_handled = False

    def run(self) -> PipelineResult:
        handler = attach_capture(self.captured_log)
        try:
            return self._run()
        finally:
            detach_capture(handler)
            if self._client is not None:
                self._client.close()

    def _run(self) -> PipelineResult:
        started = time.perf_counter()
        self.metadata.load()
        ctx = PipelineContext(
            build=self.context,
            config=self.config,
            metadata=self.metadata.writer(),
            captured_log=self.captured_log,
        )
        stage_results: list[StageResult] = []

        for stage in self.stages:
            start = time.perf_counter()
            try:
                self.logger.debug("Running stage %s", stage.name)
                stage.run(ctx)
            except NodeBuildError as exc:
                stage_results.append(
                    StageResult(
                        name=stage.name,
                        status="failed",
                        duration_seconds=time.perf_counter() - start,
                        detail=str(exc),
                    )
                )
                return self._fail(ctx, stage, exc, stage_results, started)
            except Exception as exc:  # noqa: BLE001
                stage_results.append(
                    StageResult(
                        name=stage.name,
                        status="failed",
                        duration_seconds=time.perf_counter() - start,
                        detail=str(exc),
                    )
                )
                self.logger.exception("Unexpected failure in stage %s", stage.name)
                wrapped = PipelineStageError(stage=stage.name, message="Unexpected error", cause=exc)
                return self._fail(ctx, stage, wrapped, stage_results, started)

            stage_results.append(
                StageResult(name=stage.name, status="completed", duration_seconds=time.perf_counter() - start)
            )
            self.state = stage.state
            self.logger.debug("Pipeline state: %s", self.state.value)

        duration = time.perf_counter() - started
        self.state = PipelineState.DONE
        ctx.metadata.set("build-time", f"{duration:.2f}")
        ctx.metadata.set("node-build-success", True)
        metadata_path = self.metadata.persist()
        return PipelineResult(
            state=self.state,
            stage_results=stage_results,
            cache_status=ctx.cache_status.value if ctx.cache_status else None,
            metadata_path=metadata_path,
            duration_seconds=duration,
            diagnostics=ctx.diagnostics,
        )

    def _fail(
        self,
        ctx: PipelineContext,
        stage: PipelineStage,
        error: NodeBuildError,
        stage_results: list[StageResult],
        started: float,
    ) -> PipelineResult:
        if self._failure_handled:
            raise RuntimeError("Failure handler already ran for this build")
        self._failure_handled = True

        last_state = self.state
        self.state = PipelineState.FAILED
        ctx.metadata.set("node-build-success", False)
        ctx.metadata.set("failed-stage", stage.name)
        ctx.metadata.set("failed-after-state", last_state.value)
        ctx.metadata.set("failure", type(error).__name__)

        self.logger.error("Build failed: %s", error)
        self.captured_log.seal()
        findings = self.diagnoser.diagnose(self.captured_log, self.context, ctx.manifest)
        report = format_failure_report(error, findings)
        self.logger.error(report)

        duration = time.perf_counter() - started
        ctx.metadata.set("build-time", f"{duration:.2f}")
        metadata_path = self.metadata.persist()
        return PipelineResult(
            state=self.state,
            stage_results=stage_results,
            cache_status=ctx.cache_status.value if ctx.cache_status else None,
            error=str(error),
            error_kind=type(error).__name__,
            findings=[finding.to_dict() for finding in findings],
            report=report,
            metadata_path=metadata_path,
            duration_seconds=duration,
            diagnostics=ctx.diagnostics,
        )


def format_failure_report(error: NodeBuildError, findings: list[Finding]) -> str:
    lines = ["Build failed", "", f"  {type(error).__name__}: {error}"]
    if findings:
        lines.append("")
        lines.append(f"  {len(findings)} possible problem(s) detected:")
        for finding in findings:
            lines.append(f"  - [{finding.code}] {finding.title}")
            lines.append(f"    {finding.remediation}")
    lines.extend(["", FAILURE_FOOTER])
    return "\n".join(lines)
