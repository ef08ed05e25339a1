"""Pipeline package exports."""
from .context import PipelineContext, PipelineState
from .runner import PipelineResult, PipelineRunner, StageResult

__all__ = ["PipelineContext", "PipelineResult", "PipelineRunner", "PipelineState", "StageResult"]
