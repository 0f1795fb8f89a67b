from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from ..common.command_runner import CommandRunner
from ..common.models import BuildArtifact, ImageBuildMetrics, ImageReference
from ..core.config import DeployConfig
from ..core.models import RunContext, StepRecord, StepStatus
from ..core.workspace import SourceWorkspace
from ..runtime.cache import CacheKey
from ..runtime.issues import RuntimeIssue, has_errors
from ..runtime.kubernetes import AppliedResource


@dataclass(slots=True)
class PipelineContext:
    """Static runtime context that is shared across pipeline steps."""

    config: DeployConfig
    run_context: RunContext
    command_runner: CommandRunner
    logger: logging.Logger
    source_dir: Optional[str] = None
    commit_sha_override: Optional[str] = None
    enforce_trigger: bool = True


@dataclass(slots=True)
class PipelineState:
    """Mutable state that flows through the deployment pipeline."""

    workspace: Optional[SourceWorkspace] = None
    commit_sha: Optional[str] = None
    branch: Optional[str] = None
    image: Optional[ImageReference] = None
    artifact: Optional[BuildArtifact] = None
    cache_key: Optional[CacheKey] = None
    cache_hit: Optional[bool] = None
    image_metrics: Optional[ImageBuildMetrics] = None
    # Run-scoped environment (CLOUDSDK_CONFIG, KUBECONFIG) for every cloud-facing command.
    cloud_env: Dict[str, str] = field(default_factory=dict)
    applied_resources: List[AppliedResource] = field(default_factory=list)
    issues: List[RuntimeIssue] = field(default_factory=list)
    steps: List[StepRecord] = field(default_factory=list)
    step_metadata: Dict[str, Dict[str, object]] = field(default_factory=dict)
    skipped: bool = False


@dataclass(slots=True)
class StepResult:
    """Outcome of executing a single pipeline step."""

    issues: List[RuntimeIssue] = field(default_factory=list)
    continue_pipeline: bool = True
    skipped: bool = False
    metadata: Optional[Dict[str, object]] = None


class PipelineStep(Protocol):
    """Protocol implemented by all pipeline steps."""

    name: str

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        ...


@dataclass(slots=True)
class PipelineResult:
    """Aggregate result returned by the deployment pipeline."""

    issues: List[RuntimeIssue]
    steps: List[StepRecord]
    succeeded: bool
    skipped: bool

    @property
    def failed(self) -> bool:
        return not self.succeeded and not self.skipped


class DeploymentPipeline:
    """Run steps strictly in order; the first error-severity issue aborts the run."""

    def __init__(self, steps: Sequence[PipelineStep]) -> None:
        self.steps = list(steps)

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def run(self, state: PipelineState, context: PipelineContext) -> PipelineResult:
        for step in self.steps:
            context.logger.info("==> %s", step.name)
            started = time.time()
            try:
                result = step.run(state, context)
            except Exception as exc:
                context.logger.error("Step %s crashed: %s", step.name, exc, exc_info=True)
                result = StepResult(
                    issues=[
                        RuntimeIssue(
                            code="STEP_CRASHED",
                            message=f"Unexpected error in step {step.name}: {exc}",
                            subject=step.name,
                        )
                    ],
                    continue_pipeline=False,
                )
            duration = time.time() - started

            failed = has_errors(result.issues)
            if failed:
                status = StepStatus.FAILED
            elif result.skipped:
                status = StepStatus.SKIPPED
            else:
                status = StepStatus.SUCCEEDED

            state.issues.extend(result.issues)
            state.steps.append(StepRecord(name=step.name, status=status, duration=duration, issues=list(result.issues)))
            if result.metadata is not None:
                state.step_metadata[step.name] = result.metadata

            for issue in result.issues:
                if not issue.is_error():
                    context.logger.log(
                        logging.WARNING if issue.severity == "warning" else logging.INFO,
                        "[%s] %s",
                        issue.code,
                        issue.message,
                    )

            if failed:
                context.logger.error("Step %s failed; aborting run", step.name)
                break

            if not result.continue_pipeline:
                context.logger.info("Stopping pipeline after step %s", step.name)
                state.skipped = True
                break

        succeeded = not has_errors(state.issues) and not state.skipped
        return PipelineResult(
            issues=list(state.issues),
            steps=list(state.steps),
            succeeded=succeeded,
            skipped=state.skipped and not has_errors(state.issues),
        )
