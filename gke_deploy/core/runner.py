"""Run the deployment pipeline once and turn its state into a report."""
import logging
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..common.command_runner import CommandRunner
from ..pipeline import DeploymentPipeline, PipelineContext, PipelineState, build_default_pipeline
from .config import DeployConfig
from .models import RunContext, RunReport, RunStatus


class DeploymentRunner:
    """Execute a single deployment run: one pass, start to finish or abort."""

    def __init__(
        self,
        config: DeployConfig,
        *,
        pipeline: Optional[DeploymentPipeline] = None,
        command_runner: Optional[CommandRunner] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.pipeline = pipeline or build_default_pipeline()
        self.logger = logger or logging.getLogger(__name__)
        self.command_runner = command_runner or CommandRunner(logger=self.logger)

    def run(
        self,
        *,
        source_dir: Optional[str] = None,
        commit_sha: Optional[str] = None,
        enforce_trigger: bool = True,
    ) -> RunReport:
        """
        Run every pipeline step in order.

        Args:
            source_dir: Local checkout to build (ignored when config.repo_url is set)
            commit_sha: Deploy as this commit instead of the checkout's HEAD
            enforce_trigger: Skip the run unless the checkout is on the default branch

        Returns:
            RunReport describing every executed step
        """
        run_context = RunContext(
            run_id=str(uuid.uuid4()),
            timestamp=datetime.now(),
            work_dir=Path(self.config.work_dir).expanduser().resolve(),
        )
        run_context.run_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info("Starting deployment run %s", run_context.run_id)

        context = PipelineContext(
            config=self.config,
            run_context=run_context,
            command_runner=self.command_runner,
            logger=self.logger,
            source_dir=source_dir,
            commit_sha_override=commit_sha,
            enforce_trigger=enforce_trigger,
        )
        state = PipelineState()

        try:
            result = self.pipeline.run(state, context)
        finally:
            # Credentials and kubeconfig never outlive the run.
            shutil.rmtree(run_context.run_dir, ignore_errors=True)

        if result.succeeded:
            status = RunStatus.SUCCEEDED
        elif result.skipped:
            status = RunStatus.SKIPPED
        else:
            status = RunStatus.FAILED

        report = RunReport(
            run_id=run_context.run_id,
            status=status,
            started_at=run_context.timestamp,
            finished_at=datetime.now(),
            commit_sha=state.commit_sha,
            branch=state.branch,
            image=state.image.full_name if state.image else None,
            artifact=state.artifact,
            cache_key=state.cache_key.key if state.cache_key else None,
            cache_hit=state.cache_hit,
            image_metrics=state.image_metrics,
            applied_resources=list(state.applied_resources),
            steps=list(state.steps),
            metadata=dict(state.step_metadata),
        )

        if status == RunStatus.FAILED:
            self.logger.error("Run %s failed at step %s", report.run_id, report.failed_step)
        elif status == RunStatus.SKIPPED:
            self.logger.info("Run %s skipped", report.run_id)
        else:
            self.logger.info("Run %s deployed %s", report.run_id, report.image)
        return report
