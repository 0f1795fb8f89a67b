from __future__ import annotations

from ..pipeline import PipelineContext, PipelineState, StepResult
from ...runtime.docker import DockerImageBuilder


class ImageBuildPushStep:
    """Build the container image tagged with the commit and push it to Artifact Registry."""

    name = "image"

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        config = context.config
        builder = DockerImageBuilder(command_runner=context.command_runner, logger=context.logger)
        result = builder.build_and_push(
            project_dir=state.workspace.root,
            image=state.image,
            dockerfile=config.dockerfile,
            build_context=config.build_context,
            platform=config.docker_platform,
            build_timeout=config.docker_build_timeout,
            max_push_retries=config.push_retries,
            env=state.cloud_env,
        )
        state.image_metrics = result.metrics
        return StepResult(
            issues=result.issues,
            metadata={"image": result.image_name, "push_attempts": result.push_attempts},
        )
