from __future__ import annotations

from pathlib import Path

from ..pipeline import PipelineContext, PipelineState, StepResult
from ...runtime.maven import MavenBuilder

DEFAULT_MAVEN_HOME = Path("~/.m2").expanduser()


class MavenPackageStep:
    """Compile and package the application; any build failure is fatal."""

    name = "package"

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        config = context.config
        goals = list(config.maven_goals)
        cache_path = config.resolved_cache_path()
        if config.cache_enabled and cache_path != DEFAULT_MAVEN_HOME:
            goals.append(f"-Dmaven.repo.local={cache_path / 'repository'}")

        builder = MavenBuilder(command_runner=context.command_runner, logger=context.logger)
        result = builder.package(
            project_dir=state.workspace.root,
            goals=goals,
            timeout=config.maven_timeout,
        )
        state.artifact = result.artifact

        metadata = {"duration": round(result.duration, 2)}
        if result.artifact:
            metadata["artifact"] = str(result.artifact.path)
            metadata["size_bytes"] = result.artifact.size_bytes
        return StepResult(issues=result.issues, metadata=metadata)
