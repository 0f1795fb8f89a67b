from __future__ import annotations

from ..pipeline import PipelineContext, PipelineState, StepResult
from ...runtime.maven import MavenBuilder


class ToolchainSetupStep:
    """Verify the pinned Java major version and Maven are installed."""

    name = "toolchain"

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        builder = MavenBuilder(command_runner=context.command_runner, logger=context.logger)
        result = builder.check_toolchain(context.config.java_version)
        return StepResult(
            issues=result.issues,
            metadata={
                "java_major_version": result.java_major_version,
                "java_distribution": context.config.java_distribution,
                "maven_version": result.maven_version,
            },
        )
