from __future__ import annotations

from ..pipeline import PipelineContext, PipelineState, StepResult
from ...runtime.kubernetes import KubernetesDeployer


class RolloutVerificationStep:
    """Wait for applied workloads to become available (opt-in)."""

    name = "rollout"

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        if not context.config.wait_for_rollout:
            return StepResult(skipped=True)

        deployer = KubernetesDeployer(
            command_runner=context.command_runner,
            env=state.cloud_env,
            logger=context.logger,
        )
        issues = deployer.wait_for_resources_ready(
            resources=state.applied_resources,
            namespace=context.config.namespace,
            timeout=context.config.rollout_timeout,
        )
        return StepResult(issues=issues)
