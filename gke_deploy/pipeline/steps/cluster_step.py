from __future__ import annotations

from ..pipeline import PipelineContext, PipelineState, StepResult
from ...runtime.gcloud import GCloudAuthenticator


class ClusterCredentialsStep:
    """Fetch short-lived credentials for the target cluster into the run's kubeconfig."""

    name = "cluster_credentials"

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        authenticator = GCloudAuthenticator(
            command_runner=context.command_runner,
            config=context.config,
            logger=context.logger,
        )
        issues = authenticator.get_cluster_credentials(state.cloud_env)
        return StepResult(
            issues=issues,
            metadata={"cluster": context.config.cluster_name, "location": context.config.cluster_zone},
        )
