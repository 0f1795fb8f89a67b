from __future__ import annotations

from ..pipeline import PipelineContext, PipelineState, StepResult
from ...runtime.gcloud import GCloudAuthenticator


class CloudAuthenticationStep:
    """Exchange the service-account credential for a run-scoped gcloud session."""

    name = "authenticate"

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        run_context = context.run_context
        authenticator = GCloudAuthenticator(
            command_runner=context.command_runner,
            config=context.config,
            logger=context.logger,
        )
        result = authenticator.authenticate(
            key_path=run_context.credentials_path,
            gcloud_config_dir=run_context.gcloud_config_dir,
            kubeconfig_path=run_context.kubeconfig_path,
        )
        state.cloud_env = dict(result.env)
        return StepResult(issues=result.issues, metadata={"account": result.account})
