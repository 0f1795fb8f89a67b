from __future__ import annotations

from ..pipeline import PipelineContext, PipelineState, StepResult
from ...runtime.ingress import IngressRuntimeChecker
from ...runtime.issues import RuntimeIssue


class IngressHealthStep:
    """Probe the configured path through the applied Ingress (opt-in)."""

    name = "health"

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        config = context.config
        if not config.health_check_path:
            return StepResult(skipped=True)

        ingresses = [resource for resource in state.applied_resources if resource.kind == "Ingress"]
        if not ingresses:
            return StepResult(
                issues=[
                    RuntimeIssue(
                        code="NO_INGRESS_APPLIED",
                        message="Health check requested but no Ingress was applied",
                        subject=config.health_check_path,
                    )
                ]
            )

        checker = IngressRuntimeChecker(
            command_runner=context.command_runner,
            env=state.cloud_env,
            logger=context.logger,
        )
        result = checker.check(
            ingress_name=ingresses[0].name,
            path=config.health_check_path,
            namespace=config.namespace,
            address_timeout=config.ingress_timeout,
            verify_tls=config.verify_tls,
        )
        return StepResult(
            issues=result.issues,
            metadata={"url": result.checked_url, "status_code": result.status_code},
        )
