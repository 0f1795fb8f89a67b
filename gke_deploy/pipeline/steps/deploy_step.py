from __future__ import annotations

from ..pipeline import PipelineContext, PipelineState, StepResult
from ...runtime.kubernetes import KubernetesDeployer, order_manifests


class ManifestApplyStep:
    """Apply the manifests in dependency order; success means `kubectl apply` returned."""

    name = "deploy"

    def run(self, state: PipelineState, context: PipelineContext) -> StepResult:
        config = context.config
        configured = [state.workspace.get_full_path(manifest) for manifest in config.manifests]
        ordered = order_manifests(configured)
        if ordered != configured:
            context.logger.info(
                "Reordered manifests for apply: %s", ", ".join(path.name for path in ordered)
            )

        deployer = KubernetesDeployer(
            command_runner=context.command_runner,
            env=state.cloud_env,
            logger=context.logger,
        )
        result = deployer.apply_manifests(
            manifest_paths=ordered,
            namespace=config.namespace,
            image=state.image if config.patch_manifest_images else None,
            patched_dir=context.run_context.manifests_dir,
        )
        state.applied_resources.extend(result.resources)

        return StepResult(
            issues=result.issues,
            metadata={
                "order": [str(path) for path in ordered],
                "resources": [
                    f"{resource.kind}/{resource.name} {resource.action or 'applied'}" for resource in result.resources
                ],
            },
        )
