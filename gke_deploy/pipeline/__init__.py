"""Ordered deployment pipeline and its steps."""

from .pipeline import (
    DeploymentPipeline,
    PipelineContext,
    PipelineResult,
    PipelineState,
    PipelineStep,
    StepResult,
)
from .steps import (
    CloudAuthenticationStep,
    ClusterCredentialsStep,
    DependencyCacheRestoreStep,
    DependencyCacheSaveStep,
    ImageBuildPushStep,
    IngressHealthStep,
    ManifestApplyStep,
    MavenPackageStep,
    RolloutVerificationStep,
    SourceCheckoutStep,
    ToolchainSetupStep,
)


def build_default_pipeline() -> DeploymentPipeline:
    """Checkout, build, publish the image, then deploy: the fixed step order of every run."""
    return DeploymentPipeline(
        [
            SourceCheckoutStep(),
            ToolchainSetupStep(),
            DependencyCacheRestoreStep(),
            MavenPackageStep(),
            DependencyCacheSaveStep(),
            CloudAuthenticationStep(),
            ImageBuildPushStep(),
            ClusterCredentialsStep(),
            ManifestApplyStep(),
            RolloutVerificationStep(),
            IngressHealthStep(),
        ]
    )


__all__ = [
    "DeploymentPipeline",
    "PipelineContext",
    "PipelineResult",
    "PipelineState",
    "PipelineStep",
    "StepResult",
    "build_default_pipeline",
]
