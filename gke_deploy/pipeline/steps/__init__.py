from .checkout_step import SourceCheckoutStep
from .toolchain_step import ToolchainSetupStep
from .cache_step import DependencyCacheRestoreStep, DependencyCacheSaveStep
from .package_step import MavenPackageStep
from .auth_step import CloudAuthenticationStep
from .image_step import ImageBuildPushStep
from .cluster_step import ClusterCredentialsStep
from .deploy_step import ManifestApplyStep
from .rollout_step import RolloutVerificationStep
from .health_step import IngressHealthStep

__all__ = [
    "SourceCheckoutStep",
    "ToolchainSetupStep",
    "DependencyCacheRestoreStep",
    "DependencyCacheSaveStep",
    "MavenPackageStep",
    "CloudAuthenticationStep",
    "ImageBuildPushStep",
    "ClusterCredentialsStep",
    "ManifestApplyStep",
    "RolloutVerificationStep",
    "IngressHealthStep",
]
