"""Runtime helpers wrapping Maven, Docker, gcloud and kubectl."""

from .issues import RuntimeIssue, IssueSeverity, has_errors
from .cache import CacheKey, DependencyCache
from .maven import MavenBuilder
from .docker import DockerImageBuilder, DockerBuildResult
from .gcloud import GCloudAuthenticator, parse_service_account_key
from .kubernetes import KubernetesDeployer, ManifestApplyResult, AppliedResource, order_manifests
from .ingress import IngressRuntimeChecker, RuntimeCheckResult

__all__ = [
    "RuntimeIssue",
    "IssueSeverity",
    "has_errors",
    "CacheKey",
    "DependencyCache",
    "MavenBuilder",
    "DockerImageBuilder",
    "DockerBuildResult",
    "GCloudAuthenticator",
    "parse_service_account_key",
    "KubernetesDeployer",
    "ManifestApplyResult",
    "AppliedResource",
    "order_manifests",
    "IngressRuntimeChecker",
    "RuntimeCheckResult",
]
