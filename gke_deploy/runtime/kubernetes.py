"""Kubernetes manifest ordering, image patching, apply and readiness helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import yaml

from ..common.command_runner import CommandRunner
from ..common.models import ImageReference

from .issues import RuntimeIssue

# Lower ranks are applied first: cluster scaffolding, workloads, then routing.
KIND_RANKS: Dict[str, int] = {
    "Namespace": 0,
    "ServiceAccount": 1,
    "Secret": 1,
    "ConfigMap": 1,
    "PersistentVolumeClaim": 1,
    "Role": 1,
    "RoleBinding": 1,
    "Deployment": 2,
    "StatefulSet": 2,
    "DaemonSet": 2,
    "Job": 2,
    "CronJob": 2,
    "HorizontalPodAutoscaler": 3,
    "Service": 4,
    "BackendConfig": 4,
    "FrontendConfig": 4,
    "ManagedCertificate": 4,
    "Ingress": 5,
}
DEFAULT_KIND_RANK = 2
WORKLOAD_KINDS = ("Deployment", "StatefulSet", "DaemonSet", "Job", "CronJob")


@dataclass(slots=True)
class AppliedResource:
    """Represents a Kubernetes resource applied to the cluster."""

    kind: str
    name: str
    action: Optional[str] = None  # "created" | "configured" | "unchanged"


@dataclass(slots=True)
class ManifestApplyResult:
    """Outcome of applying one or more manifests."""

    issues: List[RuntimeIssue]
    resources: List[AppliedResource]

    @property
    def success(self) -> bool:
        return not any(issue.is_error() for issue in self.issues)


def load_manifest_documents(manifest_path: Path) -> List[Dict[str, object]]:
    with open(manifest_path, "r", encoding="utf-8") as handle:
        return [doc for doc in yaml.safe_load_all(handle) if isinstance(doc, dict)]


def manifest_rank(manifest_path: Path) -> int:
    """Rank of the earliest-applying kind in a manifest file."""
    try:
        docs = load_manifest_documents(manifest_path)
    except (OSError, yaml.YAMLError):
        return DEFAULT_KIND_RANK
    ranks = [KIND_RANKS.get(str(doc.get("kind")), DEFAULT_KIND_RANK) for doc in docs]
    return min(ranks) if ranks else DEFAULT_KIND_RANK


def order_manifests(manifest_paths: Sequence[Path]) -> List[Path]:
    """Stable-sort manifest files so workloads are applied before the objects routing to them."""
    return sorted(manifest_paths, key=manifest_rank)


def extract_containers(doc: Dict[str, object]) -> List[Dict[str, object]]:
    kind = doc.get("kind")
    spec = doc.get("spec") or {}
    if kind == "CronJob":
        spec = (spec.get("jobTemplate") or {}).get("spec") or {}  # type: ignore[union-attr]
    if kind not in WORKLOAD_KINDS:
        return []
    pod_spec = (spec.get("template") or {}).get("spec") or {}  # type: ignore[union-attr]
    containers = list(pod_spec.get("containers") or [])
    containers.extend(pod_spec.get("initContainers") or [])
    return [container for container in containers if isinstance(container, dict)]


def image_repository(image: str) -> str:
    """Strip tag and digest: 'r/p/app:1.0' -> 'r/p/app'."""
    image = image.split("@", 1)[0]
    last_segment = image.rsplit("/", 1)[-1]
    if ":" in last_segment:
        image = image[: image.rfind(":")]
    return image


def patch_image_references(docs: Sequence[Dict[str, object]], image: ImageReference) -> List[Tuple[str, str]]:
    """Point containers that run the pipeline's image at this run's tag.

    A container matches when its repository equals the full repository path
    or its last path segment equals the image name. Returns (old, new) pairs.
    """
    patched: List[Tuple[str, str]] = []
    for doc in docs:
        for container in extract_containers(doc):
            current = container.get("image")
            if not isinstance(current, str) or not current:
                continue
            repository = image_repository(current)
            if repository != image.repository_path and repository.rsplit("/", 1)[-1] != image.image:
                continue
            if current != image.full_name:
                container["image"] = image.full_name
                patched.append((current, image.full_name))
    return patched


def parse_apply_output(stdout: str) -> List[Tuple[str, str, str]]:
    """Parse `kubectl apply` lines like 'deployment.apps/java-app configured' into (kind, name, action)."""
    parsed: List[Tuple[str, str, str]] = []
    for line in stdout.splitlines():
        tokens = line.strip().split()
        if len(tokens) < 2 or "/" not in tokens[0]:
            continue
        resource_type, name = tokens[0].split("/", 1)
        kind = resource_type.split(".", 1)[0]
        action = " ".join(tokens[1:])
        if action.endswith("(server dry run)"):
            action = action[: -len("(server dry run)")].strip()
        parsed.append((kind.lower(), name, action))
    return parsed


class KubernetesDeployer:
    """Apply manifests with per-run image patching and optional readiness checks."""

    def __init__(
        self,
        *,
        command_runner: CommandRunner,
        env: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.command_runner = command_runner
        self.env = env or {}
        self.logger = logger or logging.getLogger(__name__)

    def apply_manifests(
        self,
        *,
        manifest_paths: Sequence[Path],
        namespace: Optional[str] = None,
        image: Optional[ImageReference] = None,
        patched_dir: Optional[Path] = None,
    ) -> ManifestApplyResult:
        """Apply manifest files in order, stopping at the first failure."""
        issues: List[RuntimeIssue] = []
        resources: List[AppliedResource] = []

        for manifest_path in manifest_paths:
            result = self.apply_manifest(
                manifest_path=manifest_path,
                namespace=namespace,
                image=image,
                patched_dir=patched_dir,
            )
            issues.extend(result.issues)
            resources.extend(result.resources)
            if not result.success:
                self.logger.error("Stopping deploy after failure in %s", manifest_path)
                break

        return ManifestApplyResult(issues=issues, resources=resources)

    def apply_manifest(
        self,
        *,
        manifest_path: Path,
        namespace: Optional[str] = None,
        image: Optional[ImageReference] = None,
        patched_dir: Optional[Path] = None,
    ) -> ManifestApplyResult:
        issues: List[RuntimeIssue] = []
        subject = str(manifest_path)

        if not manifest_path.exists():
            issues.append(
                RuntimeIssue(
                    code="K8S_MANIFEST_NOT_FOUND",
                    message=f"Manifest file not found: {manifest_path}",
                    subject=subject,
                )
            )
            return ManifestApplyResult(issues=issues, resources=[])

        try:
            docs = load_manifest_documents(manifest_path)
        except yaml.YAMLError as exc:
            issues.append(
                RuntimeIssue(
                    code="K8S_MANIFEST_INVALID",
                    message=f"Manifest is not valid YAML: {exc}",
                    subject=subject,
                )
            )
            return ManifestApplyResult(issues=issues, resources=[])

        apply_path = manifest_path
        if image is not None and patched_dir is not None:
            patched = patch_image_references(docs, image)
            if patched:
                patched_dir.mkdir(parents=True, exist_ok=True)
                apply_path = patched_dir / manifest_path.name
                with open(apply_path, "w", encoding="utf-8") as handle:
                    yaml.safe_dump_all(docs, handle, sort_keys=False)
                for old, new in patched:
                    self.logger.info("Patching image name: %s -> %s", old, new)

        command = ["kubectl", "apply", "-f", str(apply_path)]
        if namespace:
            command.extend(["-n", namespace])

        self.logger.info("Applying manifest %s", manifest_path)
        result = self.command_runner.run(command, timeout=120, env=self.env)

        if result.timed_out:
            issues.append(RuntimeIssue(code="K8S_APPLY_TIMEOUT", message="kubectl apply timed out", subject=subject))
        elif not result.tool_available:
            issues.append(
                RuntimeIssue(
                    code="KUBECTL_NOT_FOUND",
                    message="kubectl not available - cannot apply manifest",
                    subject=subject,
                )
            )
        elif not result.succeeded():
            issues.append(
                RuntimeIssue(
                    code="K8S_APPLY_FAILED",
                    message=f"kubectl apply failed: {result.error_output()}",
                    subject=subject,
                )
            )
        else:
            resources = self._applied_resources(docs, result.stdout)
            for resource in resources:
                self.logger.info("%s/%s %s", resource.kind, resource.name, resource.action or "applied")
            return ManifestApplyResult(issues=issues, resources=resources)

        self.logger.error("%s", issues[-1].message)
        return ManifestApplyResult(issues=issues, resources=[])

    def wait_for_resources_ready(
        self,
        *,
        resources: Sequence[AppliedResource],
        namespace: Optional[str] = None,
        timeout: int = 300,
    ) -> List[RuntimeIssue]:
        issues: List[RuntimeIssue] = []

        for resource in resources:
            kind = resource.kind
            name = resource.name

            if kind not in ("Deployment", "StatefulSet"):
                continue

            self.logger.info("Waiting for %s/%s to be ready", kind, name)
            wait_result, error = self._wait_for_resource(kind, name, namespace, timeout)

            if error:
                issues.append(
                    RuntimeIssue(
                        code="K8S_READY_CHECK_ERROR",
                        message=f"Error checking {kind} {name} status: {error}",
                        subject=name,
                    )
                )
                self.logger.error("Failed to check readiness for %s/%s: %s", kind, name, error)
            elif wait_result is None:
                continue
            elif wait_result.timed_out:
                issues.append(
                    RuntimeIssue(
                        code="K8S_READY_TIMEOUT",
                        message=f"{kind} {name} readiness check timed out",
                        subject=name,
                    )
                )
                self.logger.warning("%s/%s did not become ready within %ss", kind, name, timeout)
            elif not wait_result.succeeded():
                issues.append(
                    RuntimeIssue(
                        code="K8S_RESOURCE_NOT_READY",
                        message=f"{kind} {name} not ready within {timeout}s: {wait_result.error_output('')}",
                        subject=name,
                    )
                )
                self.logger.warning("%s/%s failed readiness check: %s", kind, name, wait_result.error_output(""))
            else:
                self.logger.info("%s/%s is ready", kind, name)

        return issues

    def _namespace_args(self, namespace: Optional[str]) -> List[str]:
        return ["-n", namespace] if namespace else []

    def _wait_for_resource(self, kind: str, name: str, namespace: Optional[str], timeout: int):
        target = f"{kind.lower()}/{name}"
        if kind == "Deployment":
            result = self.command_runner.run(
                [
                    "kubectl",
                    "wait",
                    "--for=condition=available",
                    target,
                    *self._namespace_args(namespace),
                    f"--timeout={timeout}s",
                ],
                timeout=timeout + 10,
                env=self.env,
            )
            return result, None

        if kind == "StatefulSet":
            replicas_result = self.command_runner.run(
                ["kubectl", "get", target, *self._namespace_args(namespace), "-o", "jsonpath={.spec.replicas}"],
                timeout=30,
                env=self.env,
            )
            if not replicas_result.succeeded():
                return None, f"Failed to get replica count: {replicas_result.error_output()}"

            replica_count = replicas_result.stdout.strip() or "1"
            result = self.command_runner.run(
                [
                    "kubectl",
                    "wait",
                    f"--for=jsonpath={{.status.readyReplicas}}={replica_count}",
                    target,
                    *self._namespace_args(namespace),
                    f"--timeout={timeout}s",
                ],
                timeout=timeout + 10,
                env=self.env,
            )
            return result, None

        return None, None

    @staticmethod
    def _applied_resources(docs: Sequence[Dict[str, object]], stdout: str) -> List[AppliedResource]:
        actions = {(kind, name): action for kind, name, action in parse_apply_output(stdout)}
        resources: List[AppliedResource] = []
        for doc in docs:
            kind = doc.get("kind")
            name = (doc.get("metadata") or {}).get("name")  # type: ignore[union-attr]
            if not kind or not name:
                continue
            resources.append(
                AppliedResource(kind=str(kind), name=str(name), action=actions.get((str(kind).lower(), str(name))))
            )
        return resources
