"""Docker build and push helpers for the deployment pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..common.command_runner import CommandResult, CommandRunner
from ..common.models import ImageBuildMetrics, ImageReference

from .issues import RuntimeIssue

RETRYABLE_PUSH_ERRORS = (
    "timeout",
    "i/o timeout",
    "connection",
    "network",
    "temporary failure",
    "proxyconnect",
    "502 bad gateway",
    "503 service unavailable",
)


@dataclass(slots=True)
class DockerBuildResult:
    """Aggregate result of building and pushing a Docker image."""

    image_name: str
    issues: List[RuntimeIssue]
    metrics: Optional[ImageBuildMetrics] = None
    push_attempts: int = 0

    @property
    def success(self) -> bool:
        return not any(issue.is_error() for issue in self.issues)


class DockerImageBuilder:
    """Build Docker images and push them to Artifact Registry."""

    def __init__(
        self,
        command_runner: CommandRunner,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.command_runner = command_runner
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    def build_and_push(
        self,
        *,
        project_dir: Path,
        image: ImageReference,
        dockerfile: str = "Dockerfile",
        build_context: str = ".",
        platform: str = "linux/amd64",
        build_timeout: int = 900,
        max_push_retries: int = 1,
        env: Optional[Dict[str, str]] = None,
    ) -> DockerBuildResult:
        """
        Build the image from the project's Dockerfile and push it to the registry.

        Args:
            project_dir: Checked-out repository root.
            image: Fully-qualified reference; its tag is the commit identifier.
            dockerfile: Dockerfile path relative to the repository root.
            build_context: Build context path relative to the repository root.
            platform: Target platform passed to buildx.
            build_timeout: Seconds before the build is abandoned.
            max_push_retries: Push attempts on transient registry errors (1 disables retry).
            env: Extra environment (run-scoped gcloud config for the credential helper).
        """
        issues: List[RuntimeIssue] = []
        image_name = image.full_name

        dockerfile_full_path = project_dir / dockerfile
        build_context_path = project_dir / build_context

        if not dockerfile_full_path.exists():
            issues.append(
                RuntimeIssue(
                    code="DOCKER_BUILD_FILE_NOT_FOUND",
                    message=f"Dockerfile not found at {dockerfile}",
                    subject=dockerfile,
                )
            )
            return DockerBuildResult(image_name=image_name, issues=issues)

        if not build_context_path.is_dir():
            issues.append(
                RuntimeIssue(
                    code="DOCKER_BUILD_CONTEXT_NOT_FOUND",
                    message=f"Build context directory not found at {build_context}",
                    subject=build_context,
                )
            )
            return DockerBuildResult(image_name=image_name, issues=issues)

        build_cmd = [
            "docker",
            "buildx",
            "build",
            "--platform",
            platform,
            "--load",
            "--progress=plain",
            "-t",
            image_name,
            "-f",
            str(dockerfile_full_path),
            str(build_context_path),
        ]

        self.logger.info("Building Docker image %s", image_name)
        build_result = self.command_runner.run(build_cmd, timeout=build_timeout, env=env)

        issues.extend(self._handle_build_result(build_result, dockerfile, image_name, build_timeout))
        if any(issue.is_error() for issue in issues):
            return DockerBuildResult(image_name=image_name, issues=issues)

        push_result, push_issues, attempts = self._push_image(image_name, max_push_retries, env)
        issues.extend(push_issues)

        if any(issue.is_error() for issue in issues) or not push_result:
            return DockerBuildResult(image_name=image_name, issues=issues, push_attempts=attempts)

        metrics = self._collect_metrics(image_name, build_result, push_result, issues)
        return DockerBuildResult(image_name=image_name, issues=issues, metrics=metrics, push_attempts=attempts)

    def _handle_build_result(
        self,
        build_result: CommandResult,
        dockerfile: str,
        image_name: str,
        build_timeout: int,
    ) -> List[RuntimeIssue]:
        issues: List[RuntimeIssue] = []

        if build_result.timed_out:
            issues.append(
                RuntimeIssue(
                    code="DOCKER_BUILD_TIMEOUT",
                    message=f"Docker build timed out (>{build_timeout}s)",
                    subject=dockerfile,
                )
            )
            return issues

        if not build_result.tool_available:
            issues.append(
                RuntimeIssue(
                    code="DOCKER_CLI_NOT_FOUND",
                    message="Docker CLI not available - install Docker with buildx support",
                    subject=dockerfile,
                )
            )
            return issues

        if not build_result.succeeded():
            error_msg = build_result.error_output("Unknown buildx error")
            issues.append(
                RuntimeIssue(
                    code="DOCKER_BUILD_FAILED",
                    message=f"Docker build failed: {error_msg}",
                    subject=dockerfile,
                )
            )
            self.logger.error("Docker build failed for %s: %s", image_name, error_msg[-500:])
        else:
            self.logger.info("Build completed successfully for %s", image_name)

        return issues

    def _push_image(
        self,
        image_name: str,
        max_push_retries: int,
        env: Optional[Dict[str, str]],
    ) -> tuple[Optional[CommandResult], List[RuntimeIssue], int]:
        push_result: Optional[CommandResult] = None
        issues: List[RuntimeIssue] = []
        attempts = 0

        for attempt in range(max_push_retries):
            if attempt > 0:
                self.logger.info("Retrying docker push (attempt %d/%d)...", attempt + 1, max_push_retries)
                self._sleep(2 ** attempt)

            attempts += 1
            push_result = self.command_runner.run(["docker", "push", image_name], timeout=300, env=env)

            if push_result.timed_out:
                self.logger.warning(
                    "Docker push timed out on attempt %d/%d for %s", attempt + 1, max_push_retries, image_name
                )
                continue

            if not push_result.tool_available:
                issues.append(
                    RuntimeIssue(
                        code="DOCKER_CLI_NOT_FOUND",
                        message="Docker CLI not available for push operation",
                        subject=image_name,
                    )
                )
                return push_result, issues, attempts

            if push_result.succeeded():
                self.logger.info("Successfully pushed image to registry: %s", image_name)
                return push_result, issues, attempts

            error_msg = push_result.error_output("")
            if is_retryable_push_error(error_msg):
                self.logger.warning(
                    "Docker push failed with retryable error on attempt %d/%d: %s",
                    attempt + 1,
                    max_push_retries,
                    error_msg[:200],
                )
                continue

            self.logger.error("Docker push failed with non-retryable error: %s", error_msg[:200])
            issues.append(
                RuntimeIssue(
                    code="DOCKER_PUSH_FAILED",
                    message=f"Docker push failed: {error_msg}",
                    subject=image_name,
                )
            )
            return push_result, issues, attempts

        if push_result is not None and push_result.timed_out:
            issues.append(
                RuntimeIssue(
                    code="DOCKER_PUSH_TIMEOUT",
                    message=f"Docker push timed out after {attempts} attempt(s)",
                    subject=image_name,
                )
            )
        else:
            error_msg = push_result.error_output("Unknown docker push error") if push_result else "no result"
            issues.append(
                RuntimeIssue(
                    code="DOCKER_PUSH_FAILED",
                    message=f"Docker push failed after {attempts} attempt(s): {error_msg}",
                    subject=image_name,
                )
            )
        return push_result, issues, attempts

    def _collect_metrics(
        self,
        image_name: str,
        build_result: CommandResult,
        push_result: CommandResult,
        issues: List[RuntimeIssue],
    ) -> ImageBuildMetrics:
        metrics = ImageBuildMetrics(image_name=image_name, build_time=build_result.duration + push_result.duration)

        inspect_result = self.command_runner.run(
            ["docker", "image", "inspect", image_name, "--format", "{{.Size}} {{len .RootFS.Layers}}"],
            timeout=10,
        )
        if not inspect_result.succeeded():
            self.logger.warning("Could not inspect image metrics for %s", image_name)
            issues.append(
                RuntimeIssue(
                    code="DOCKER_INSPECT_FAILED",
                    message="Image pushed but size and layer count are unavailable",
                    severity="warning",
                    subject=image_name,
                )
            )
            return metrics

        try:
            size_bytes, layers = inspect_result.stdout.split()
            metrics.image_size_mb = round(int(size_bytes) / (1024 * 1024), 2)
            metrics.layers_count = int(layers)
        except ValueError:
            self.logger.warning("Could not parse docker inspect output for %s", image_name)
            return metrics

        self.logger.info(
            "Image metrics: %.2f MB, %s layers, built and pushed in %.1fs",
            metrics.image_size_mb,
            metrics.layers_count,
            metrics.build_time,
        )
        return metrics


def is_retryable_push_error(error_msg: str) -> bool:
    lowered = error_msg.lower()
    return any(keyword in lowered for keyword in RETRYABLE_PUSH_ERRORS)
