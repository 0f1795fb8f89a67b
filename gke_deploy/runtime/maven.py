"""Java toolchain checks and Maven package builds."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from ..common.command_runner import CommandRunner
from ..common.models import BuildArtifact

from .issues import RuntimeIssue

_JAVA_VERSION_PATTERN = re.compile(r'version "([^"]+)"')
_ARTIFACT_SUFFIXES = (".jar", ".war")
_EXCLUDED_ARTIFACT_MARKERS = ("-sources", "-javadoc", "-tests")


def parse_java_major_version(version_output: str) -> Optional[int]:
    """Extract the major version from `java -version` output.

    '11.0.22' -> 11, '17' -> 17, '1.8.0_392' -> 8.
    """
    match = _JAVA_VERSION_PATTERN.search(version_output)
    if not match:
        return None

    parts = re.split(r"[._+-]", match.group(1))
    try:
        major = int(parts[0])
        if major == 1 and len(parts) > 1:
            major = int(parts[1])
    except ValueError:
        return None
    return major


@dataclass(slots=True)
class ToolchainCheckResult:
    issues: List[RuntimeIssue]
    java_major_version: Optional[int] = None
    maven_version: Optional[str] = None

    @property
    def success(self) -> bool:
        return not any(issue.is_error() for issue in self.issues)


@dataclass(slots=True)
class MavenBuildResult:
    issues: List[RuntimeIssue]
    artifact: Optional[BuildArtifact] = None
    duration: float = 0.0
    log_tail: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not any(issue.is_error() for issue in self.issues)


class MavenBuilder:
    """Verify the Java toolchain and package the application with Maven."""

    def __init__(self, command_runner: CommandRunner, logger: Optional[logging.Logger] = None) -> None:
        self.command_runner = command_runner
        self.logger = logger or logging.getLogger(__name__)

    def check_toolchain(self, required_java_version: str) -> ToolchainCheckResult:
        issues: List[RuntimeIssue] = []

        java_result = self.command_runner.run(["java", "-version"], timeout=30)
        if not java_result.tool_available:
            issues.append(
                RuntimeIssue(
                    code="JAVA_NOT_FOUND",
                    message=f"Java runtime not available - install JDK {required_java_version}",
                    subject="java",
                )
            )
            return ToolchainCheckResult(issues=issues)

        # java -version prints to stderr
        java_major = parse_java_major_version(java_result.stderr + java_result.stdout)
        if java_major is None:
            issues.append(
                RuntimeIssue(
                    code="JAVA_VERSION_UNKNOWN",
                    message="Could not determine Java version from `java -version` output",
                    subject="java",
                    details=java_result.error_output(""),
                )
            )
        elif str(java_major) != str(required_java_version).strip():
            issues.append(
                RuntimeIssue(
                    code="JAVA_VERSION_MISMATCH",
                    message=f"Java {required_java_version} required, found Java {java_major}",
                    subject="java",
                )
            )
        else:
            self.logger.info("Using Java %s", java_major)

        mvn_result = self.command_runner.run(["mvn", "-v"], timeout=60)
        maven_version: Optional[str] = None
        if not mvn_result.tool_available:
            issues.append(
                RuntimeIssue(
                    code="MAVEN_NOT_FOUND",
                    message="Maven not available - install Apache Maven",
                    subject="mvn",
                )
            )
        elif not mvn_result.succeeded():
            issues.append(
                RuntimeIssue(
                    code="MAVEN_UNUSABLE",
                    message=f"`mvn -v` failed: {mvn_result.error_output()}",
                    subject="mvn",
                )
            )
        else:
            first_line = mvn_result.stdout.strip().splitlines()[0] if mvn_result.stdout.strip() else ""
            maven_version = first_line or None
            self.logger.info("Using %s", maven_version or "Maven")

        return ToolchainCheckResult(issues=issues, java_major_version=java_major, maven_version=maven_version)

    def package(
        self,
        *,
        project_dir: Path,
        goals: Sequence[str],
        timeout: int,
        env: Optional[dict] = None,
    ) -> MavenBuildResult:
        """Run Maven in the project directory and locate the packaged artifact."""
        issues: List[RuntimeIssue] = []

        if not (project_dir / "pom.xml").exists():
            issues.append(
                RuntimeIssue(
                    code="MAVEN_POM_NOT_FOUND",
                    message=f"pom.xml not found in {project_dir}",
                    subject="pom.xml",
                )
            )
            return MavenBuildResult(issues=issues)

        command = ["mvn", *goals]
        self.logger.info("Building application: %s", " ".join(command))
        result = self.command_runner.run(command, cwd=project_dir, timeout=timeout, env=env)
        log_tail = result.stdout.strip().splitlines()[-20:]

        if result.timed_out:
            issues.append(
                RuntimeIssue(
                    code="MAVEN_BUILD_TIMEOUT",
                    message=f"Maven build timed out (>{timeout}s)",
                    subject="pom.xml",
                )
            )
        elif not result.tool_available:
            issues.append(
                RuntimeIssue(
                    code="MAVEN_NOT_FOUND",
                    message="Maven not available - cannot build application",
                    subject="mvn",
                )
            )
        elif not result.succeeded():
            issues.append(
                RuntimeIssue(
                    code="MAVEN_BUILD_FAILED",
                    message=(
                        f"Maven build failed with exit code {result.return_code}"
                        if result.return_code is not None
                        else f"Maven could not be started: {result.error_output()}"
                    ),
                    subject="pom.xml",
                    details="\n".join(log_tail) or result.error_output(),
                )
            )
            self.logger.error("Maven build failed:\n%s", "\n".join(log_tail))

        if issues:
            return MavenBuildResult(issues=issues, duration=result.duration, log_tail=log_tail)

        artifact = find_artifact(project_dir / "target")
        if artifact is None:
            issues.append(
                RuntimeIssue(
                    code="MAVEN_ARTIFACT_NOT_FOUND",
                    message="Build succeeded but no .jar or .war was found in target/",
                    subject="target",
                )
            )
        else:
            self.logger.info("Packaged %s (%d bytes) in %.1fs", artifact.name, artifact.size_bytes, result.duration)

        return MavenBuildResult(issues=issues, artifact=artifact, duration=result.duration, log_tail=log_tail)


def find_artifact(target_dir: Path) -> Optional[BuildArtifact]:
    """Pick the deployable artifact Maven produced: the largest jar/war that is not a side artifact."""
    if not target_dir.is_dir():
        return None

    candidates = []
    for path in target_dir.iterdir():
        if not path.is_file() or path.suffix not in _ARTIFACT_SUFFIXES:
            continue
        if path.name.startswith("original-"):
            continue
        if any(marker in path.stem for marker in _EXCLUDED_ARTIFACT_MARKERS):
            continue
        candidates.append(path)

    if not candidates:
        return None

    best = max(candidates, key=lambda candidate: (candidate.stat().st_size, candidate.name))
    return BuildArtifact(path=best, size_bytes=best.stat().st_size)
