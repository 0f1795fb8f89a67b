"""Deployment configuration model and loader."""

from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from ..common.models import ImageReference

REQUIRED_FIELDS = {
    "project_id": "PROJECT_ID",
    "region": "REGION",
    "repo_name": "REPO_NAME",
    "image_name": "IMAGE_NAME",
    "cluster_name": "CLUSTER_NAME",
    "cluster_zone": "CLUSTER_ZONE",
}

# Zones end in a single letter suffix (us-east1-b); regions do not (us-east1).
_ZONE_PATTERN = re.compile(r"^[a-z]+-[a-z]+\d+-[a-z]$")


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default)


class DeployConfig(BaseModel):
    """Configuration settings for a build-and-deploy run."""

    # Environment constants
    project_id: str = Field(default_factory=lambda: _env("PROJECT_ID"))
    region: str = Field(default_factory=lambda: _env("REGION"))
    repo_name: str = Field(default_factory=lambda: _env("REPO_NAME"), description="Artifact Registry repository.")
    image_name: str = Field(default_factory=lambda: _env("IMAGE_NAME"))
    cluster_name: str = Field(default_factory=lambda: _env("CLUSTER_NAME"))
    cluster_zone: str = Field(default_factory=lambda: _env("CLUSTER_ZONE"), description="Zone or region of the cluster.")

    # Source settings
    default_branch: str = "main"
    repo_url: Optional[str] = Field(default=None, description="Clone this URL instead of using a local checkout.")

    # Toolchain settings
    java_version: str = "11"
    java_distribution: str = "temurin"
    maven_goals: List[str] = Field(default_factory=lambda: ["clean", "package", "--no-transfer-progress"])
    maven_timeout: int = 1800

    # Dependency cache settings
    cache_enabled: bool = True
    cache_dir: str = Field(default_factory=lambda: _env("DEPLOY_CACHE_DIR", "~/.cache/gke-deploy"))
    cache_path: str = "~/.m2"
    cache_manifest_glob: str = "**/pom.xml"
    cache_max_entries: int = Field(default=3, ge=1, description="Archives kept per key prefix; older ones are deleted.")

    # Credential settings
    credentials_env: str = "GCP_SA_KEY"
    credentials_file: Optional[str] = None

    # Image settings
    dockerfile: str = "Dockerfile"
    build_context: str = "."
    docker_platform: str = "linux/amd64"
    docker_build_timeout: int = 900
    push_retries: int = Field(default=1, description="Push attempts; values above 1 retry transient registry errors.")

    # Kubernetes settings
    manifests: List[str] = Field(
        default_factory=lambda: [
            "manifest/deployment.yaml",
            "manifest/service.yaml",
            "manifest/ingress.yaml",
        ]
    )
    namespace: Optional[str] = None
    patch_manifest_images: bool = True
    wait_for_rollout: bool = False
    rollout_timeout: int = 300
    health_check_path: Optional[str] = None
    ingress_timeout: int = 600
    verify_tls: bool = True

    # Directory settings
    # Holds the key file and kubeconfig of each run; must stay outside the source tree.
    work_dir: str = Field(
        default_factory=lambda: _env("DEPLOY_WORK_DIR", os.path.join(tempfile.gettempdir(), "gke-deploy"))
    )
    report_dir: str = "./deploy_reports"

    @field_validator("push_retries")
    @classmethod
    def _validate_push_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("push_retries must be >= 1.")
        return value

    @field_validator("manifests")
    @classmethod
    def _validate_manifests(cls, manifests: List[str]) -> List[str]:
        if not manifests:
            raise ValueError("At least one manifest must be configured.")
        return [manifest.strip() for manifest in manifests]

    def missing_fields(self) -> List[str]:
        """Return environment variable names of required constants that are empty."""
        return [env_name for field_name, env_name in REQUIRED_FIELDS.items() if not getattr(self, field_name).strip()]

    @property
    def registry_host(self) -> str:
        return f"{self.region}-docker.pkg.dev"

    def get_image_reference(self, commit_sha: str) -> ImageReference:
        """Image reference for a commit: {region}-docker.pkg.dev/{project}/{repo}/{image}:{sha}."""
        return ImageReference(
            registry=self.registry_host,
            project=self.project_id,
            repository=self.repo_name,
            image=self.image_name,
            tag=commit_sha,
        )

    def cluster_location_flag(self) -> str:
        return "--zone" if _ZONE_PATTERN.match(self.cluster_zone) else "--region"

    def resolved_cache_dir(self) -> Path:
        return Path(self.cache_dir).expanduser()

    def resolved_cache_path(self) -> Path:
        return Path(self.cache_path).expanduser()

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


def load_deploy_config(path: str | Path, overrides: Optional[Dict[str, Any]] = None) -> DeployConfig:
    """Load deployment settings from a YAML or JSON file.

    Keys absent from the file fall back to environment variables and defaults.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Deploy config file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    elif suffix == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
    else:
        raise ValueError(f"Unsupported deploy config format: {suffix}")

    if data is None:
        raise ValueError(f"Deploy config file {path} is empty.")
    if not isinstance(data, dict):
        raise ValueError(f"Deploy config file {path} must contain a mapping.")

    data.update(overrides or {})
    return DeployConfig.model_validate(data)


__all__ = ["DeployConfig", "REQUIRED_FIELDS", "load_deploy_config"]
