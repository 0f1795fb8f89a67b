"""Shared data models used across the runtime helpers and the deployment pipeline."""
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

COMMIT_SHA_PATTERN = re.compile(r"^[0-9a-f]{7,40}$")


class ImageReference(BaseModel):
    """Fully-qualified Artifact Registry image reference."""

    registry: str = Field(description="Registry host, e.g. 'us-east1-docker.pkg.dev'")
    project: str = Field(description="Cloud project identifier")
    repository: str = Field(description="Artifact Registry repository name")
    image: str = Field(description="Image name inside the repository")
    tag: str = Field(description="Image tag; always the triggering commit identifier")

    @field_validator("tag")
    @classmethod
    def _validate_tag(cls, value: str) -> str:
        value = value.strip().lower()
        if not COMMIT_SHA_PATTERN.match(value):
            raise ValueError(f"Image tag must be a commit identifier (7-40 hex chars), got: {value!r}")
        return value

    @property
    def repository_path(self) -> str:
        """Image reference without the tag."""
        return f"{self.registry}/{self.project}/{self.repository}/{self.image}"

    @property
    def full_name(self) -> str:
        return f"{self.repository_path}:{self.tag}"

    def __str__(self) -> str:
        return self.full_name


@dataclass
class BuildArtifact:
    """Packaged application produced by the build tool."""

    path: Path
    size_bytes: int

    @property
    def name(self) -> str:
        return self.path.name


@dataclass
class ImageBuildMetrics:
    """Metrics collected during Docker image build and push."""

    image_name: str
    build_time: float  # seconds, build plus push
    image_size_mb: Optional[float] = None
    layers_count: Optional[int] = None
