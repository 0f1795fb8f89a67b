from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..common.models import BuildArtifact, ImageBuildMetrics
from ..runtime.issues import RuntimeIssue
from ..runtime.kubernetes import AppliedResource


class RunStatus(Enum):
    """Overall outcome of a deployment run."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class RunContext:
    """
    Context identifying a single deployment run.

    Everything sensitive written during the run (service-account key file,
    gcloud configuration, kubeconfig) lives under run_dir, which the runner
    removes once the run ends.
    """
    run_id: str
    timestamp: datetime
    work_dir: Path

    @property
    def run_dir(self) -> Path:
        """Scratch directory for this run. Format: {work_dir}/run-{run_id}"""
        return self.work_dir / f"run-{self.run_id}"

    @property
    def gcloud_config_dir(self) -> Path:
        return self.run_dir / "gcloud"

    @property
    def kubeconfig_path(self) -> Path:
        return self.run_dir / "kubeconfig"

    @property
    def credentials_path(self) -> Path:
        return self.run_dir / "service-account.json"

    @property
    def manifests_dir(self) -> Path:
        return self.run_dir / "manifests"


@dataclass
class StepRecord:
    """Outcome of one pipeline step as stored in the run report."""
    name: str
    status: StepStatus
    duration: float
    issues: List[RuntimeIssue] = field(default_factory=list)


@dataclass
class RunReport:
    """Complete record of a deployment run."""
    run_id: str
    status: RunStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    commit_sha: Optional[str] = None
    branch: Optional[str] = None
    image: Optional[str] = None
    artifact: Optional[BuildArtifact] = None
    cache_key: Optional[str] = None
    cache_hit: Optional[bool] = None
    image_metrics: Optional[ImageBuildMetrics] = None
    applied_resources: List[AppliedResource] = field(default_factory=list)
    steps: List[StepRecord] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def issues(self) -> List[RuntimeIssue]:
        return [issue for step in self.steps for issue in step.issues]

    @property
    def failed_step(self) -> Optional[str]:
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step.name
        return None

    @property
    def duration(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
