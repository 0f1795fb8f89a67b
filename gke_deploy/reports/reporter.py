import json
import logging
import os
import re
from dataclasses import asdict
from typing import Any, Dict

from ..core.models import RunReport


class RunReporter:
    """Writes deployment run reports."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def save_report(self, report: RunReport, output_dir: str = "./deploy_reports") -> str:
        """
        Save a run report to a JSON file.

        Args:
            report: Report of the finished run
            output_dir: Directory to save reports

        Returns:
            Path to saved report file
        """
        os.makedirs(output_dir, exist_ok=True)

        timestamp = report.started_at.strftime("%Y%m%d_%H%M%S")
        commit = self._sanitize_token((report.commit_sha or "unknown")[:8])
        filename = f"deploy_{commit}_{timestamp}_{report.run_id[:8]}.json"
        filepath = os.path.join(output_dir, filename)

        try:
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(self.report_to_dict(report), f, indent=2, default=str)
        except OSError as e:
            self.logger.error("Failed to save report: %s", e)
            raise

        self.logger.info("Report saved to %s", filepath)
        return filepath

    def report_to_dict(self, report: RunReport) -> Dict[str, Any]:
        """Convert a run report to a JSON-serializable dictionary."""
        return {
            "run_id": report.run_id,
            "status": report.status.value,
            "started_at": report.started_at.isoformat(),
            "finished_at": report.finished_at.isoformat() if report.finished_at else None,
            "duration": report.duration,
            "commit_sha": report.commit_sha,
            "branch": report.branch,
            "image": report.image,
            "failed_step": report.failed_step,
            "cache": {"key": report.cache_key, "hit": report.cache_hit},
            "artifact": {
                "path": str(report.artifact.path),
                "size_bytes": report.artifact.size_bytes,
            } if report.artifact else None,
            "image_metrics": asdict(report.image_metrics) if report.image_metrics else None,
            "applied_resources": [asdict(resource) for resource in report.applied_resources],
            "steps": [
                {
                    "name": step.name,
                    "status": step.status.value,
                    "duration": round(step.duration, 3),
                    "issues": [issue.to_dict() for issue in step.issues],
                }
                for step in report.steps
            ],
            "metadata": report.metadata,
        }

    def format_summary(self, report: RunReport) -> str:
        """One line per step, followed by the overall outcome."""
        lines = []
        for step in report.steps:
            lines.append(f"{step.status.value:>9}  {step.name} ({step.duration:.1f}s)")
            for issue in step.issues:
                lines.append(f"           [{issue.severity}] {issue.code}: {issue.message}")
        lines.append(f"Run {report.run_id}: {report.status.value.upper()}")
        if report.image:
            lines.append(f"Image: {report.image}")
        return "\n".join(lines)

    @staticmethod
    def _sanitize_token(value: str) -> str:
        return re.sub(r"[^A-Za-z0-9_-]+", "-", value).strip("-") or "report"
