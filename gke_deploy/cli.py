from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from .common.models import COMMIT_SHA_PATTERN
from .core.config import DeployConfig, load_deploy_config
from .core.models import RunStatus
from .core.runner import DeploymentRunner
from .core.workspace import SourceWorkspace, WorkspaceError
from .reports import RunReporter
from .runtime.cache import CacheKey
from .runtime.kubernetes import order_manifests

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2


def configure_logging(verbose: bool) -> None:
    """Configure root logging based on verbosity level."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("gke_deploy").setLevel(logging.DEBUG if verbose else logging.INFO)
    for noisy_logger in ("urllib3", "git"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="gke-deploy",
        description="Build a Maven application, push its image to Artifact Registry and deploy it to GKE.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=None,
        help="Path to a YAML/JSON deploy config. Unset keys fall back to environment variables.",
    )
    common.add_argument(
        "--env-file",
        default=None,
        help="Load environment variables from this .env file (default: .env if present).",
    )
    common.add_argument(
        "--source",
        default=".",
        help="Local checkout to build (default: current directory).",
    )
    common.add_argument(
        "--sha",
        default=None,
        help="Deploy as this commit instead of the checkout's HEAD.",
    )

    run_parser = subparsers.add_parser("run", parents=[common], help="Build, push and deploy.")
    run_parser.add_argument(
        "--any-branch",
        action="store_true",
        help="Deploy even when the checkout is not on the default branch.",
    )
    run_parser.add_argument(
        "--wait",
        action="store_true",
        help="Wait for workloads to become available after apply.",
    )
    run_parser.add_argument(
        "--health-path",
        default=None,
        help="Probe this path through the Ingress after deploy (e.g. /healthz).",
    )
    run_parser.add_argument(
        "--push-retries",
        type=int,
        default=None,
        help="Retry transient registry errors up to this many push attempts (default: 1, no retry).",
    )
    run_parser.add_argument(
        "--report-dir",
        default=None,
        help="Directory for the JSON run report.",
    )

    subparsers.add_parser("plan", parents=[common], help="Show what a run would deploy without executing it.")

    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> DeployConfig:
    overrides: Dict[str, Any] = {}
    if getattr(args, "wait", False):
        overrides["wait_for_rollout"] = True
    if getattr(args, "health_path", None):
        overrides["health_check_path"] = args.health_path
    if getattr(args, "push_retries", None) is not None:
        overrides["push_retries"] = args.push_retries
    if getattr(args, "report_dir", None):
        overrides["report_dir"] = args.report_dir

    if args.config:
        return load_deploy_config(args.config, overrides=overrides)
    return DeployConfig(**overrides)


def run_command(args: argparse.Namespace, config: DeployConfig) -> int:
    runner = DeploymentRunner(config)
    report = runner.run(
        source_dir=args.source,
        commit_sha=args.sha,
        enforce_trigger=not args.any_branch,
    )

    reporter = RunReporter()
    print(reporter.format_summary(report))
    try:
        reporter.save_report(report, config.report_dir)
    except OSError as exc:
        logger.error("Could not write run report to %s: %s", config.report_dir, exc)

    return EXIT_RUN_FAILED if report.status == RunStatus.FAILED else EXIT_OK


def plan_command(args: argparse.Namespace, config: DeployConfig) -> int:
    workspace = SourceWorkspace.open(Path(args.source))
    commit_sha = args.sha or workspace.head_sha()
    image = config.get_image_reference(commit_sha)
    manifests = order_manifests([workspace.get_full_path(manifest) for manifest in config.manifests])
    pom_files = workspace.glob(config.cache_manifest_glob)

    print(f"Commit:   {commit_sha} (branch {workspace.current_branch() or 'unknown'})")
    print(f"Image:    {image.full_name}")
    print(f"Cluster:  {config.cluster_name} ({config.cluster_location_flag()} {config.cluster_zone})")
    print(f"Cache:    {CacheKey.for_manifests(pom_files).key if pom_files else 'disabled (no manifests)'}")
    print("Manifests (apply order):")
    for manifest in manifests:
        marker = "" if manifest.exists() else "  [missing]"
        print(f"  {manifest}{marker}")
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the gke-deploy CLI."""
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.verbose)

    if args.env_file:
        load_dotenv(args.env_file)
    else:
        load_dotenv(find_dotenv(usecwd=True))

    try:
        config = load_config(args)
    except (FileNotFoundError, ValueError) as exc:
        # pydantic's ValidationError is a ValueError
        logger.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG_ERROR

    missing = config.missing_fields()
    if missing:
        logger.error("Missing required settings: %s", ", ".join(missing))
        return EXIT_CONFIG_ERROR

    if args.sha and not COMMIT_SHA_PATTERN.match(args.sha.strip().lower()):
        logger.error("--sha must be a commit identifier (7-40 hex characters), got %r", args.sha)
        return EXIT_CONFIG_ERROR

    try:
        if args.command == "plan":
            return plan_command(args, config)
        return run_command(args, config)
    except (WorkspaceError, ValidationError) as exc:
        logger.error("%s", exc)
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        logger.warning("Deployment interrupted by user")
        return EXIT_RUN_FAILED


if __name__ == "__main__":
    sys.exit(main())
