"""Google Cloud authentication and GKE credential helpers."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..common.command_runner import CommandResult, CommandRunner
from ..core.config import DeployConfig

from .issues import RuntimeIssue

AUTH_PLUGIN = "gke-gcloud-auth-plugin"
_REQUIRED_KEY_FIELDS = ("client_email", "private_key")


class CredentialError(ValueError):
    """Raised when a service-account credential cannot be decoded."""


@dataclass(slots=True)
class ServiceAccountKey:
    raw: str
    client_email: str
    project_id: Optional[str]
    private_key: str


def parse_service_account_key(value: str) -> ServiceAccountKey:
    """Decode a service-account key given as JSON or base64-encoded JSON."""
    text = value.strip()
    if not text:
        raise CredentialError("credential is empty")

    if not text.startswith("{"):
        try:
            text = base64.b64decode(text, validate=True).decode("utf-8").strip()
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise CredentialError("credential is neither JSON nor base64-encoded JSON") from exc

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CredentialError(f"credential is not valid JSON: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise CredentialError("credential JSON must be an object")
    if data.get("type") != "service_account":
        raise CredentialError(f"credential type must be 'service_account', got {data.get('type')!r}")
    missing = [name for name in _REQUIRED_KEY_FIELDS if not data.get(name)]
    if missing:
        raise CredentialError(f"credential is missing fields: {', '.join(missing)}")

    return ServiceAccountKey(
        raw=text,
        client_email=data["client_email"],
        project_id=data.get("project_id"),
        private_key=data["private_key"],
    )


@dataclass(slots=True)
class AuthResult:
    issues: List[RuntimeIssue]
    account: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not any(issue.is_error() for issue in self.issues)


class GCloudAuthenticator:
    """Activate a service account for the run and hand out cluster credentials.

    gcloud state and the kubeconfig are kept in run-scoped locations exported
    through CLOUDSDK_CONFIG and KUBECONFIG, so every later command of the run
    sees them and nothing outlives the run directory.
    """

    def __init__(
        self,
        *,
        command_runner: CommandRunner,
        config: DeployConfig,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.command_runner = command_runner
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    def load_credential(self) -> tuple[Optional[ServiceAccountKey], List[RuntimeIssue]]:
        source: str
        if self.config.credentials_file:
            path = Path(self.config.credentials_file).expanduser()
            source = str(path)
            if not path.is_file():
                return None, [
                    RuntimeIssue(
                        code="GCP_CREDENTIALS_MISSING",
                        message=f"Credential file not found: {path}",
                        subject=source,
                    )
                ]
            value = path.read_text(encoding="utf-8")
        else:
            source = self.config.credentials_env
            value = os.environ.get(self.config.credentials_env, "")
            if not value.strip():
                return None, [
                    RuntimeIssue(
                        code="GCP_CREDENTIALS_MISSING",
                        message=f"Environment variable {self.config.credentials_env} is not set",
                        subject=source,
                    )
                ]

        try:
            key = parse_service_account_key(value)
        except CredentialError as exc:
            return None, [
                RuntimeIssue(
                    code="GCP_CREDENTIALS_INVALID",
                    message=f"Invalid service-account credential in {source}: {exc}",
                    subject=source,
                )
            ]

        self.command_runner.register_secrets([key.private_key, key.raw, value.strip()])
        return key, []

    def authenticate(self, *, key_path: Path, gcloud_config_dir: Path, kubeconfig_path: Path) -> AuthResult:
        key, issues = self.load_credential()
        if key is None:
            return AuthResult(issues=issues)

        if key.project_id and key.project_id != self.config.project_id:
            issues.append(
                RuntimeIssue(
                    code="GCP_PROJECT_MISMATCH",
                    message=(
                        f"Service account belongs to project {key.project_id}, "
                        f"deploying to {self.config.project_id}"
                    ),
                    severity="warning",
                    subject=key.client_email,
                )
            )

        key_path.parent.mkdir(parents=True, exist_ok=True)
        gcloud_config_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(key_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(key.raw)

        env = {
            "CLOUDSDK_CONFIG": str(gcloud_config_dir),
            "KUBECONFIG": str(kubeconfig_path),
            "CLOUDSDK_CORE_DISABLE_PROMPTS": "1",
        }

        steps = [
            (
                "GCP_AUTH_FAILED",
                [
                    "gcloud",
                    "auth",
                    "activate-service-account",
                    key.client_email,
                    f"--key-file={key_path}",
                    f"--project={self.config.project_id}",
                ],
            ),
            ("GCP_CONFIG_FAILED", ["gcloud", "config", "set", "project", self.config.project_id]),
            (
                "DOCKER_AUTH_CONFIG_FAILED",
                ["gcloud", "auth", "configure-docker", self.config.registry_host, "--quiet"],
            ),
        ]

        self.logger.info("Authenticating to Google Cloud as %s", key.client_email)
        for code, command in steps:
            result = self.command_runner.run(command, timeout=120, env=env)
            issue = _command_issue(result, code, subject=key.client_email)
            if issue:
                issues.append(issue)
                self.logger.error("%s", issue.message)
                return AuthResult(issues=issues, account=key.client_email, env=env)

        self.logger.info("Docker configured for %s", self.config.registry_host)
        return AuthResult(issues=issues, account=key.client_email, env=env)

    def get_cluster_credentials(self, env: Dict[str, str]) -> List[RuntimeIssue]:
        issues: List[RuntimeIssue] = []

        if shutil.which(AUTH_PLUGIN) is None:
            self.logger.info("Installing %s", AUTH_PLUGIN)
            result = self.command_runner.run(
                ["gcloud", "components", "install", AUTH_PLUGIN, "--quiet"],
                timeout=600,
                env=env,
            )
            issue = _command_issue(result, "GKE_AUTH_PLUGIN_INSTALL_FAILED", subject=AUTH_PLUGIN)
            if issue:
                issues.append(issue)
                return issues
        else:
            self.logger.debug("%s already installed", AUTH_PLUGIN)

        command = [
            "gcloud",
            "container",
            "clusters",
            "get-credentials",
            self.config.cluster_name,
            self.config.cluster_location_flag(),
            self.config.cluster_zone,
            f"--project={self.config.project_id}",
        ]
        self.logger.info("Fetching credentials for cluster %s (%s)", self.config.cluster_name, self.config.cluster_zone)
        result = self.command_runner.run(command, timeout=120, env=env)
        issue = _command_issue(result, "GKE_CREDENTIALS_FAILED", subject=self.config.cluster_name)
        if issue:
            issues.append(issue)
        return issues


def _command_issue(result: CommandResult, code: str, *, subject: str) -> Optional[RuntimeIssue]:
    command = " ".join(result.command[:3])
    if result.timed_out:
        return RuntimeIssue(code=code, message=f"`{command}` timed out", subject=subject)
    if not result.tool_available:
        return RuntimeIssue(
            code="GCLOUD_NOT_FOUND",
            message="gcloud CLI not available - install the Google Cloud SDK",
            subject=subject,
        )
    if not result.succeeded():
        return RuntimeIssue(code=code, message=f"`{command}` failed: {result.error_output()}", subject=subject)
    return None
