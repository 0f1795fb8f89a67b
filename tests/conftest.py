"""Shared fixtures: a scripted command runner and a throwaway git checkout."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import pytest
from git import Actor, Repo

from gke_deploy.common.command_runner import CommandResult, CommandRunner
from gke_deploy.core.config import DeployConfig

Response = Union[CommandResult, Callable[[Sequence[str]], CommandResult]]


def make_result(
    command: Sequence[str] = (),
    *,
    return_code: Optional[int] = 0,
    stdout: str = "",
    stderr: str = "",
    timed_out: bool = False,
    tool_available: bool = True,
) -> CommandResult:
    return CommandResult(
        command=list(command),
        return_code=return_code,
        stdout=stdout,
        stderr=stderr,
        duration=0.1,
        timed_out=timed_out,
        tool_available=tool_available,
    )


class FakeCommandRunner(CommandRunner):
    """Records every command and answers from scripted responses keyed by command prefix."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: List[Dict[str, object]] = []
        self._responses: List[tuple[tuple[str, ...], List[Response]]] = []

    def on(self, *prefix: str, responses: Optional[List[Response]] = None, **result_kwargs) -> None:
        """Answer commands starting with prefix; several responses are consumed in order, the last one repeats."""
        if responses is None:
            responses = [make_result(prefix, **result_kwargs)]
        self._responses.insert(0, (tuple(prefix), list(responses)))

    def run(self, command, *, cwd=None, timeout=None, env=None) -> CommandResult:
        self.calls.append({"command": list(command), "cwd": cwd, "env": dict(env or {})})
        for prefix, responses in self._responses:
            if tuple(command[: len(prefix)]) == prefix:
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if callable(response):
                    return response(command)
                return response
        return make_result(command)

    def commands(self, *prefix: str) -> List[List[str]]:
        return [call["command"] for call in self.calls if tuple(call["command"][: len(prefix)]) == prefix]


@pytest.fixture
def fake_runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def deploy_env(monkeypatch):
    values = {
        "PROJECT_ID": "splendid-map-423700-r8",
        "REGION": "us-east1",
        "REPO_NAME": "obiwan",
        "IMAGE_NAME": "java-app",
        "CLUSTER_NAME": "autopilot-cluster-1",
        "CLUSTER_ZONE": "us-east1",
    }
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    return values


@pytest.fixture
def deploy_config(deploy_env, tmp_path) -> DeployConfig:
    return DeployConfig(
        cache_dir=str(tmp_path / "cache"),
        cache_path=str(tmp_path / "m2"),
        work_dir=str(tmp_path / "work"),
        report_dir=str(tmp_path / "reports"),
    )


DEPLOYMENT_YAML = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: java-app
spec:
  replicas: 2
  selector:
    matchLabels:
      app: java-app
  template:
    metadata:
      labels:
        app: java-app
    spec:
      containers:
        - name: java-app
          image: us-east1-docker.pkg.dev/splendid-map-423700-r8/obiwan/java-app:latest
          ports:
            - containerPort: 8080
        - name: proxy
          image: nginx:1.25
"""

SERVICE_YAML = """\
apiVersion: v1
kind: Service
metadata:
  name: java-app
spec:
  selector:
    app: java-app
  ports:
    - port: 80
      targetPort: 8080
"""

INGRESS_YAML = """\
apiVersion: networking.k8s.io/v1
kind: Ingress
metadata:
  name: java-app
  annotations:
    networking.gke.io/managed-certificates: java-app-cert
spec:
  rules:
    - host: app.example.com
      http:
        paths:
          - path: /
            pathType: Prefix
            backend:
              service:
                name: java-app
                port:
                  number: 80
"""


def write_manifests(root: Path) -> Dict[str, Path]:
    manifest_dir = root / "manifest"
    manifest_dir.mkdir(parents=True, exist_ok=True)
    paths = {
        "deployment": manifest_dir / "deployment.yaml",
        "service": manifest_dir / "service.yaml",
        "ingress": manifest_dir / "ingress.yaml",
    }
    paths["deployment"].write_text(DEPLOYMENT_YAML, encoding="utf-8")
    paths["service"].write_text(SERVICE_YAML, encoding="utf-8")
    paths["ingress"].write_text(INGRESS_YAML, encoding="utf-8")
    return paths


@pytest.fixture
def java_repo(tmp_path) -> Repo:
    """A committed Maven project with a Dockerfile and manifests, checked out on main."""
    root = tmp_path / "app"
    root.mkdir()
    (root / "pom.xml").write_text("<project><artifactId>java-app</artifactId></project>\n", encoding="utf-8")
    (root / "Dockerfile").write_text("FROM eclipse-temurin:11-jre\nCOPY target/*.jar /app.jar\n", encoding="utf-8")
    write_manifests(root)

    repo = Repo.init(str(root))
    repo.index.add(["pom.xml", "Dockerfile", "manifest/deployment.yaml", "manifest/service.yaml", "manifest/ingress.yaml"])
    author = Actor("Test", "test@example.com")
    repo.index.commit("initial", author=author, committer=author)
    repo.git.checkout("-B", "main")
    return repo
