"""Ingress address discovery and endpoint health checks."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import requests
from requests import RequestException

from ..common.command_runner import CommandRunner

from .issues import RuntimeIssue


@dataclass(slots=True)
class IngressEndpoint:
    name: str
    address: str
    host: Optional[str]
    tls: bool

    @property
    def base_url(self) -> str:
        protocol = "https" if self.tls else "http"
        return f"{protocol}://{self.host or self.address}"


@dataclass(slots=True)
class RuntimeCheckResult:
    """Result of performing runtime ingress checks."""

    issues: List[RuntimeIssue]
    endpoint: Optional[IngressEndpoint] = None
    checked_url: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def success(self) -> bool:
        return not any(issue.is_error() for issue in self.issues)


def parse_ingress(data: Dict[str, object]) -> Optional[IngressEndpoint]:
    """Build an endpoint from `kubectl get ingress -o json`; None until the load balancer has an address."""
    status_entries = ((data.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []  # type: ignore[union-attr]
    address = None
    for entry in status_entries:
        if isinstance(entry, dict):
            address = entry.get("ip") or entry.get("hostname")
            if address:
                break
    if not address:
        return None

    spec = data.get("spec") or {}
    host = None
    for rule in spec.get("rules") or []:  # type: ignore[union-attr]
        if isinstance(rule, dict) and rule.get("host"):
            host = rule["host"]
            break

    annotations = (data.get("metadata") or {}).get("annotations") or {}  # type: ignore[union-attr]
    tls = bool(spec.get("tls")) or any(  # type: ignore[union-attr]
        key in annotations
        for key in ("networking.gke.io/managed-certificates", "ingress.gcp.kubernetes.io/pre-shared-cert")
    )
    name = (data.get("metadata") or {}).get("name", "unknown")  # type: ignore[union-attr]
    return IngressEndpoint(name=str(name), address=str(address), host=host, tls=tls)


class IngressRuntimeChecker:
    """Wait for an Ingress to receive an address and probe an HTTP path behind it."""

    def __init__(
        self,
        command_runner: CommandRunner,
        env: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.command_runner = command_runner
        self.env = env or {}
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self._clock = clock

    def check(
        self,
        *,
        ingress_name: str,
        path: str,
        namespace: Optional[str] = None,
        address_timeout: int = 600,
        poll_interval: int = 10,
        retries: int = 5,
        verify_tls: bool = True,
    ) -> RuntimeCheckResult:
        endpoint = self.wait_for_address(
            ingress_name=ingress_name,
            namespace=namespace,
            timeout=address_timeout,
            poll_interval=poll_interval,
        )
        if endpoint is None:
            return RuntimeCheckResult(
                issues=[
                    RuntimeIssue(
                        code="NO_INGRESS_ADDRESS",
                        message=f"Ingress {ingress_name} got no address within {address_timeout}s",
                        subject=ingress_name,
                    )
                ]
            )

        if not path.startswith("/"):
            path = "/" + path
        full_url = f"{endpoint.base_url}{path}"
        issues, status_code = self._check_endpoint_health(full_url, retries=retries, verify_tls=verify_tls)
        return RuntimeCheckResult(issues=issues, endpoint=endpoint, checked_url=full_url, status_code=status_code)

    def wait_for_address(
        self,
        *,
        ingress_name: str,
        namespace: Optional[str],
        timeout: int,
        poll_interval: int,
    ) -> Optional[IngressEndpoint]:
        deadline = self._clock() + timeout
        while True:
            endpoint = self._get_ingress(ingress_name, namespace)
            if endpoint is not None:
                self.logger.info("Ingress '%s' has address %s", endpoint.name, endpoint.address)
                return endpoint
            if self._clock() >= deadline:
                return None
            self.logger.info("Waiting for ingress %s to get an address...", ingress_name)
            self._sleep(poll_interval)

    def _get_ingress(self, ingress_name: str, namespace: Optional[str]) -> Optional[IngressEndpoint]:
        command = ["kubectl", "get", "ingress", ingress_name, "-o", "json"]
        if namespace:
            command.extend(["-n", namespace])
        result = self.command_runner.run(command, timeout=30, env=self.env)

        if result.timed_out:
            self.logger.warning("Timeout while getting ingress from cluster")
            return None

        if not result.succeeded():
            self.logger.warning("Failed to get ingress %s: %s", ingress_name, result.error_output())
            return None

        try:
            data = json.loads(result.stdout) if result.stdout else {}
        except json.JSONDecodeError as exc:
            self.logger.warning("Failed to parse kubectl ingress output: %s", exc)
            return None

        return parse_ingress(data or {})

    def _check_endpoint_health(
        self,
        full_url: str,
        *,
        retries: int,
        verify_tls: bool,
    ) -> tuple[List[RuntimeIssue], Optional[int]]:
        request_timeout = 30
        self.logger.info("Testing endpoint: %s", full_url)

        last_error = None
        status_code = None
        for attempt in range(retries):
            if attempt > 0:
                wait_time = 2 ** attempt
                self.logger.info("Retry %s/%s after %ss...", attempt + 1, retries, wait_time)
                self._sleep(wait_time)

            try:
                response = requests.get(full_url, timeout=request_timeout, verify=verify_tls)
            except RequestException as exc:
                last_error = str(exc)
                self.logger.warning("Attempt %s: Connection failed - %s", attempt + 1, last_error)
                continue

            status_code = response.status_code
            if 200 <= response.status_code < 300:
                self.logger.info("Endpoint %s is healthy (status %s)", full_url, response.status_code)
                return [], status_code
            last_error = f"Endpoint returned non-2xx status: {response.status_code}"
            self.logger.warning("Attempt %s: %s", attempt + 1, last_error)

        return [
            RuntimeIssue(
                code="ENDPOINT_HEALTH_CHECK_FAILED",
                message=f"Endpoint {full_url} not healthy after {retries} attempts: {last_error}",
                subject=full_url,
            )
        ], status_code
