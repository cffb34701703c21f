"""
Component health checks against the Kubernetes API and HTTP endpoints.

Workload checks are staged (pod exists -> pod phase -> Ready condition) so
that "not scheduled yet" is never confused with "crashing". The application
probe hits the backend health endpoint through its NodePort, or runs wget
inside the pod when the service is not exposed on a node port.

Every call carries an explicit timeout so a single iteration of the readiness
loop stays bounded.
"""
import logging
from typing import Optional

import requests
import urllib3
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream

from girus_access.errors import TransientProbeError, WorkloadNotFound
from girus_access.models import Phase, WorkloadRef

logger = logging.getLogger(__name__)

# Pod phases reported by the API server mapped to readiness phases.
# Running is refined further by the Ready condition.
_POD_PHASES = {
    "Pending": Phase.PENDING,
    "Running": Phase.RUNNING,
    "Failed": Phase.FAILED,
}

_TRANSIENT_ERRORS = (urllib3.exceptions.HTTPError, OSError)


def http_probe(url, acceptable=(200,), timeout=2.0, session=None):
    """
    Probe an HTTP endpoint once.

    Redirects are not followed: a 301/302 from the forwarded endpoint is itself
    evidence that the tunnel proxies traffic.

    Args:
        url: URL to GET
        acceptable: Status codes that count as success (default: (200,))
        timeout: Request timeout in seconds (default: 2.0)
        session: Optional requests.Session

    Returns:
        tuple: (success: bool, message: str)
    """
    getter = session.get if session is not None else requests.get
    try:
        response = getter(url, timeout=timeout, allow_redirects=False)
    except requests.exceptions.Timeout:
        return False, f"timed out after {timeout:g}s"
    except requests.exceptions.ConnectionError:
        return False, "connection refused"
    except requests.exceptions.RequestException as e:
        return False, f"request failed: {e}"

    if response.status_code in acceptable:
        return True, f"HTTP {response.status_code}"
    return False, f"HTTP {response.status_code}"


class ComponentHealthChecker:
    """Query workload readiness and probe the application health endpoint."""

    def __init__(self, core_v1, config, session=None):
        """
        Args:
            core_v1: Kubernetes CoreV1Api client
            config: SupervisorConfig
            session: Optional requests.Session used for HTTP probes
        """
        self.core_v1 = core_v1
        self.config = config
        self.session = session

    # =========================================================================
    # ORCHESTRATION QUERIES
    # =========================================================================

    def find_pod(self, workload) -> str:
        """
        Look up the pod backing a workload by label selector.

        Terminating pods are ignored; with several candidates the newest wins.

        Raises:
            WorkloadNotFound: If no pod matches yet
            TransientProbeError: If the API call fails
        """
        try:
            pods = self.core_v1.list_namespaced_pod(
                namespace=workload.namespace,
                label_selector=workload.label_selector,
                _request_timeout=self.config.api_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                raise WorkloadNotFound(f"namespace {workload.namespace} not found") from e
            raise TransientProbeError(f"pod lookup failed: {e.reason}") from e
        except _TRANSIENT_ERRORS as e:
            raise TransientProbeError(f"pod lookup failed: {e}") from e

        live = [p for p in pods.items if not p.metadata.deletion_timestamp]
        if not live:
            raise WorkloadNotFound(f"no pod matches {workload.label_selector}")

        def created(pod):
            ts = pod.metadata.creation_timestamp
            return ts.timestamp() if ts else 0.0

        return max(live, key=created).metadata.name

    def _read_pod(self, namespace, pod_name):
        try:
            return self.core_v1.read_namespaced_pod_status(
                name=pod_name,
                namespace=namespace,
                _request_timeout=self.config.api_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                raise WorkloadNotFound(f"pod {pod_name} disappeared") from e
            raise TransientProbeError(f"pod status failed: {e.reason}") from e
        except _TRANSIENT_ERRORS as e:
            raise TransientProbeError(f"pod status failed: {e}") from e

    def pod_phase(self, namespace, pod_name) -> str:
        """Return the pod phase (Pending, Running, Succeeded, Failed, Unknown)."""
        pod = self._read_pod(namespace, pod_name)
        return (pod.status.phase if pod.status else None) or "Unknown"

    def pod_ready(self, namespace, pod_name) -> bool:
        """True if the pod's Ready condition is True."""
        pod = self._read_pod(namespace, pod_name)
        conditions = (pod.status.conditions if pod.status else None) or []
        return any(c.type == "Ready" and c.status == "True" for c in conditions)

    def check_workload(self, workload):
        """
        Staged readiness check of one workload.

        Stops at the first failing stage: existence, then phase, then the Ready
        condition.

        Returns:
            tuple: (Phase, message)

        Raises:
            TransientProbeError: If the API could not be queried
        """
        try:
            pod_name = self.find_pod(workload)
        except WorkloadNotFound:
            return Phase.UNKNOWN, "not created"

        try:
            phase = self.pod_phase(workload.namespace, pod_name)
            if phase != "Running":
                return _POD_PHASES.get(phase, Phase.UNKNOWN), f"phase={phase}"

            if not self.pod_ready(workload.namespace, pod_name):
                return Phase.RUNNING, "containers initializing"
        except WorkloadNotFound:
            return Phase.UNKNOWN, "not created"

        return Phase.READY, "ready"

    def service_node_port(self, namespace, service) -> Optional[int]:
        """NodePort of the service's first port, or None if it has none."""
        try:
            svc = self.core_v1.read_namespaced_service(
                name=service,
                namespace=namespace,
                _request_timeout=self.config.api_timeout,
            )
        except (ApiException, *_TRANSIENT_ERRORS) as e:
            logger.debug(f"Service {namespace}/{service} lookup failed: {e}")
            return None

        ports = (svc.spec.ports if svc.spec else None) or []
        if not ports or not ports[0].node_port:
            return None
        return int(ports[0].node_port)

    def exec_in_workload(self, workload, command):
        """
        Run a command inside the workload's pod.

        Returns:
            tuple: (success: bool, message: str); success means exit code 0
        """
        try:
            pod_name = self.find_pod(workload)
        except (WorkloadNotFound, TransientProbeError) as e:
            return False, str(e)

        try:
            resp = stream(
                self.core_v1.connect_get_namespaced_pod_exec,
                pod_name,
                workload.namespace,
                command=list(command),
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
                _request_timeout=self.config.api_timeout,
            )
            try:
                resp.run_forever(timeout=self.config.probe_timeout + 1)
                code = resp.returncode
            finally:
                resp.close()
        except Exception as e:
            return False, f"exec failed: {e}"

        if code == 0:
            return True, "exit 0"
        return False, f"exit {code}"

    # =========================================================================
    # APPLICATION PROBE
    # =========================================================================

    def probe_application(self):
        """
        Probe the application health endpoint.

        Uses the service NodePort when one is exposed, otherwise wget from
        inside the health workload's pod.

        Returns:
            tuple: (responsive: bool, message: str)
        """
        cfg = self.config
        node_port = self.service_node_port(cfg.namespace, cfg.health_service)
        if node_port:
            ok, message = http_probe(
                f"http://localhost:{node_port}{cfg.health_path}",
                acceptable=(200,),
                timeout=cfg.probe_timeout,
                session=self.session,
            )
            return ok, f"nodePort {node_port}: {message}"

        workload = WorkloadRef(name=cfg.health_service, namespace=cfg.namespace)
        ok, message = self.exec_in_workload(workload, [
            "wget", "-q", "-O-", "-T", str(max(1, int(cfg.probe_timeout))),
            f"http://localhost:{cfg.health_port}{cfg.health_path}",
        ])
        return ok, f"in-cluster: {message}"
