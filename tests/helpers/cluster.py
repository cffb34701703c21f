"""
In-memory stand-ins for the Kubernetes API and for time.

FakeCoreV1 answers the handful of CoreV1Api calls the health checker makes
using real kubernetes.client model objects, so attribute access matches the
live client. FakeClock drives the readiness poller without real sleeping.
"""
from datetime import datetime, timedelta, timezone

from kubernetes import client
from kubernetes.client.rest import ApiException

from girus_access.errors import TransientProbeError
from girus_access.models import Phase

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock whose sleep() just advances time."""

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_pod(name, labels, phase="Running", ready=True, created_offset=0, terminating=False):
    """Build a V1Pod with the given phase and Ready condition."""
    conditions = [client.V1PodCondition(type="Ready", status="True" if ready else "False")]
    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            labels=dict(labels),
            creation_timestamp=BASE_TIME + timedelta(seconds=created_offset),
            deletion_timestamp=BASE_TIME if terminating else None,
        ),
        status=client.V1PodStatus(phase=phase, conditions=conditions),
    )


def make_service(name, port, node_port=None):
    return client.V1Service(
        metadata=client.V1ObjectMeta(name=name),
        spec=client.V1ServiceSpec(ports=[client.V1ServicePort(port=port, node_port=node_port)]),
    )


def _matches_selector(labels, selector):
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if (labels or {}).get(key.strip()) != value.strip():
            return False
    return True


class FakeCoreV1:
    """
    Minimal CoreV1Api replacement.

    Attributes:
        pods: namespace -> list of V1Pod
        services: (namespace, name) -> V1Service
        errors: method name -> exception raised on the next call(s)
        calls: list of (method, kwargs) for every call made
    """

    def __init__(self):
        self.pods = {}
        self.services = {}
        self.errors = {}
        self.calls = []

    def add_pod(self, namespace, pod):
        self.pods.setdefault(namespace, []).append(pod)
        return pod

    def add_service(self, namespace, service):
        self.services[(namespace, service.metadata.name)] = service
        return service

    def _record(self, method, **kwargs):
        self.calls.append((method, kwargs))
        error = self.errors.get(method)
        if error is not None:
            raise error

    def list_namespaced_pod(self, namespace, label_selector=None, _request_timeout=None):
        self._record("list_namespaced_pod", namespace=namespace, label_selector=label_selector,
                     _request_timeout=_request_timeout)
        if namespace not in self.pods:
            raise ApiException(status=404, reason="Not Found")
        items = [p for p in self.pods[namespace]
                 if not label_selector or _matches_selector(p.metadata.labels, label_selector)]
        return client.V1PodList(items=items)

    def read_namespaced_pod_status(self, name, namespace, _request_timeout=None):
        self._record("read_namespaced_pod_status", name=name, namespace=namespace,
                     _request_timeout=_request_timeout)
        for pod in self.pods.get(namespace, []):
            if pod.metadata.name == name:
                return pod
        raise ApiException(status=404, reason="Not Found")

    def read_namespaced_service(self, name, namespace, _request_timeout=None):
        self._record("read_namespaced_service", name=name, namespace=namespace,
                     _request_timeout=_request_timeout)
        try:
            return self.services[(namespace, name)]
        except KeyError:
            raise ApiException(status=404, reason="Not Found") from None

    def connect_get_namespaced_pod_exec(self, *args, **kwargs):
        self._record("connect_get_namespaced_pod_exec", args=args, **kwargs)

    def list_node(self, _request_timeout=None):
        self._record("list_node", _request_timeout=_request_timeout)
        return client.V1NodeList(items=getattr(self, "nodes", []))


class ScriptedChecker:
    """
    Health checker whose answers follow a timeline on a FakeClock.

    Args:
        clock: FakeClock
        timelines: workload name -> list of (from_time, Phase, message), sorted
        app_ready_at: Time from which probe_application succeeds (None: never)
        transient: workload name -> set of times at which check_workload raises
    """

    def __init__(self, clock, timelines, app_ready_at=None, transient=None):
        self.clock = clock
        self.timelines = timelines
        self.app_ready_at = app_ready_at
        self.transient = transient or {}
        self.checks = []
        self.app_probes = 0

    def check_workload(self, workload):
        now = self.clock.now
        self.checks.append((now, workload.name))
        if now in self.transient.get(workload.name, ()):
            raise TransientProbeError("pod lookup failed: timed out")

        phase, message = Phase.UNKNOWN, "not created"
        for start, timeline_phase, timeline_message in self.timelines.get(workload.name, []):
            if now >= start:
                phase, message = timeline_phase, timeline_message
        return phase, message

    def probe_application(self):
        self.app_probes += 1
        if self.app_ready_at is not None and self.clock.now >= self.app_ready_at:
            return True, "nodePort 30080: HTTP 200"
        return False, "nodePort 30080: connection refused"
