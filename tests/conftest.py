"""Pytest fixtures for the girus-access test suite"""
import os
import logging

import pytest
from kubernetes import client, config

from girus_access.config import SupervisorConfig
from girus_access.log import SafeUnicodeFilter
from girus_access.registry import ProcessRegistry
from girus_access.supervisor import AccessSupervisor
from tests.helpers import FakeClock, FakeCoreV1, FakeDetacher, FakeHost, FakePortProbe

logger = logging.getLogger(__name__)


@pytest.fixture(scope="session", autouse=True)
def configure_safe_logging():
    """Install the surrogate-sanitizing filter on the root logger for the session."""
    safe_filter = SafeUnicodeFilter()
    logging.root.addFilter(safe_filter)
    yield
    logging.root.removeFilter(safe_filter)


# =============================================================================
# CONFIGURATION
# =============================================================================

@pytest.fixture
def state_dir(tmp_path):
    """Per-test state directory (PID records, forwarder logs)"""
    return tmp_path / "girus-state"


@pytest.fixture
def supervisor_config(state_dir):
    """SupervisorConfig isolated from the user's environment and ~/.girus"""
    return SupervisorConfig.from_env(environ={}, state_dir=state_dir, namespace="girus")


@pytest.fixture
def registry(supervisor_config):
    return ProcessRegistry(supervisor_config.state_dir)


# =============================================================================
# FAKES
# =============================================================================

@pytest.fixture
def clock():
    """Fake monotonic clock; sleep() advances it"""
    return FakeClock()


@pytest.fixture
def fake_core_v1():
    """In-memory CoreV1Api"""
    return FakeCoreV1()


@pytest.fixture
def host():
    """Simulated process table shared by the fake port probe, detacher and HTTP probe"""
    return FakeHost()


@pytest.fixture
def supervisor(supervisor_config, registry, host):
    """AccessSupervisor wired to the simulated host; sleeps are recorded, not taken"""
    return AccessSupervisor(
        supervisor_config,
        registry=registry,
        port_probe=FakePortProbe(host),
        detacher=FakeDetacher(host),
        probe=host.probe,
        sleep=host.sleep,
    )


# =============================================================================
# LIVE CLUSTER
# =============================================================================

def _live_cluster_requested(pytest_config):
    return bool(pytest_config.getoption("--kubeconfig") or os.getenv("GIRUS_LIVE_CLUSTER"))


@pytest.fixture(scope="session")
def k8s_config(request):
    """Load Kubernetes configuration once per test session"""
    config.load_kube_config(config_file=request.config.getoption("--kubeconfig"))


@pytest.fixture(scope="session")
def core_v1(k8s_config):
    """Kubernetes CoreV1Api client"""
    return client.CoreV1Api()


@pytest.fixture(scope="session")
def live_namespace(request):
    """Namespace holding the Girus lab workloads on the live cluster"""
    return request.config.getoption("--namespace") or os.getenv("GIRUS_NAMESPACE", "girus")


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--kubeconfig",
        action="store",
        default=None,
        help="Kubeconfig for live cluster tests (also enabled by GIRUS_LIVE_CLUSTER=1)",
    )
    parser.addoption(
        "--namespace",
        action="store",
        default=None,
        help="Namespace of the Girus workloads for live cluster tests (default: girus)",
    )


def pytest_configure(config):
    """Configure pytest with custom settings"""
    # Register custom markers
    config.addinivalue_line("markers", "quick: Quick tests that run in <5 seconds")
    config.addinivalue_line("markers", "process: Tests that start real local processes")
    config.addinivalue_line("markers", "cluster: Tests that need a live Kubernetes cluster")


def pytest_collection_modifyitems(config, items):
    """Mark tests by location and skip live cluster tests unless requested"""
    skip_cluster = pytest.mark.skip(reason="live cluster not requested (use --kubeconfig or GIRUS_LIVE_CLUSTER=1)")
    live = _live_cluster_requested(config)

    for item in items:
        if "tests/live" in str(item.fspath).replace(os.sep, "/"):
            item.add_marker(pytest.mark.cluster)
        if "cluster" in item.keywords and not live:
            item.add_marker(skip_cluster)
