"""Node resource totals"""
import subprocess

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError

import girus_access.resources as resources
from girus_access.errors import ToolNotFound
from girus_access.resources import cluster_resources, node_resources, parse_describe_nodes

DESCRIBE_OUTPUT = """\
Name:               girus-control-plane
Roles:              control-plane
Labels:             kubernetes.io/hostname=girus-control-plane
Capacity:
  cpu:                8
  ephemeral-storage:  102626232Ki
  hugepages-2Mi:      0
  memory:             16314472Ki
  pods:               110
Allocatable:
  cpu:                7500m
  ephemeral-storage:  102626232Ki
  memory:             15314472Ki
  pods:               110
System Info:
  Machine ID:         0123456789
Allocated resources:
  Resource           Requests    Limits
  cpu                950m (11%)  100m (1%)


Name:               girus-worker
Capacity:
  cpu:                4
  memory:             8Gi
Allocatable:
  cpu:                4
  memory:             7Gi
"""


@pytest.mark.quick
def test_parse_describe_nodes():
    parsed = parse_describe_nodes(DESCRIBE_OUTPUT)

    assert list(parsed) == ["girus-control-plane", "girus-worker"]
    control_plane = parsed["girus-control-plane"]
    assert control_plane["capacity"] == {
        "cpu": "8", "ephemeral-storage": "102626232Ki", "memory": "16314472Ki", "pods": "110",
    }
    assert control_plane["allocatable"]["cpu"] == "7500m"
    assert parsed["girus-worker"] == {
        "capacity": {"cpu": "4", "memory": "8Gi"},
        "allocatable": {"cpu": "4", "memory": "7Gi"},
    }


@pytest.mark.quick
def test_parse_describe_nodes_without_nodes():
    assert parse_describe_nodes("No resources found\n") == {}


@pytest.mark.quick
def test_node_resources_from_api(fake_core_v1):
    fake_core_v1.nodes = [client.V1Node(
        metadata=client.V1ObjectMeta(name="girus-control-plane"),
        status=client.V1NodeStatus(capacity={"cpu": "8", "memory": "16Gi"},
                                   allocatable={"cpu": "7500m", "memory": "15Gi"}),
    )]

    assert node_resources(fake_core_v1) == {
        "girus-control-plane": {
            "capacity": {"cpu": "8", "memory": "16Gi"},
            "allocatable": {"cpu": "7500m", "memory": "15Gi"},
        },
    }


@pytest.mark.quick
def test_cluster_resources_falls_back_to_kubectl(fake_core_v1, supervisor_config, monkeypatch):
    fake_core_v1.errors["list_node"] = ApiException(status=403, reason="Forbidden")
    commands = []

    def fake_run(args, description, timeout=None):
        commands.append(args)
        return subprocess.CompletedProcess(args, 0, stdout=DESCRIBE_OUTPUT, stderr="")

    monkeypatch.setattr(resources, "run_with_progress", fake_run)

    result = cluster_resources(fake_core_v1, supervisor_config)

    assert commands == [["kubectl", "describe", "node"]]
    assert result["girus-worker"]["capacity"]["memory"] == "8Gi"


@pytest.mark.quick
def test_describe_failure_yields_no_resources(supervisor_config, monkeypatch):
    monkeypatch.setattr(resources, "run_with_progress", lambda args, description, timeout=None:
                        subprocess.CompletedProcess(args, 1, stdout="", stderr="forbidden"))

    assert resources.describe_node_resources(supervisor_config) == {}


@pytest.mark.quick
def test_unreachable_api_falls_back_to_kubectl(fake_core_v1, supervisor_config, monkeypatch):
    fake_core_v1.errors["list_node"] = MaxRetryError(None, "https://127.0.0.1:6443/api/v1/nodes", "refused")
    monkeypatch.setattr(resources, "run_with_progress", lambda args, description, timeout=None:
                        subprocess.CompletedProcess(args, 0, stdout=DESCRIBE_OUTPUT, stderr=""))

    result = cluster_resources(fake_core_v1, supervisor_config)

    assert set(result) == {"girus-control-plane", "girus-worker"}


@pytest.mark.quick
def test_describe_timeout_yields_no_resources(supervisor_config, monkeypatch):
    def slow_run(args, description, timeout=None):
        raise subprocess.TimeoutExpired(args, timeout)

    monkeypatch.setattr(resources, "run_with_progress", slow_run)

    assert resources.describe_node_resources(supervisor_config, timeout=1) == {}


@pytest.mark.quick
def test_describe_without_kubectl_yields_no_resources(supervisor_config, monkeypatch):
    def missing(args, description, timeout=None):
        raise ToolNotFound(args[0], "No such file or directory")

    monkeypatch.setattr(resources, "run_with_progress", missing)

    assert resources.describe_node_resources(supervisor_config) == {}
