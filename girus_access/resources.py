"""
Node resource totals for status output.

The structured Kubernetes API is the primary source. Parsing the text of
`kubectl describe node` is kept only as a fallback for environments where the
node list cannot be read through the API.
"""
import re
import logging
import subprocess

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from girus_access.errors import ToolNotFound
from girus_access.kubectl import base_args
from girus_access.progress import run_with_progress

logger = logging.getLogger(__name__)

_SECTION_HEADERS = ("Capacity:", "Allocatable:")
_RESOURCE_LINE = re.compile(r"^\s+(cpu|memory|pods|ephemeral-storage):\s+(\S+)\s*$")


def node_resources(core_v1, timeout=5):
    """
    Get capacity and allocatable resources of every node.

    Args:
        core_v1: Kubernetes CoreV1Api client
        timeout: API request timeout in seconds (default: 5)

    Returns:
        dict: node name -> {'capacity': {...}, 'allocatable': {...}}

    Raises:
        ApiException: If the node list cannot be read
    """
    nodes = core_v1.list_node(_request_timeout=timeout)
    resources = {}
    for node in nodes.items:
        status = node.status
        resources[node.metadata.name] = {
            "capacity": dict((status.capacity if status else None) or {}),
            "allocatable": dict((status.allocatable if status else None) or {}),
        }
    return resources


def parse_describe_nodes(text):
    """
    Extract Capacity/Allocatable sections from `kubectl describe node` output.

    Returns:
        dict: node name -> {'capacity': {...}, 'allocatable': {...}}
    """
    resources = {}
    node = None
    section = None

    for line in text.splitlines():
        if line.startswith("Name:"):
            node = line.split(":", 1)[1].strip()
            resources[node] = {"capacity": {}, "allocatable": {}}
            section = None
            continue
        if node is None:
            continue
        stripped = line.strip()
        if stripped in _SECTION_HEADERS and not line.startswith(" "):
            section = stripped[:-1].lower()
            continue
        if section is None:
            continue
        match = _RESOURCE_LINE.match(line)
        if match:
            resources[node][section][match.group(1)] = match.group(2)
        elif line and not line.startswith(" "):
            section = None

    return resources


def describe_node_resources(config, timeout=30):
    """
    Fallback: node resources scraped from `kubectl describe node`.

    Returns:
        dict: As parse_describe_nodes(); empty if kubectl fails, is missing or times out
    """
    try:
        result = run_with_progress(base_args(config) + ["describe", "node"], "Describing nodes...",
                                   timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"⚠ kubectl describe node timed out after {timeout}s")
        return {}
    except ToolNotFound as e:
        logger.warning(f"⚠ {e}")
        return {}
    if result.returncode != 0:
        logger.warning(f"⚠ kubectl describe node failed: {result.stderr.strip()}")
        return {}
    return parse_describe_nodes(result.stdout)


def cluster_resources(core_v1, config):
    """Node resources from the API, falling back to `kubectl describe node`."""
    try:
        return node_resources(core_v1, timeout=config.api_timeout * 2)
    except ApiException as e:
        logger.info(f"   Node list unavailable through the API ({e.reason}), using kubectl describe")
    except HTTPError as e:
        logger.info(f"   API server unreachable ({e}), using kubectl describe")
    return describe_node_resources(config)
