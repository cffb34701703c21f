"""
girus-access: readiness polling and local access for Girus lab workloads.

Submodules:
    - readiness: bounded readiness poller with pure state transitions
    - health: staged workload checks and application/HTTP probes
    - supervisor: port-forward strategy chain, status and stop
    - ports: port occupancy, forwarder detection and termination
    - registry: per-role PID records in the state directory
    - detach: platform-specific detached process spawning
    - progress: spinner and readiness progress bar
    - resources: node capacity/allocatable totals
    - config / constants / errors / models: shared plumbing
"""
from girus_access import constants
from girus_access.config import SupervisorConfig
from girus_access.errors import (
    AccessError,
    PartialFailure,
    ReadinessTimeout,
    StrategyExhausted,
    ToolNotFound,
)
from girus_access.health import ComponentHealthChecker
from girus_access.models import (
    AccessResult,
    ForwardMapping,
    ForwardRecord,
    Phase,
    ReadinessReport,
    ReadinessState,
    Strategy,
    WorkloadRef,
)
from girus_access.readiness import ReadinessPoller
from girus_access.supervisor import AccessSupervisor

__version__ = "0.1.0"


def default_workloads(config):
    """The Girus backend and frontend deployments in the configured namespace."""
    return [
        WorkloadRef(name=constants.BACKEND_SERVICE, namespace=config.namespace),
        WorkloadRef(name=constants.FRONTEND_SERVICE, namespace=config.namespace),
    ]


def default_mappings(config):
    """Backend (primary) and frontend port mappings."""
    return [
        ForwardMapping(
            role=constants.BACKEND_ROLE,
            local_port=constants.BACKEND_PORT,
            remote_service=constants.BACKEND_SERVICE,
            remote_namespace=config.namespace,
            remote_port=constants.BACKEND_PORT,
            health_path=constants.HEALTH_PATH,
        ),
        ForwardMapping(
            role=constants.FRONTEND_ROLE,
            local_port=constants.FRONTEND_LOCAL_PORT,
            remote_service=constants.FRONTEND_SERVICE,
            remote_namespace=config.namespace,
            remote_port=constants.FRONTEND_REMOTE_PORT,
        ),
    ]


def wait_until_ready(core_v1, workloads=None, timeout=None, config=None, listeners=()):
    """
    Poll workloads until they are Ready and the application responds.

    Args:
        core_v1: Kubernetes CoreV1Api client
        workloads: WorkloadRefs to watch (default: backend and frontend)
        timeout: Budget in seconds (default: config.readiness_timeout)
        config: SupervisorConfig (default: from environment)
        listeners: Callables subscribed to ReadinessEvents

    Returns:
        ReadinessReport

    Raises:
        ReadinessTimeout: If the budget elapses first
    """
    config = config or SupervisorConfig.from_env()
    checker = ComponentHealthChecker(core_v1, config)
    poller = ReadinessPoller(checker, interval=config.poll_interval)
    for listener in listeners:
        poller.subscribe(listener)
    return poller.wait_until_ready(
        workloads or default_workloads(config),
        timeout=config.readiness_timeout if timeout is None else timeout,
    )


def establish_access(mappings=None, config=None):
    """
    Establish local forwards for every mapping.

    Returns:
        AccessResult: Per-role records and failures (partial success is kept)

    Raises:
        ToolNotFound: If kubectl cannot be started
    """
    config = config or SupervisorConfig.from_env()
    return AccessSupervisor(config).establish(mappings or default_mappings(config))


def stop_access(roles=None, config=None):
    """
    Terminate recorded forwarders for the given roles (default: all recorded).

    Returns:
        list: Roles whose forwarder was stopped

    Raises:
        AccessError: If some forwarders could not be terminated
    """
    config = config or SupervisorConfig.from_env()
    return AccessSupervisor(config).stop(roles)


__all__ = [
    'AccessError',
    'AccessResult',
    'AccessSupervisor',
    'ComponentHealthChecker',
    'ForwardMapping',
    'ForwardRecord',
    'PartialFailure',
    'Phase',
    'ReadinessPoller',
    'ReadinessReport',
    'ReadinessState',
    'ReadinessTimeout',
    'Strategy',
    'StrategyExhausted',
    'SupervisorConfig',
    'ToolNotFound',
    'WorkloadRef',
    'default_mappings',
    'default_workloads',
    'establish_access',
    'stop_access',
    'wait_until_ready',
]
