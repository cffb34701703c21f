"""Wait for Girus lab workloads and manage local access to them.

Commands:
    wait    - poll backend/frontend until ready and the API responds
    forward - establish local port-forwards (reusing healthy ones)
    up      - wait, then forward
    stop    - terminate recorded forwarders
    status  - show forwarder health and node resources
"""
import argparse
import logging
import sys

from kubernetes import client
from kubernetes import config as kube_config
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import HTTPError

from girus_access import default_mappings, default_workloads
from girus_access.config import SupervisorConfig
from girus_access.errors import AccessError
from girus_access.health import ComponentHealthChecker
from girus_access.log import configure_logging
from girus_access.progress import ReadinessProgress, Spinner
from girus_access.readiness import ReadinessPoller
from girus_access.resources import cluster_resources
from girus_access.supervisor import AccessSupervisor

logger = logging.getLogger(__name__)


def get_args(argv=None) -> argparse.Namespace:
    """Get command line arguments."""
    parser = argparse.ArgumentParser(
        prog="girus-access",
        description=(__doc__ or "").split("\n", maxsplit=1)[0],
    )
    parser.add_argument("-n", "--namespace", help="Namespace of the lab workloads (default: girus).")
    parser.add_argument("--context", help="Kubeconfig context to use.")
    parser.add_argument("--kubeconfig", help="Path to a kubeconfig file.")
    parser.add_argument("--state-dir", help="Directory for PID records and forwarder logs.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    wait = subparsers.add_parser("wait", help="Wait until the lab workloads are ready.")
    wait.add_argument("-t", "--timeout", type=float, help="Readiness budget in seconds (default: 300).")

    forward = subparsers.add_parser("forward", help="Establish local port-forwards.")
    forward.add_argument("--role", action="append", dest="roles",
                         help="Only forward this role (repeatable).")

    up = subparsers.add_parser("up", help="Wait for readiness, then establish port-forwards.")
    up.add_argument("-t", "--timeout", type=float, help="Readiness budget in seconds (default: 300).")

    stop = subparsers.add_parser("stop", help="Terminate recorded port-forwards.")
    stop.add_argument("roles", nargs="*", help="Roles to stop (default: all recorded).")

    status = subparsers.add_parser("status", help="Show port-forward health.")
    status.add_argument("--resources", action="store_true", help="Also show node capacity.")

    return parser.parse_args(argv)


def build_config(args) -> SupervisorConfig:
    """Resolve configuration: environment first, command line flags win."""
    return SupervisorConfig.from_env(
        namespace=args.namespace,
        kube_context=args.context,
        state_dir=args.state_dir,
        readiness_timeout=getattr(args, "timeout", None),
    )


def load_core_v1(args):
    """Load kubeconfig (or in-cluster config) and return a CoreV1Api client."""
    try:
        kube_config.load_kube_config(config_file=args.kubeconfig, context=args.context)
    except ConfigException:
        if args.kubeconfig:
            raise
        logger.debug("No usable kubeconfig, trying in-cluster configuration")
        kube_config.load_incluster_config()
    return client.CoreV1Api()


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_wait(args, config) -> int:
    logger.info(f"⏳ Waiting for Girus workloads in namespace '{config.namespace}' "
                f"(timeout: {config.readiness_timeout:g}s)")
    poller = ReadinessPoller(ComponentHealthChecker(load_core_v1(args), config), interval=config.poll_interval)
    # log lines go to stdout, so the spinner shares it and pauses for them
    spinner = Spinner("Waiting for workloads...", stream=sys.stdout)
    poller.subscribe(ReadinessProgress(config.readiness_timeout, spinner=spinner))

    with spinner:
        report = poller.wait_until_ready(default_workloads(config), timeout=config.readiness_timeout)

    logger.info(f"✓ All workloads ready and application responding ({report.elapsed:.1f}s)")
    return 0


def _selected_mappings(config, roles):
    mappings = default_mappings(config)
    if not roles:
        return mappings
    unknown = set(roles) - {m.role for m in mappings}
    if unknown:
        raise ValueError(f"unknown role(s): {', '.join(sorted(unknown))}")
    return [m for m in mappings if m.role in roles]


def cmd_forward(args, config) -> int:
    mappings = _selected_mappings(config, getattr(args, "roles", None))
    result = AccessSupervisor(config).establish(mappings)

    for role, url in sorted(result.urls().items()):
        record = result.records[role]
        print(f"{role}: {url} (PID {record.pid}, {record.strategy.value})")
    for role, error in sorted(result.failures.items()):
        logger.error(f"✗ {role}: {error}")

    return 0 if result.ok else 1


def cmd_up(args, config) -> int:
    rc = cmd_wait(args, config)
    if rc != 0:
        return rc
    return cmd_forward(args, config)


def cmd_stop(args, config) -> int:
    stopped = AccessSupervisor(config).stop(args.roles or None)
    if not stopped:
        logger.info("No running forwarders were stopped")
    return 0


def cmd_status(args, config) -> int:
    supervisor = AccessSupervisor(config)
    status = supervisor.access_status(default_mappings(config))

    all_ok = True
    for role, (ok, message) in status.items():
        all_ok = all_ok and ok
        recorded = supervisor.registry.read(role)
        recorded_text = f", recorded PID {recorded}" if recorded else ""
        print(f"{'✓' if ok else '✗'} {role}: {message}{recorded_text}")

    if args.resources:
        for node, values in cluster_resources(load_core_v1(args), config).items():
            capacity = values["capacity"]
            allocatable = values["allocatable"]
            print(f"{node}: cpu {capacity.get('cpu', '?')} (allocatable {allocatable.get('cpu', '?')}), "
                  f"memory {capacity.get('memory', '?')} (allocatable {allocatable.get('memory', '?')})")

    return 0 if all_ok else 1


COMMANDS = {
    "wait": cmd_wait,
    "forward": cmd_forward,
    "up": cmd_up,
    "stop": cmd_stop,
    "status": cmd_status,
}


def main(argv=None) -> int:
    args = get_args(argv)
    configure_logging(verbose=args.verbose)

    try:
        config = build_config(args)
        return COMMANDS[args.command](args, config)
    except (AccessError, ValueError, ConfigException, HTTPError) as e:
        logger.error(f"✗ {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("⚠ Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
