"""
Access supervisor: local port-forwards with a fallback strategy chain.

For every ForwardMapping the supervisor:
    1. reuses an already running forwarder for the port if it answers the
       health probe (no duplicate process is started);
    2. otherwise frees the local port (best-effort) and walks the strategy
       chain SERVICE -> SCRIPTED -> FOREGROUND -> DEPLOYMENT, strictly one
       after the other, until a forward passes HTTP verification;
    3. records the verified forwarder PID in the process registry.

A mapping whose chain is exhausted is reported in AccessResult.failures and
its processes are terminated; other mappings are still attempted and
successful ones are kept. A missing kubectl aborts immediately.
"""
import time
import logging
from dataclasses import dataclass

import psutil

from girus_access import constants
from girus_access.detach import DetachMode, default_detacher
from girus_access.errors import AccessError, StrategyExhausted
from girus_access.health import http_probe
from girus_access.kubectl import port_forward_args
from girus_access.models import STRATEGY_CHAIN, AccessResult, ForwardRecord, Strategy
from girus_access.ports import PortProbe
from girus_access.registry import ProcessRegistry, validate_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbePolicy:
    """How long to let a forwarder settle and how often to probe it."""
    settle: float
    attempts: int
    interval: float


DEFAULT_POLICIES = {
    Strategy(name): ProbePolicy(*values) for name, values in constants.STRATEGY_POLICIES.items()
}

_DETACH_MODES = {
    Strategy.SERVICE: DetachMode.SESSION,
    Strategy.SCRIPTED: DetachMode.DAEMON,
    Strategy.FOREGROUND: DetachMode.INHERIT,
    Strategy.DEPLOYMENT: DetachMode.SESSION,
}


class AccessSupervisor:
    """Establish, check and stop local access to lab services."""

    def __init__(self, config, registry=None, port_probe=None, detacher=None,
                 probe=None, sleep=time.sleep, policies=None):
        """
        Args:
            config: SupervisorConfig
            registry: ProcessRegistry (default: one in config.state_dir)
            port_probe: PortProbe (default: PortProbe())
            detacher: Detacher (default: platform detacher)
            probe: Callable (url, acceptable, timeout) -> (ok, message)
            sleep: Sleep function used for settle/retry delays
            policies: Strategy -> ProbePolicy overrides
        """
        self.config = config
        self.registry = registry or ProcessRegistry(config.state_dir)
        self.port_probe = port_probe or PortProbe(terminate_timeout=config.terminate_timeout)
        self.detacher = detacher or default_detacher()
        self.probe = probe or _default_probe
        self.sleep = sleep
        self.policies = dict(DEFAULT_POLICIES)
        if policies:
            self.policies.update(policies)

    # =========================================================================
    # VERIFICATION
    # =========================================================================

    def _url(self, mapping):
        return f"http://127.0.0.1:{mapping.local_port}{mapping.health_path}"

    def verify(self, mapping):
        """Probe a mapping's local endpoint once. Returns (ok, message)."""
        return self.probe(self._url(mapping), self.config.acceptable_statuses, self.config.probe_timeout)

    def _verify_handle(self, mapping, handle, policy):
        """Probe a freshly started forwarder until it answers or attempts run out."""
        message = "not probed"
        for attempt in range(1, policy.attempts + 1):
            ok, message = self.verify(mapping)
            if not self.port_probe.is_alive(handle.pid):
                output = handle.last_output()
                return False, f"forwarder exited ({output or message})"
            if ok:
                owners = self.port_probe.port_owners(mapping.local_port)
                # an empty list means the owner could not be inspected
                if owners and handle.pid not in owners:
                    return False, f"port {mapping.local_port} held by PID {owners[0]}, not the forwarder"
                return True, message
            logger.info(f"   Attempt {attempt}/{policy.attempts} failed for {mapping.role} ({message})")
            if attempt < policy.attempts:
                self.sleep(policy.interval)
        return False, f"no acceptable response after {policy.attempts} attempt(s), last: {message}"

    def policy_for(self, strategy, primary):
        policy = self.policies[strategy]
        if strategy is Strategy.SERVICE and not primary:
            attempts = min(policy.attempts, constants.SECONDARY_SERVICE_ATTEMPTS)
            policy = ProbePolicy(policy.settle, attempts, policy.interval)
        return policy

    # =========================================================================
    # PORT HOUSEKEEPING
    # =========================================================================

    def existing_forwarder(self, mapping):
        """PID of a running forwarder for the mapping's port that passes verification, else None."""
        pid = self.port_probe.find_forwarding_process(mapping.local_port)
        if pid is None:
            return None
        ok, message = self.verify(mapping)
        if not ok:
            logger.info(f"   Existing forwarder PID {pid} on port {mapping.local_port} is unhealthy ({message})")
            return None
        return pid

    def free_port(self, mapping):
        """
        Terminate stale forwarders for the port and any process bound to it.

        Best-effort: failures are logged and the bind attempt proceeds.
        """
        port = mapping.local_port
        terminated = []
        try:
            for pid in self.port_probe.forwarding_processes(port):
                try:
                    if self.port_probe.terminate(pid):
                        terminated.append(pid)
                except psutil.AccessDenied:
                    logger.warning(f"⚠ Not allowed to terminate stale forwarder PID {pid}")
            terminated += self.port_probe.free_port(port, keep=terminated)
        except (psutil.Error, OSError) as e:
            logger.warning(f"⚠ Could not free port {port}: {e}")
        if terminated:
            logger.info(f"   Terminated {len(terminated)} process(es) holding port {port}")
        return terminated

    def _discard(self, handle):
        try:
            self.port_probe.terminate(handle.pid)
        except (psutil.Error, OSError) as e:
            logger.warning(f"⚠ Could not terminate forwarder PID {handle.pid}: {e}")

    # =========================================================================
    # STRATEGY CHAIN
    # =========================================================================

    def _command(self, mapping, strategy):
        target_kind = "deployment" if strategy is Strategy.DEPLOYMENT else "svc"
        return port_forward_args(self.config, mapping, target_kind)

    def _attempt(self, mapping, strategy, primary):
        policy = self.policy_for(strategy, primary)
        if strategy is Strategy.SCRIPTED:
            self.free_port(mapping)

        log_path = self.config.log_dir / f"{mapping.role}.log"
        handle = self.detacher.detach(self._command(mapping, strategy), _DETACH_MODES[strategy], log_path)
        logger.info(f"   Started {strategy.value} forward for {mapping.role} (PID {handle.pid})")

        if policy.settle:
            self.sleep(policy.settle)
        ok, message = self._verify_handle(mapping, handle, policy)
        return handle, ok, message

    def establish_one(self, mapping, primary=True):
        """
        Establish one mapping.

        Returns:
            ForwardRecord: Verified forward

        Raises:
            StrategyExhausted: If every strategy failed (its processes are terminated)
            ToolNotFound: If kubectl cannot be started
            ValueError: If the role cannot be recorded
        """
        validate_role(mapping.role)
        pid = self.existing_forwarder(mapping)
        if pid is not None:
            logger.info(f"✓ {mapping.role}: reusing forwarder PID {pid} on port {mapping.local_port}")
            self.registry.record(mapping.role, pid)
            return ForwardRecord(mapping=mapping, pid=pid, strategy=Strategy.EXISTING)

        self.free_port(mapping)

        attempts = []
        for strategy in STRATEGY_CHAIN:
            logger.info(f"   {mapping.role}: trying {strategy.value} forward "
                        f"(localhost:{mapping.local_port} -> {mapping.remote_service}:{mapping.remote_port})")
            handle, ok, message = self._attempt(mapping, strategy, primary)
            if ok:
                logger.info(f"✓ {mapping.role} connected via {strategy.value} forward ({message})")
                self.registry.record(mapping.role, handle.pid)
                return ForwardRecord(mapping=mapping, pid=handle.pid, strategy=strategy)

            logger.info(f"✗ {mapping.role}: {strategy.value} forward failed ({message})")
            attempts.append((strategy, message))
            self._discard(handle)

        raise StrategyExhausted(mapping, attempts)

    def establish(self, mappings):
        """
        Establish every mapping, aggregating failures.

        The first mapping is the primary one and gets the longest probe budget.

        Args:
            mappings: Iterable of ForwardMapping with distinct local ports and roles

        Returns:
            AccessResult: records for verified mappings, failures for the rest

        Raises:
            ValueError: If two mappings share a local port or a role, or a role is invalid
            ToolNotFound: If kubectl cannot be started (operation aborted)
        """
        mappings = list(mappings)
        _check_unique(mappings)

        result = AccessResult()
        for index, mapping in enumerate(mappings):
            try:
                result.records[mapping.role] = self.establish_one(mapping, primary=(index == 0))
            except StrategyExhausted as e:
                logger.warning(f"⚠ {e}")
                result.failures[mapping.role] = e

        if result.partial:
            logger.warning(
                f"⚠ Partial access: established {', '.join(sorted(result.records))}; "
                f"failed {', '.join(sorted(result.failures))}"
            )
        return result

    # =========================================================================
    # STATUS / STOP
    # =========================================================================

    def access_status(self, mappings):
        """
        Report whether each mapping is already served by a healthy forwarder.

        Returns:
            dict: role -> (healthy: bool, message: str)
        """
        status = {}
        for mapping in mappings:
            if not self.port_probe.port_in_use(mapping.local_port):
                status[mapping.role] = (False, f"port {mapping.local_port} not in use")
                continue
            pid = self.port_probe.find_forwarding_process(mapping.local_port)
            if pid is None:
                status[mapping.role] = (False, f"port {mapping.local_port} held by another process")
                continue
            ok, message = self.verify(mapping)
            status[mapping.role] = (ok, f"PID {pid}: {message}")
        return status

    def access_needed(self, mappings) -> bool:
        """True if any mapping lacks a healthy forwarder."""
        return not all(ok for ok, _ in self.access_status(mappings).values())

    def stop(self, roles=None):
        """
        Terminate recorded forwarders and remove their records.

        A recorded PID that no longer looks like a forwarder (e.g. reused by an
        unrelated process) is not touched; only its record is removed.

        Args:
            roles: Roles to stop (default: every recorded role)

        Returns:
            list: Roles whose forwarder was terminated

        Raises:
            AccessError: If some recorded forwarders could not be terminated
        """
        roles = self.registry.roles() if roles is None else list(roles)
        stopped = []
        problems = []

        for role in roles:
            pid = self.registry.read(role)
            if pid is None:
                logger.info(f"   {role}: no recorded forwarder")
                continue

            if not self.port_probe.is_alive(pid) or not self.port_probe.is_forwarder(pid):
                logger.info(f"   {role}: PID {pid} is not a running forwarder, removing record")
                self.registry.remove(role)
                continue

            try:
                terminated = self.port_probe.terminate(pid)
            except psutil.AccessDenied:
                terminated = False
            if not terminated:
                problems.append(f"{role} (PID {pid})")
                continue

            self.registry.remove(role)
            stopped.append(role)
            logger.info(f"✓ {role}: stopped forwarder PID {pid}")

        if problems:
            raise AccessError(f"could not stop forwarders: {', '.join(problems)}")
        return stopped


def _default_probe(url, acceptable, timeout):
    return http_probe(url, acceptable=acceptable, timeout=timeout)


def _check_unique(mappings):
    ports = set()
    roles = set()
    for mapping in mappings:
        validate_role(mapping.role)
        if mapping.local_port in ports:
            raise ValueError(f"local port {mapping.local_port} used by more than one mapping")
        if mapping.role in roles:
            raise ValueError(f"role {mapping.role!r} used by more than one mapping")
        ports.add(mapping.local_port)
        roles.add(mapping.role)
