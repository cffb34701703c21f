"""
Error taxonomy for readiness polling and access supervision.

Low-level probe failures (a refused connection, a 404 from the API server)
are absorbed by the poller and the strategy chain. Only exhaustion of all
retries or strategies, a blown readiness budget, or a fatal environment
problem reaches the caller as one of these exceptions.
"""


class AccessError(RuntimeError):
    """Base class for all girus-access errors."""


class WorkloadNotFound(AccessError):
    """A workload's pod does not exist yet. Retried silently while polling."""


class TransientProbeError(AccessError):
    """A single probe timed out or was refused. Retried by the caller."""


class ToolNotFound(AccessError):
    """A required external executable (e.g. kubectl) cannot be started."""

    def __init__(self, tool, detail=None):
        self.tool = tool
        message = f"required tool '{tool}' could not be started"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class StrategyExhausted(AccessError):
    """Every forwarding strategy for one mapping failed verification."""

    def __init__(self, mapping, attempts):
        self.mapping = mapping
        # list of (Strategy, last diagnostic message)
        self.attempts = list(attempts)
        tried = "; ".join(f"{strategy.value}: {message}" for strategy, message in self.attempts)
        super().__init__(
            f"could not forward localhost:{mapping.local_port} to "
            f"{mapping.remote_namespace}/{mapping.remote_service}:{mapping.remote_port} "
            f"({tried or 'no strategy attempted'})"
        )

    @property
    def last_message(self):
        if not self.attempts:
            return "no strategy attempted"
        return self.attempts[-1][1]


class PartialFailure(AccessError):
    """Some mappings were established and others were not."""

    def __init__(self, result):
        self.result = result
        failed = ", ".join(
            f"{role} ({error.last_message})" for role, error in sorted(result.failures.items())
        )
        established = ", ".join(sorted(result.records)) or "none"
        super().__init__(f"access failed for: {failed}; established: {established}")


class ReadinessTimeout(AccessError):
    """Workloads did not become ready and responsive within the budget."""

    def __init__(self, report, timeout):
        self.report = report
        self.timeout = timeout
        details = "; ".join(
            f"{name}: {state.phase.value} ({state.last_message})"
            for name, state in report.states.items()
        )
        if report.all_ready and not report.app_responsive:
            details += "; application: not responding"
        super().__init__(f"workloads not ready after {timeout:g}s: {details}")
