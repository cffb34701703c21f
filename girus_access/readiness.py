"""
Readiness poller for freshly deployed workloads.

The poller drives the ComponentHealthChecker in a bounded loop until every
workload is Ready *and* the application answers its health endpoint, or the
timeout elapses. "Infra ready but app warming up" is kept distinct from
"infra not ready": a failing application probe never regresses workload
phases, the loop simply continues.

The state transition itself is the pure function advance_state(); the loop
only adds timing and event emission, so it runs headless in tests (inject a
fake clock and sleep) and any presentation subscribes to events.
"""
import time
import logging
from dataclasses import dataclass, replace

from girus_access.errors import ReadinessTimeout, TransientProbeError
from girus_access.models import Phase, ReadinessReport, ReadinessState, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadinessEvent:
    """
    Notification emitted by the poller.

    kind is one of:
        - 'state': a workload changed phase (workload/state set)
        - 'app': the application probe ran (message set)
        - 'tick': one loop iteration finished (emitted every iteration)
    """
    kind: str
    elapsed: float
    iteration: int
    states: tuple = ()
    workload: str = ""
    message: str = ""


def advance_state(state, phase, message, now):
    """
    Compute the next ReadinessState from an observation.

    A state that reached READY stays READY for the rest of the session; later
    observations (health flapping) do not regress it.

    Args:
        state: Current ReadinessState
        phase: Observed Phase
        message: Diagnostic for the observation
        now: Observation timestamp

    Returns:
        ReadinessState: The new state (the input is not modified)
    """
    if state.phase is Phase.READY:
        return state
    return replace(state, phase=phase, last_message=message, last_checked_at=now)


class ReadinessPoller:
    """Poll workloads until ready and responsive, or time out."""

    def __init__(self, checker, interval=0.5, clock=time.monotonic, sleep=time.sleep, wallclock=None):
        """
        Args:
            checker: ComponentHealthChecker (or any object with check_workload/probe_application)
            interval: Delay between iterations in seconds (default: 0.5)
            clock: Monotonic clock used for the timeout
            sleep: Sleep function used between iterations
            wallclock: Function returning the timestamp stored in states
        """
        self.checker = checker
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.wallclock = wallclock or utcnow
        self._listeners = []

    def subscribe(self, listener):
        """Register a callable receiving every ReadinessEvent."""
        self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event):
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"⚠ Readiness listener {listener!r} failed: {e}")

    def check_once(self, states):
        """
        Run one staged check for every workload that is not READY yet.

        Args:
            states: dict name -> ReadinessState, updated in place

        Returns:
            list: Names of workloads whose phase changed
        """
        changed = []
        for name, state in states.items():
            if state.ready:
                continue
            try:
                phase, message = self.checker.check_workload(state.workload)
            except TransientProbeError as e:
                phase, message = state.phase, str(e)

            new_state = advance_state(state, phase, message, self.wallclock())
            if new_state.phase is not state.phase:
                changed.append(name)
                logger.debug(f"{state.workload}: {state.phase.value} -> {new_state.phase.value} ({message})")
            states[name] = new_state
        return changed

    def wait_until_ready(self, workloads, timeout=300):
        """
        Block until all workloads are Ready and the application responds.

        Args:
            workloads: Iterable of WorkloadRef (names must be unique)
            timeout: Budget in seconds (default: 300)

        Returns:
            ReadinessReport: Final states with app_responsive=True

        Raises:
            ValueError: If no workloads are given or names repeat
            ReadinessTimeout: If the budget elapses first; carries the last
                state of every workload
        """
        workloads = list(workloads)
        if not workloads:
            raise ValueError("at least one workload is required")

        states = {}
        for workload in workloads:
            if workload.name in states:
                raise ValueError(f"duplicate workload name: {workload.name}")
            states[workload.name] = ReadinessState(workload=workload)

        start = self.clock()
        iteration = 0
        app_responsive = False

        while True:
            iteration += 1
            elapsed = self.clock() - start

            for name in self.check_once(states):
                self._emit(ReadinessEvent(
                    kind="state", elapsed=elapsed, iteration=iteration,
                    states=tuple(states.values()), workload=name,
                    message=states[name].last_message,
                ))

            if all(s.ready for s in states.values()):
                app_responsive, message = self.checker.probe_application()
                self._emit(ReadinessEvent(
                    kind="app", elapsed=elapsed, iteration=iteration,
                    states=tuple(states.values()), message=message,
                ))

            elapsed = self.clock() - start
            self._emit(ReadinessEvent(
                kind="tick", elapsed=elapsed, iteration=iteration,
                states=tuple(states.values()),
            ))

            if app_responsive:
                logger.debug(f"All workloads ready and responsive after {elapsed:.1f}s")
                return ReadinessReport(states=states, app_responsive=True, elapsed=elapsed)

            if elapsed >= timeout:
                report = ReadinessReport(states=states, app_responsive=app_responsive, elapsed=elapsed)
                raise ReadinessTimeout(report, timeout)

            self.sleep(self.interval)
