"""
Data classes and enums shared by the readiness poller and access supervisor.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from girus_access.errors import PartialFailure


class Phase(Enum):
    """Readiness phase of one workload within a poll session."""
    UNKNOWN = "Unknown"
    PENDING = "Pending"
    RUNNING = "Running"
    READY = "Ready"
    FAILED = "Failed"


class Strategy(Enum):
    """Technique used to establish a forward, in fallback order."""
    EXISTING = "existing"
    SERVICE = "service"
    SCRIPTED = "scripted"
    FOREGROUND = "foreground"
    DEPLOYMENT = "deployment"


# Strategies attempted for a new forward, in order.
STRATEGY_CHAIN = (
    Strategy.SERVICE,
    Strategy.SCRIPTED,
    Strategy.FOREGROUND,
    Strategy.DEPLOYMENT,
)


def utcnow():
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class WorkloadRef:
    """One deployable unit to watch."""
    name: str
    namespace: str
    selector: Optional[str] = None
    kind: str = "Deployment"

    @property
    def label_selector(self) -> str:
        return self.selector or f"app={self.name}"

    def __str__(self):
        return f"{self.namespace}/{self.name}"


@dataclass
class ReadinessState:
    """Last observed readiness of one workload during a poll session."""
    workload: WorkloadRef
    phase: Phase = Phase.UNKNOWN
    last_message: str = "not checked"
    last_checked_at: Optional[datetime] = None

    @property
    def ready(self) -> bool:
        return self.phase is Phase.READY


@dataclass
class ReadinessReport:
    """Outcome of a poll session, keyed by workload name."""
    states: dict
    app_responsive: bool = False
    elapsed: float = 0.0

    @property
    def all_ready(self) -> bool:
        return bool(self.states) and all(s.ready for s in self.states.values())

    @property
    def ok(self) -> bool:
        return self.all_ready and self.app_responsive


@dataclass(frozen=True)
class ForwardMapping:
    """
    One desired tunnel from a local port to a remote service.

    Attributes:
        role: Logical name used as the process registry key (e.g. 'backend')
        local_port: Local TCP port to listen on
        remote_service: Service targeted by the forward
        remote_namespace: Namespace of the service
        remote_port: Service port
        workload: Deployment used by the last-resort strategy (default: remote_service)
        health_path: Path probed to verify the forward (default: '/')
    """
    role: str
    local_port: int
    remote_service: str
    remote_namespace: str
    remote_port: int
    workload: Optional[str] = None
    health_path: str = "/"

    @property
    def deployment(self) -> str:
        return self.workload or self.remote_service

    @property
    def local_url(self) -> str:
        return f"http://localhost:{self.local_port}"


@dataclass(frozen=True)
class ForwardRecord:
    """A verified forward and the process serving it."""
    mapping: ForwardMapping
    pid: int
    strategy: Strategy
    established_at: datetime = field(default_factory=utcnow)


@dataclass
class AccessResult:
    """
    Aggregated outcome of establishing several mappings.

    Attributes:
        records: role -> ForwardRecord for every verified mapping
        failures: role -> StrategyExhausted for every mapping that failed
    """
    records: dict = field(default_factory=dict)
    failures: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def partial(self) -> bool:
        return bool(self.records) and bool(self.failures)

    def urls(self) -> dict:
        return {role: record.mapping.local_url for role, record in self.records.items()}

    def raise_for_failures(self):
        """Raise PartialFailure if any mapping failed."""
        if self.failures:
            raise PartialFailure(self)
