"""
Test helpers package for the girus-access test suite.

Submodules:
    - cluster: FakeCoreV1, pod/service builders, FakeClock, ScriptedChecker
    - forwarding: FakeHost process table with FakePortProbe/FakeDetacher
    - processes: real helper processes (listeners, fake forwarders)
"""

# Re-export commonly used items for convenience
from tests.helpers.cluster import (
    FakeClock,
    FakeCoreV1,
    ScriptedChecker,
    make_pod,
    make_service,
)

from tests.helpers.forwarding import (
    FakeDetacher,
    FakeHost,
    FakePortProbe,
)

from tests.helpers.processes import (
    free_tcp_port,
    spawn_fake_forwarder,
    spawn_listener,
    stop_process,
)

__all__ = [
    # cluster
    'FakeClock',
    'FakeCoreV1',
    'ScriptedChecker',
    'make_pod',
    'make_service',
    # forwarding
    'FakeDetacher',
    'FakeHost',
    'FakePortProbe',
    # processes
    'free_tcp_port',
    'spawn_fake_forwarder',
    'spawn_listener',
    'stop_process',
]
