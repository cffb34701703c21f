"""Port probing and process termination against real local processes"""
import os
import sys
import socket
import subprocess
from collections import namedtuple

import psutil
import pytest

from girus_access.ports import PortProbe
from tests.helpers import free_tcp_port, spawn_fake_forwarder, spawn_listener, stop_process


@pytest.fixture
def probe():
    return PortProbe(terminate_timeout=5)


@pytest.fixture
def processes():
    """Track helper processes and stop whatever is left after the test"""
    started = []
    yield started
    for process in started:
        stop_process(process)


# =============================================================================
# COMMAND LINE MATCHING
# =============================================================================

@pytest.mark.quick
@pytest.mark.parametrize("cmdline, port, expected", [
    (["kubectl", "port-forward", "-n", "girus", "svc/girus-backend", "8080:8080"], 8080, True),
    (["kubectl", "port-forward", "-n", "girus", "svc/girus-backend", "8080:8080"], None, True),
    (["kubectl", "port-forward", "-n", "girus", "svc/girus-frontend", "8000:80"], 8080, False),
    (["/usr/local/bin/kubectl", "--context", "kind-girus", "port-forward", "deployment/girus-frontend", "8000:80"], 8000, True),
    (["kubectl", "get", "pods"], None, False),
    (["python3", "-m", "http.server", "8080"], 8080, False),
    ([], None, False),
])
def test_forwarder_signature_matching(probe, cmdline, port, expected):
    assert probe._matches(cmdline, port) is expected


# =============================================================================
# LIVE PROCESSES
# =============================================================================

@pytest.mark.process
def test_port_in_use_and_owner(probe, processes):
    port = free_tcp_port()
    assert not probe.port_in_use(port)

    listener = spawn_listener(port)
    processes.append(listener)

    assert probe.port_in_use(port)
    assert listener.pid in probe.port_owners(port)
    assert not probe.is_forwarder(listener.pid, port)
    assert probe.find_forwarding_process(port) is None


Connection = namedtuple("Connection", "fd family type laddr raddr status pid")
Address = namedtuple("Address", "ip port")


@pytest.mark.quick
def test_only_listening_tcp_sockets_own_a_port(probe, monkeypatch):
    kinds = []

    def net_connections(kind):
        kinds.append(kind)
        return [
            Connection(3, socket.AF_INET, socket.SOCK_STREAM, Address("127.0.0.1", 8080), (), psutil.CONN_LISTEN, 101),
            Connection(4, socket.AF_INET, socket.SOCK_STREAM, Address("127.0.0.1", 8080),
                       Address("127.0.0.1", 50000), psutil.CONN_ESTABLISHED, 102),
            Connection(5, socket.AF_INET, socket.SOCK_DGRAM, Address("127.0.0.1", 8080), (), psutil.CONN_NONE, 103),
        ]

    monkeypatch.setattr(psutil, "net_connections", net_connections)

    assert probe.port_owners(8080) == [101]
    assert probe.port_owners(8000) == []
    assert set(kinds) == {"tcp"}


@pytest.mark.process
def test_udp_socket_on_the_same_port_is_ignored(probe):
    port = free_tcp_port()
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as udp:
        udp.bind(("127.0.0.1", port))

        assert probe.port_owners(port) == []
        assert not probe.port_in_use(port)
        assert probe.free_port(port) == []


@pytest.mark.process
def test_finds_forwarder_by_command_line(probe, processes):
    port = free_tcp_port()
    forwarder = spawn_fake_forwarder(port)
    processes.append(forwarder)

    assert probe.is_forwarder(forwarder.pid, port)
    assert forwarder.pid in probe.forwarding_processes(port)
    assert probe.find_forwarding_process(port) == forwarder.pid
    assert os.getpid() not in probe.forwarding_processes()


@pytest.mark.process
def test_terminate_and_free_port(probe, processes):
    port = free_tcp_port()
    listener = spawn_listener(port)
    processes.append(listener)

    assert probe.is_alive(listener.pid)
    assert probe.free_port(port) == [listener.pid]
    assert not probe.is_alive(listener.pid)
    assert not probe.port_in_use(port)


@pytest.mark.process
def test_free_port_keeps_listed_pids(probe, processes):
    port = free_tcp_port()
    listener = spawn_listener(port)
    processes.append(listener)

    assert probe.free_port(port, keep=[listener.pid]) == []
    assert probe.is_alive(listener.pid)


@pytest.mark.process
def test_terminate_missing_process_counts_as_gone(probe):
    finished = subprocess.Popen([sys.executable, "-c", "pass"])
    finished.wait(timeout=10)

    assert not probe.is_alive(finished.pid)
    assert probe.terminate(finished.pid) is True
