"""
Local port probing and process termination.

Answers "is this port bound, and by whom?" and "is the occupant one of our
kubectl port-forward processes?", and frees ports by terminating occupants.
Built on psutil; when the system-wide connection table cannot be read (e.g.
macOS without root) it falls back to scanning per-process connections and a
plain TCP connect.
"""
import os
import socket
import logging
from typing import Optional

import psutil

from girus_access import constants

logger = logging.getLogger(__name__)


class PortProbe:
    """Inspect and free local TCP ports."""

    def __init__(self, signature=constants.FORWARDER_SIGNATURE,
                 terminate_timeout=constants.TERMINATE_TIMEOUT, connect_timeout=1.0):
        self.signature = tuple(signature)
        self.terminate_timeout = terminate_timeout
        self.connect_timeout = connect_timeout

    # =========================================================================
    # PORT OCCUPANCY
    # =========================================================================

    def _listening(self, connections, port):
        for conn in connections:
            if not conn.laddr or conn.laddr.port != port:
                continue
            if conn.type != socket.SOCK_STREAM or conn.status != psutil.CONN_LISTEN:
                continue
            yield conn

    def port_owners(self, port) -> list[int]:
        """
        Find the processes bound to a local port.

        Args:
            port: Local TCP port

        Returns:
            list: Sorted PIDs of the owners (may be empty even when the port is
            bound by a process we are not allowed to inspect)
        """
        try:
            connections = psutil.net_connections(kind="tcp")
        except psutil.AccessDenied:
            return self._scan_process_connections(port)
        return sorted({c.pid for c in self._listening(connections, port) if c.pid})

    def _scan_process_connections(self, port):
        owners = set()
        for proc in psutil.process_iter(["pid"]):
            try:
                connections = proc.net_connections(kind="tcp")
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
            if any(True for _ in self._listening(connections, port)):
                owners.add(proc.pid)
        return sorted(owners)

    def port_in_use(self, port) -> bool:
        """True if any process is currently bound to the port."""
        try:
            connections = psutil.net_connections(kind="tcp")
        except psutil.AccessDenied:
            if self._scan_process_connections(port):
                return True
            return self._accepts_connections(port)
        return any(True for _ in self._listening(connections, port))

    def _accepts_connections(self, port):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(self.connect_timeout)
            return sock.connect_ex(("127.0.0.1", port)) == 0

    # =========================================================================
    # FORWARDER DETECTION
    # =========================================================================

    def is_forwarder(self, pid, port=None) -> bool:
        """True if the process command line matches the forwarder signature (and port)."""
        try:
            cmdline = psutil.Process(pid).cmdline()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return False
        return self._matches(cmdline, port)

    def _matches(self, cmdline, port):
        if not cmdline:
            return False
        joined = " ".join(cmdline)
        if not all(fragment in joined for fragment in self.signature):
            return False
        if port is None:
            return True
        return any(arg == str(port) or arg.startswith(f"{port}:") for arg in cmdline)

    def forwarding_processes(self, port=None) -> list[int]:
        """PIDs of every running forwarder, optionally limited to one local port."""
        found = []
        for proc in psutil.process_iter(["pid", "cmdline"]):
            try:
                cmdline = proc.info.get("cmdline")
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            if proc.pid == os.getpid():
                continue
            if self._matches(cmdline, port) and self.is_alive(proc.pid):
                found.append(proc.pid)
        return sorted(found)

    def find_forwarding_process(self, port) -> Optional[int]:
        """
        Find our forwarder for a port among running processes.

        Prefers a matching process that actually owns the port over a matching
        process that has not bound it (yet or anymore).

        Returns:
            int: PID of the forwarder, or None if no match is running
        """
        candidates = self.forwarding_processes(port)
        if not candidates:
            return None
        owners = set(self.port_owners(port))
        for pid in candidates:
            if pid in owners:
                return pid
        return candidates[0]

    # =========================================================================
    # PROCESS LIFECYCLE
    # =========================================================================

    def is_alive(self, pid) -> bool:
        """True if the process exists and is not a zombie."""
        try:
            process = psutil.Process(pid)
            return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return False

    def terminate(self, pid) -> bool:
        """
        Terminate a process gracefully, killing it if it does not exit in time.

        Args:
            pid: Process ID to terminate

        Returns:
            bool: True if the process is gone (including if it was already gone)

        Raises:
            psutil.AccessDenied: If the process belongs to another user
        """
        try:
            process = psutil.Process(pid)
            process.terminate()
            try:
                process.wait(timeout=self.terminate_timeout)
                logger.debug(f"Process {pid} terminated gracefully")
            except psutil.TimeoutExpired:
                process.kill()
                process.wait(timeout=2)
                logger.warning(f"⚠ Process {pid} force killed")
        except psutil.NoSuchProcess:
            return True
        except psutil.TimeoutExpired:
            logger.warning(f"⚠ Process {pid} did not exit after SIGKILL")
            return False
        return True

    def free_port(self, port, keep=()) -> list[int]:
        """
        Terminate every process bound to a port, best-effort.

        Errors are logged and swallowed so that the subsequent bind attempt can
        surface a clearer conflict if the port is still taken.

        Args:
            port: Local port to free
            keep: PIDs that must not be terminated

        Returns:
            list: PIDs that were terminated
        """
        terminated = []
        for pid in self.port_owners(port):
            if pid in keep or pid == os.getpid():
                continue
            try:
                if self.terminate(pid):
                    terminated.append(pid)
                    logger.info(f"   Freed port {port} (terminated PID {pid})")
            except psutil.AccessDenied:
                logger.warning(f"⚠ Not allowed to terminate PID {pid} holding port {port}")
        return terminated
