"""
Process registry for detached forwarding processes.

Forwarders outlive the command that started them, so the only durable handle
to them is a small PID file per logical role (e.g. ~/.girus/frontend.pid).
A later invocation (such as `girus-access stop`) reads these files to find
and terminate the processes.

Write failures are logged as warnings and never raised: a lost record only
degrades manual cleanup, it must not block establishing access.
"""
import logging
import re
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PID_SUFFIX = ".pid"

_ROLE_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def validate_role(role):
    """Raise ValueError unless the role can name a PID record file."""
    if not isinstance(role, str) or not _ROLE_PATTERN.match(role):
        raise ValueError(f"Invalid role name: {role!r}")


class ProcessRegistry:
    """PID records keyed by role under a per-user state directory."""

    def __init__(self, state_dir):
        self.state_dir = Path(state_dir)

    def path_for(self, role) -> Path:
        validate_role(role)
        return self.state_dir / f"{role}{PID_SUFFIX}"

    def record(self, role, pid) -> bool:
        """
        Persist the PID serving a role.

        Args:
            role: Logical role (e.g. 'backend', 'frontend')
            pid: Process ID of the forwarder

        Returns:
            bool: True if the record was written
        """
        path = self.path_for(role)
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(f"{int(pid)}\n")
            tmp_path.replace(path)
        except OSError as e:
            logger.warning(f"⚠ Could not record PID {pid} for {role} in {path}: {e}")
            return False
        logger.debug(f"Recorded {role} PID {pid} in {path}")
        return True

    def read(self, role) -> Optional[int]:
        """Return the recorded PID for a role, or None if absent or unreadable."""
        path = self.path_for(role)
        try:
            content = path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"⚠ Could not read PID record {path}: {e}")
            return None

        try:
            pid = int(content)
        except ValueError:
            logger.warning(f"⚠ Ignoring malformed PID record {path}: {content!r}")
            return None
        return pid if pid > 0 else None

    def remove(self, role) -> bool:
        """Delete a role's record. Returns True if a record was removed."""
        path = self.path_for(role)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"⚠ Could not remove PID record {path}: {e}")
            return False
        return True

    def roles(self) -> list[str]:
        """List roles that currently have a record, sorted by name."""
        if not self.state_dir.is_dir():
            return []
        return sorted(p.name[: -len(PID_SUFFIX)] for p in self.state_dir.glob(f"*{PID_SUFFIX}"))
