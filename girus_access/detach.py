"""
Detached background process spawning.

Forwarding processes must survive the CLI invocation that started them. The
strategy chain only asks for "start this command in mode X and give me its
PID"; the platform specifics (sessions, process groups, Windows creation
flags) live in the Detacher implementations below.

Modes:
    - SESSION: own session/process group, output appended to a log file
    - DAEMON: own session, null stdio, neutral working directory, PID returned
      explicitly (replacement for a nohup helper script)
    - INHERIT: caller's process group, null stdio, handle released
"""
import os
import logging
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from girus_access.errors import ToolNotFound
from girus_access.models import utcnow

logger = logging.getLogger(__name__)


class DetachMode(Enum):
    SESSION = "session"
    DAEMON = "daemon"
    INHERIT = "inherit"


@dataclass(frozen=True)
class ProcessHandle:
    """The only thing kept about a detached process once it is released."""
    pid: int
    args: tuple
    mode: DetachMode
    log_path: Optional[Path] = None
    started_at: datetime = field(default_factory=utcnow)

    def last_output(self, max_chars=200) -> str:
        """Last non-empty line the process wrote to its log, if it has one."""
        if not self.log_path:
            return ""
        try:
            lines = [line.strip() for line in self.log_path.read_text(errors="replace").splitlines()]
        except OSError:
            return ""
        lines = [line for line in lines if line]
        return lines[-1][:max_chars] if lines else ""


class Detacher:
    """Start processes that outlive the current interpreter."""

    def detach(self, args, mode=DetachMode.SESSION, log_path=None) -> ProcessHandle:
        """
        Start a command detached from the caller.

        Args:
            args: Command and arguments
            mode: DetachMode controlling session and stdio handling
            log_path: File receiving stdout/stderr (SESSION mode only)

        Returns:
            ProcessHandle: PID and metadata of the started process

        Raises:
            ToolNotFound: If the executable does not exist or cannot be executed
        """
        args = tuple(str(a) for a in args)
        kwargs = self._popen_kwargs(mode)
        log_file = None

        if mode is DetachMode.SESSION and log_path is not None:
            log_path = Path(log_path)
            try:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                log_file = open(log_path, "ab")
            except OSError as e:
                logger.warning(f"⚠ Cannot open forwarder log {log_path}: {e}")
                log_path = None
        else:
            log_path = None

        stdout = log_file if log_file is not None else subprocess.DEVNULL
        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=subprocess.STDOUT if log_file is not None else subprocess.DEVNULL,
                close_fds=True,
                **kwargs,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ToolNotFound(args[0], str(e)) from e
        finally:
            if log_file is not None:
                log_file.close()

        logger.debug(f"Started PID {process.pid} ({mode.value}): {' '.join(args)}")
        handle = ProcessHandle(pid=process.pid, args=args, mode=mode, log_path=log_path)
        self._release(process)
        return handle

    def _popen_kwargs(self, mode):
        raise NotImplementedError

    def _release(self, process):
        # The handle is released: Popen must neither reap this child nor warn
        # about it still running when garbage collected.
        process.returncode = 0


class PosixDetacher(Detacher):
    """Linux/macOS: new sessions via setsid."""

    def _popen_kwargs(self, mode):
        if mode is DetachMode.INHERIT:
            return {}
        kwargs = {"start_new_session": True}
        if mode is DetachMode.DAEMON:
            kwargs["cwd"] = "/"
        return kwargs


class WindowsDetacher(Detacher):
    """Windows: detached console and a new process group."""

    def _popen_kwargs(self, mode):
        new_group = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0x00000200)
        detached = getattr(subprocess, "DETACHED_PROCESS", 0x00000008)
        no_window = getattr(subprocess, "CREATE_NO_WINDOW", 0x08000000)
        if mode is DetachMode.INHERIT:
            return {"creationflags": no_window}
        kwargs = {"creationflags": detached | new_group}
        if mode is DetachMode.DAEMON:
            kwargs["cwd"] = os.environ.get("SystemRoot", "C:\\")
        return kwargs


def default_detacher() -> Detacher:
    """Detacher for the running platform."""
    if os.name == "nt":
        return WindowsDetacher()
    return PosixDetacher()
