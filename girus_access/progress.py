"""
Terminal progress indicators.

Purely presentational: nothing here feeds back into readiness or access
decisions. The spinner runs on its own daemon thread and is stopped by a
one-shot Event that is always set when the driving operation finishes, so
the indicator never outlives it.
"""
import sys
import logging
import threading
import subprocess
from contextlib import contextmanager
from datetime import datetime

from girus_access.errors import ToolNotFound
from girus_access.models import Phase

logger = logging.getLogger(__name__)

SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


class Spinner:
    """Animated one-line indicator advanced by a background thread."""

    def __init__(self, description, stream=None, interval=0.1, enabled=None):
        self.description = description
        self.stream = stream or sys.stderr
        self.interval = interval
        if enabled is None:
            enabled = hasattr(self.stream, "isatty") and self.stream.isatty()
        self.enabled = enabled
        self.frames_drawn = 0
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._thread = None

    def _run(self):
        while not self._done.wait(self.interval):
            frame = SPINNER_FRAMES[self.frames_drawn % len(SPINNER_FRAMES)]
            if self.enabled:
                with self._lock:
                    self.stream.write(f"\r{frame} {self.description}")
                    self.stream.flush()
            self.frames_drawn += 1

    def _erase(self):
        self.stream.write("\r" + " " * (len(self.description) + 2) + "\r")
        self.stream.flush()

    @contextmanager
    def paused(self):
        """
        Hold the animation and blank its line while other output is written.

        Log lines written to the spinner's stream inside the block start at
        column 0; the next frame is drawn on the line after them.
        """
        with self._lock:
            if self.enabled and self.frames_drawn:
                self._erase()
            yield

    def start(self):
        if self._thread is not None:
            return self
        self._thread = threading.Thread(target=self._run, name="girus-spinner", daemon=True)
        self._thread.start()
        return self

    def stop(self):
        """Signal the thread and wait for it. Safe to call more than once."""
        self._done.set()
        if self._thread is not None:
            self._thread.join()
        if self.enabled:
            with self._lock:
                self._erase()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()


def run_with_progress(args, description, timeout=None, stream=None, enabled=None):
    """
    Run an external command while a spinner animates.

    The spinner is stopped when the command finishes, whether it succeeded,
    failed or raised.

    Args:
        args: Command and arguments
        description: Text shown next to the spinner
        timeout: Optional timeout in seconds
        stream: Output stream for the spinner (default: stderr)
        enabled: Force the spinner on/off (default: only on a TTY)

    Returns:
        subprocess.CompletedProcess: Finished command with captured output

    Raises:
        ToolNotFound: If the command cannot be started
        subprocess.TimeoutExpired: If the timeout elapses
    """
    with Spinner(description, stream=stream, enabled=enabled):
        try:
            return subprocess.run(list(args), capture_output=True, text=True, timeout=timeout)
        except (FileNotFoundError, PermissionError) as e:
            raise ToolNotFound(args[0], str(e)) from e


class ReadinessProgress:
    """
    Log readiness events as a progress bar.

    Subscribe an instance to a ReadinessPoller. Phase changes are logged as
    they happen; the bar is logged every `every` ticks. When a Spinner shares
    the log stream, pass it as `spinner` so its line is blanked first.
    """

    _ICONS = {
        Phase.READY: "✓",
        Phase.FAILED: "✗",
    }

    def __init__(self, timeout, every=10, log=None, spinner=None):
        self.timeout = timeout
        self.every = max(1, every)
        self.log = log or logger
        self.spinner = spinner
        self.ticks = 0

    def _emit(self, level, message):
        if self.spinner is None:
            self.log.log(level, message)
            return
        with self.spinner.paused():
            self.log.log(level, message)

    def __call__(self, event):
        if event.kind == "state":
            state = next(s for s in event.states if s.workload.name == event.workload)
            icon = self._ICONS.get(state.phase, "⏳")
            self._emit(logging.INFO, f"   {icon} {event.workload}: {state.phase.value} ({state.last_message})")
        elif event.kind == "app":
            self._emit(logging.DEBUG, f"   Application probe: {event.message}")
        elif event.kind == "tick":
            self.ticks += 1
            if self.ticks % self.every == 0:
                self._emit(logging.INFO, self.render(event.elapsed))

    def render(self, elapsed):
        """Render one progress line for the elapsed share of the timeout."""
        progress_pct = min(100.0, (elapsed / self.timeout) * 100) if self.timeout else 100.0
        filled = int(progress_pct / 5)
        bar = "█" * filled + "░" * (20 - filled)
        elapsed_s = int(elapsed)
        remaining_s = max(0, int(self.timeout - elapsed))
        timestamp = datetime.now().strftime('%H:%M:%S')
        return (f"   [{timestamp}] {bar} {progress_pct:5.1f}% | "
                f"Elapsed: {elapsed_s // 60:02d}:{elapsed_s % 60:02d} | "
                f"Remaining: {remaining_s // 60:02d}:{remaining_s % 60:02d}")
