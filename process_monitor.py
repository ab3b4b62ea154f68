"""
Host process watchdog.

Polls for the frontend process (EmulationStation by default). When it goes
missing a grace period starts; if the process comes back the timer is
reset, otherwise the shutdown callback fires once the grace period has
elapsed without interruption.
"""
import sys
import time
import threading
import subprocess
from typing import Callable, Optional

from media_backend import CancelToken, _emit_log, _get_subprocess_flags


PRESENT = "present"
MISSING = "missing"
SHUTDOWN = "shutdown"


def is_process_running(process_name: str) -> bool:
    """Check whether a process with this name is running."""
    if sys.platform == 'win32':
        image = process_name if process_name.lower().endswith(".exe") else f"{process_name}.exe"
        result = subprocess.run(
            ["tasklist", "/FI", f"IMAGENAME eq {image}", "/NH"],
            capture_output=True, text=True, timeout=10,
            **_get_subprocess_flags()
        )
        return image.lower() in result.stdout.lower()

    result = subprocess.run(
        ["pgrep", "-x", process_name],
        capture_output=True, text=True, timeout=10,
    )
    return result.returncode == 0


class ProcessMonitor:
    def __init__(
        self,
        process_name: str,
        on_shutdown: Callable[[], None],
        check_interval_s: float = 30,
        grace_period_s: float = 300,
        initial_delay_s: float = 10,
        is_running: Optional[Callable[[str], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
        callbacks=None,
    ):
        self.process_name = process_name
        self.on_shutdown = on_shutdown
        self.check_interval_s = check_interval_s
        self.grace_period_s = grace_period_s
        self.initial_delay_s = initial_delay_s
        self.is_running = is_running or is_process_running
        self.clock = clock
        self.callbacks = callbacks

        self.missing_since: Optional[float] = None
        self.shutdown_triggered = False
        self._cancel = CancelToken()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> str:
        if self.shutdown_triggered:
            return SHUTDOWN
        if self.missing_since is not None:
            return MISSING
        return PRESENT

    def tick(self) -> str:
        """Run one check and return the resulting state."""
        if self.shutdown_triggered:
            return SHUTDOWN

        try:
            running = self.is_running(self.process_name)
        except (OSError, subprocess.SubprocessError) as e:
            _emit_log(self.callbacks, f"[ERROR] [Monitor] Error checking '{self.process_name}': {e}")
            return self.state

        now = self.clock()
        if running:
            if self.missing_since is not None:
                _emit_log(self.callbacks, f"[Monitor] '{self.process_name}' detected. Resetting shutdown timer.")
                self.missing_since = None
            return PRESENT

        if self.missing_since is None:
            self.missing_since = now
            _emit_log(self.callbacks, f"[WARN] [Monitor] '{self.process_name}' not found. Grace period started ({self.grace_period_s:.0f}s).")
            return MISSING

        elapsed = now - self.missing_since
        if elapsed >= self.grace_period_s:
            _emit_log(self.callbacks, f"[WARN] [Monitor] '{self.process_name}' missing for {elapsed:.0f}s. Initiating application shutdown.")
            self.shutdown_triggered = True
            self.on_shutdown()
            return SHUTDOWN
        return MISSING

    def run(self, cancel: Optional[CancelToken] = None):
        cancel = cancel or self._cancel
        _emit_log(self.callbacks, f"[Monitor] Started. Monitoring '{self.process_name}'.")

        # Let the frontend start if we were launched together
        if cancel.wait(self.initial_delay_s):
            return

        while not cancel.is_cancelled:
            if self.tick() == SHUTDOWN:
                return
            if cancel.wait(self.check_interval_s):
                return

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name="process-monitor", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None):
        self._cancel.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
