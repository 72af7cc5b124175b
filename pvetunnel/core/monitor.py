"""
Operation monitor: poll a remote status command until it reports completion

State machine:  POLLING ──predicate true──▶ COMPLETED
                   │──attempt == max──────▶ TIMED_OUT
                   └──cancel during wait──▶ CANCELLED
"""
import threading
from typing import Callable, Iterable, Optional

from ..utils.logging import log, vlog, warn
from ..types import MonitorSettings, MonitorState, MonitorStatus

STOPPED_MARKER = '"status":"stopped"'
NOT_FOUND_MARKER = "not found"
DEFAULT_COMPLETION_MARKERS = (STOPPED_MARKER, NOT_FOUND_MARKER)
SHELL_COMMAND_NOT_FOUND = 127

Predicate = Callable[[str], bool]


class SubstringPredicate:
    """
    True when any marker occurs in the status text.

    The monitor passes stdout and stderr joined, because Proxmox reports a
    VM that is gone from the source on stderr. A poll whose exit status is
    127 (the shell could not find the command) is never checked, so
    "command not found" does not read as completion.

    The default markers treat "VM stopped on the source" and "VM no longer
    on the source" the same way, which cannot tell a finished migration from
    a VM that vanished for another reason. Pass other markers (or any
    callable) when that matters.
    """

    def __init__(self, markers: Iterable[str] = DEFAULT_COMPLETION_MARKERS):
        self.markers = tuple(m for m in markers if m)
        if not self.markers:
            raise ValueError("at least one completion marker is required")

    def __call__(self, text: str) -> bool:
        return any(m in text for m in self.markers)

    def __repr__(self):
        return f"SubstringPredicate({list(self.markers)!r})"


class OperationMonitor:
    def __init__(self, runner, status_command: str, predicate: Optional[Predicate] = None,
                 settings: Optional[MonitorSettings] = None,
                 cancel_event: Optional[threading.Event] = None):
        self._runner = runner
        self._status_command = status_command
        self._predicate = predicate or SubstringPredicate()
        self._settings = settings or MonitorSettings()
        self._settings.validate()
        self._cancel = cancel_event or threading.Event()
        self.state: Optional[MonitorState] = None

    def run(self) -> MonitorState:
        """Poll until COMPLETED, TIMED_OUT or CANCELLED and return the final state."""
        state = MonitorState(max_attempts=self._settings.max_attempts,
                             poll_interval=self._settings.poll_interval)
        self.state = state
        log("[monitor] monitoring migration status …")

        while state.status is MonitorStatus.POLLING:
            if self._cancel.is_set():
                state.status = MonitorStatus.CANCELLED
                break

            result = self._runner.execute(self._status_command)
            state.attempt += 1
            state.last_output = result.output
            vlog(f"[monitor] attempt {state.attempt}: exit {result.exit_status}")

            if result.exit_status == SHELL_COMMAND_NOT_FOUND:
                warn(f"[monitor] status command not found on the source host: "
                     f"{result.stderr.strip()}")
            elif self._predicate(result.output):
                state.completed = True
                state.status = MonitorStatus.COMPLETED
                log("[monitor] VM appears to have left the source node.")
                break

            if state.attempt >= state.max_attempts:
                state.status = MonitorStatus.TIMED_OUT
                break

            log(f"[monitor] migration in progress … attempt {state.attempt}/{state.max_attempts}")
            if self._cancel.wait(state.poll_interval):
                state.status = MonitorStatus.CANCELLED

        if state.status is MonitorStatus.TIMED_OUT:
            warn(f"[monitor] no completion after {state.attempt} attempts. Please check manually.")
        elif state.status is MonitorStatus.CANCELLED:
            warn(f"[monitor] cancelled after {state.attempt} attempt(s).")
        return state
