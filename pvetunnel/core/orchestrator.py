"""
Migration orchestrator: connect → forward → launch → monitor → teardown
"""
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..errors import TunnelError
from ..operations.migration import build_migrate_command, build_status_command
from ..types import (CommandResult, ConnectionParameters, ForwardingSpec, MonitorSettings,
                     MonitorState, MonitorStatus, OperationDescriptor)
from ..utils.logging import log, warn
from .monitor import OperationMonitor, Predicate
from .runner import RemoteCommandRunner
from .ssh_manager import TransportSession


class Outcome(Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed out"
    LAUNCH_FAILED = "launch failed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


class Stage(Enum):
    CONNECTED = "connected"
    FORWARDING_ACTIVE = "forwarding active"
    LAUNCH_FAILED = "launch failed"
    COMPLETED = "completed"
    TIMED_OUT = "timed out"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


_FAILURE_STAGES = {Stage.LAUNCH_FAILED, Stage.TIMED_OUT, Stage.CANCELLED, Stage.ABORTED}

_MONITOR_OUTCOMES = {
    MonitorStatus.COMPLETED: (Outcome.COMPLETED, Stage.COMPLETED),
    MonitorStatus.TIMED_OUT: (Outcome.TIMED_OUT, Stage.TIMED_OUT),
    MonitorStatus.CANCELLED: (Outcome.CANCELLED, Stage.CANCELLED),
}


@dataclass
class RunReport:
    outcome: Outcome
    launch_result: Optional[CommandResult] = None
    monitor_state: Optional[MonitorState] = None
    error: Optional[BaseException] = None


def console_reporter(stage: Stage, message: str):
    """Default presentation: one log line per stage."""
    if stage in _FAILURE_STAGES:
        warn(f"[{stage.value}] {message}")
    else:
        log(f"[{stage.value}] {message}")


class MigrationOrchestrator:
    """
    Drives one migration run. The session and monitor state belong to this
    run only; the forwarder is stopped and the session disconnected exactly
    once on every path that got past validation.
    """

    def __init__(self, params: ConnectionParameters, forwarding: ForwardingSpec,
                 operation: OperationDescriptor, *,
                 session=None,
                 runner_factory: Callable = RemoteCommandRunner,
                 predicate: Optional[Predicate] = None,
                 settings: Optional[MonitorSettings] = None,
                 cancel_event: Optional[threading.Event] = None,
                 reporter: Optional[Callable[[Stage, str], None]] = None,
                 hold_open: bool = False):
        self.params = params
        self.forwarding = forwarding
        self.operation = operation
        self.session = session if session is not None else TransportSession()
        self.settings = settings or MonitorSettings()
        self.cancel_event = cancel_event or threading.Event()
        self.hold_open = hold_open
        self.report: Optional[RunReport] = None
        self._runner_factory = runner_factory
        self._predicate = predicate
        self._reporter = reporter or console_reporter

    def cancel(self):
        """End the session early (operator interrupt); teardown still runs."""
        self.cancel_event.set()

    def run(self) -> RunReport:
        # Nothing below this block may touch the network on invalid input
        self.params.validate()
        self.forwarding.validate()
        self.settings.validate()

        forwarder = None
        try:
            self.session.connect(self.params)
            self._reporter(Stage.CONNECTED,
                           f"{self.params.username}@{self.params.host}:{self.params.port}")

            forwarder = self.session.forward(self.forwarding)
            self._reporter(Stage.FORWARDING_ACTIVE, self.forwarding.describe())

            if self.cancel_event.is_set():
                self.report = RunReport(Outcome.CANCELLED)
                self._reporter(Stage.CANCELLED, "cancelled before launch")
                return self.report

            self.report = self._migrate(self._runner_factory(self.session))

            if self.hold_open and not self.cancel_event.is_set():
                log("Keeping tunnel open until end of session …")
                self.cancel_event.wait()
            return self.report
        except TunnelError as exc:
            self.report = RunReport(Outcome.ABORTED, error=exc)
            self._reporter(Stage.ABORTED, str(exc))
            raise
        finally:
            self._teardown(forwarder)

    def _migrate(self, runner) -> RunReport:
        op = self.operation
        log(f"Starting migration of VM {op.vm_id} from {op.source_node} "
            f"to {op.destination_node} …")
        launch = runner.execute(build_migrate_command(op))
        if launch.stdout.strip():
            log(f"Migration command output:\n{launch.stdout.rstrip()}")

        if not launch.ok:
            detail = launch.stderr.strip()
            self._reporter(Stage.LAUNCH_FAILED,
                           f"migration command failed with exit code {launch.exit_status}"
                           + (f": {detail}" if detail else ""))
            return RunReport(Outcome.LAUNCH_FAILED, launch_result=launch)

        log("Migration command executed successfully.")
        monitor = OperationMonitor(runner, build_status_command(op), self._predicate,
                                   self.settings, self.cancel_event)
        state = monitor.run()
        outcome, stage = _MONITOR_OUTCOMES[state.status]
        if outcome is Outcome.COMPLETED:
            message = f"VM {op.vm_id} migration completed after {state.attempt} poll(s)"
        elif outcome is Outcome.TIMED_OUT:
            message = f"no completion after {state.attempt} poll(s); please check manually"
        else:
            message = f"monitoring stopped after {state.attempt} poll(s)"
        self._reporter(stage, message)
        return RunReport(outcome, launch_result=launch, monitor_state=state)

    def _teardown(self, forwarder):
        try:
            if forwarder is not None:
                forwarder.stop()
        finally:
            self.session.disconnect()
