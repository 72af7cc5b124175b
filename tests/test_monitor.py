"""
Tests for the operation monitor polling state machine.

Tests:
  - completion on the first status text that satisfies the predicate
  - bounded retries ending in TIMED_OUT, one wait between polls
  - cancellation during the inter-poll wait
  - pluggable predicates and settings validation
"""
import threading
import unittest


# ── Helpers ───────────────────────────────────────────────────────────────────

class RecordingEvent(threading.Event):
    """Event whose wait() returns at once and remembers the requested timeouts."""

    def __init__(self, cancel_after_waits=None):
        super().__init__()
        self.waits = []
        self._cancel_after = cancel_after_waits

    def wait(self, timeout=None):
        self.waits.append(timeout)
        if self._cancel_after is not None and len(self.waits) >= self._cancel_after:
            self.set()
        return self.is_set()


class ScriptedRunner:
    """Returns scripted (exit, stdout, stderr) tuples; the last one repeats."""

    def __init__(self, script):
        self.script = list(script)
        self.commands = []

    def execute(self, command, timeout=None):
        from pvetunnel.types import CommandResult
        self.commands.append(command)
        idx = min(len(self.commands), len(self.script)) - 1
        exit_status, stdout, stderr = self.script[idx]
        return CommandResult(command, exit_status, stdout, stderr)


RUNNING = (0, '{"status":"running","vmid":101}', "")
STOPPED = (0, '{"status":"stopped","vmid":101}', "")
VANISHED = (2, "", "Configuration file 'nodes/pve1/qemu-server/101.conf' not found")


def _monitor(script, max_attempts=30, poll_interval=10.0, event=None, predicate=None):
    from pvetunnel.core.monitor import OperationMonitor
    from pvetunnel.types import MonitorSettings
    runner = ScriptedRunner(script)
    event = event if event is not None else RecordingEvent()
    monitor = OperationMonitor(runner, "pvesh get /status", predicate,
                               MonitorSettings(poll_interval=poll_interval, max_attempts=max_attempts),
                               event)
    return monitor, runner, event


# ── Tests: transitions ────────────────────────────────────────────────────────

class TestMonitorTransitions(unittest.TestCase):

    def test_completes_on_first_matching_status(self):
        """Polling stops at the first satisfying text; no extra polls."""
        from pvetunnel.types import MonitorStatus
        monitor, runner, event = _monitor([RUNNING, RUNNING, STOPPED, RUNNING])
        state = monitor.run()
        self.assertEqual(state.status, MonitorStatus.COMPLETED)
        self.assertTrue(state.completed)
        self.assertEqual(state.attempt, 3)
        self.assertEqual(len(runner.commands), 3)
        self.assertEqual(event.waits, [10.0, 10.0])

    def test_completes_immediately_without_waiting(self):
        """A status already satisfied on the first poll needs no wait."""
        from pvetunnel.types import MonitorStatus
        monitor, runner, event = _monitor([STOPPED])
        state = monitor.run()
        self.assertEqual(state.status, MonitorStatus.COMPLETED)
        self.assertEqual(state.attempt, 1)
        self.assertEqual(event.waits, [])

    def test_times_out_after_max_attempts(self):
        """Never satisfied with max_attempts=3: exactly 3 polls, 2 waits, TIMED_OUT."""
        from pvetunnel.types import MonitorStatus
        monitor, runner, event = _monitor([RUNNING], max_attempts=3, poll_interval=5.0)
        state = monitor.run()
        self.assertEqual(state.status, MonitorStatus.TIMED_OUT)
        self.assertFalse(state.completed)
        self.assertEqual(state.attempt, 3)
        self.assertEqual(len(runner.commands), 3)
        self.assertEqual(event.waits, [5.0, 5.0])

    def test_not_found_on_stderr_counts_as_complete(self):
        """A VM gone from the source reports on stderr with non-zero exit."""
        from pvetunnel.types import MonitorStatus
        monitor, runner, _ = _monitor([RUNNING, VANISHED])
        state = monitor.run()
        self.assertEqual(state.status, MonitorStatus.COMPLETED)
        self.assertEqual(state.attempt, 2)
        self.assertIn("not found", state.last_output)

    def test_shell_command_not_found_is_not_completion(self):
        """Exit 127 with 'command not found' on stderr keeps polling."""
        from pvetunnel.types import MonitorStatus
        missing = (127, "", "bash: pvesh: command not found")
        monitor, runner, _ = _monitor([missing], max_attempts=3)
        state = monitor.run()
        self.assertEqual(state.status, MonitorStatus.TIMED_OUT)
        self.assertFalse(state.completed)
        self.assertEqual(len(runner.commands), 3)

    def test_every_poll_sends_the_status_command(self):
        monitor, runner, _ = _monitor([RUNNING], max_attempts=4)
        monitor.run()
        self.assertEqual(runner.commands, ["pvesh get /status"] * 4)


# ── Tests: cancellation ───────────────────────────────────────────────────────

class TestMonitorCancellation(unittest.TestCase):

    def test_cancel_during_wait_stops_polling(self):
        """Setting the cancel event during the wait ends monitoring at once."""
        from pvetunnel.types import MonitorStatus
        monitor, runner, event = _monitor([RUNNING], event=RecordingEvent(cancel_after_waits=1))
        state = monitor.run()
        self.assertEqual(state.status, MonitorStatus.CANCELLED)
        self.assertEqual(state.attempt, 1)
        self.assertEqual(len(runner.commands), 1)

    def test_cancel_before_start_polls_nothing(self):
        from pvetunnel.types import MonitorStatus
        event = RecordingEvent()
        event.set()
        monitor, runner, _ = _monitor([STOPPED], event=event)
        state = monitor.run()
        self.assertEqual(state.status, MonitorStatus.CANCELLED)
        self.assertEqual(runner.commands, [])

    def test_real_event_wait_is_interrupted(self):
        """A real Event set from another thread interrupts a long interval."""
        from pvetunnel.types import MonitorStatus
        event = threading.Event()
        monitor, runner, _ = _monitor([RUNNING], poll_interval=60.0, event=event)
        timer = threading.Timer(0.1, event.set)
        timer.start()
        try:
            state = monitor.run()
        finally:
            timer.cancel()
        self.assertEqual(state.status, MonitorStatus.CANCELLED)
        self.assertEqual(len(runner.commands), 1)


# ── Tests: predicate and settings ─────────────────────────────────────────────

class TestPredicateAndSettings(unittest.TestCase):

    def test_substring_predicate_defaults(self):
        from pvetunnel.core.monitor import SubstringPredicate
        pred = SubstringPredicate()
        self.assertTrue(pred('{"status":"stopped"}'))
        self.assertTrue(pred("VM 101 not found"))
        self.assertFalse(pred('{"status":"running"}'))
        self.assertFalse(pred(""))

    def test_substring_predicate_custom_markers(self):
        from pvetunnel.core.monitor import SubstringPredicate
        pred = SubstringPredicate(["migrated"])
        self.assertTrue(pred("VM migrated"))
        self.assertFalse(pred("not found"))

    def test_substring_predicate_requires_markers(self):
        from pvetunnel.core.monitor import SubstringPredicate
        with self.assertRaises(ValueError):
            SubstringPredicate(["", ""])

    def test_callable_predicate(self):
        """Any str -> bool callable can decide completion."""
        from pvetunnel.types import MonitorStatus
        monitor, runner, _ = _monitor([RUNNING, RUNNING, RUNNING],
                                      predicate=lambda text: len(text) > 10_000)
        self.assertEqual(monitor.run().status, MonitorStatus.TIMED_OUT)

    def test_invalid_settings_rejected(self):
        from pvetunnel.errors import ConfigError
        with self.assertRaises(ConfigError):
            _monitor([RUNNING], max_attempts=0)
        with self.assertRaises(ConfigError):
            _monitor([RUNNING], poll_interval=-1)

    def test_default_settings(self):
        """Defaults: 10 second interval, 30 attempts."""
        from pvetunnel.types import MonitorSettings
        settings = MonitorSettings()
        self.assertEqual(settings.poll_interval, 10.0)
        self.assertEqual(settings.max_attempts, 30)


if __name__ == "__main__":
    unittest.main()
