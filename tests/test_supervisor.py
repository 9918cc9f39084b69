"""Tests for ProcessSupervisor."""

import gc
import logging
import subprocess
import sys
import time

import pytest

from validator_harness.core.errors import (
    ProcessNotRunningError,
    SpawnError,
    TerminationFatal,
    WaitTimeoutError,
)
from validator_harness.core.events import LifecycleEvent
from validator_harness.core.policy import RetryPolicy
from validator_harness.core.supervisor import (
    KILL_WAIT_TIMEOUT,
    ExitStatus,
    OutputPolicy,
    ProcessSupervisor,
)

TIMEOUT = object()


class FakePopen:
    """Popen stand-in whose wait() results are scripted.

    Each entry of ``wait_results`` is an exit code, TIMEOUT, or an
    exception instance to raise.
    """

    def __init__(self, wait_results, pid=4242):
        self.pid = pid
        self.returncode = None
        self.calls: list[str] = []
        self.timeouts: list[float | None] = []
        self.kwargs: dict = {}
        self._results = list(wait_results)

    def __call__(self, cmd, **kwargs):
        self.cmd = cmd
        self.kwargs = kwargs
        return self

    def poll(self):
        return self.returncode

    def terminate(self):
        self.calls.append("terminate")

    def kill(self):
        self.calls.append("kill")

    def wait(self, timeout=None):
        self.calls.append("wait")
        self.timeouts.append(timeout)
        # Exhausted scripts behave like a killed process (finalizer cleanup)
        result = self._results.pop(0) if self._results else -9
        if result is TIMEOUT:
            raise subprocess.TimeoutExpired(self.cmd, timeout)
        if isinstance(result, BaseException):
            raise result
        self.returncode = result
        return result


def make_supervisor(fake, max_attempts=10, timeout=2.0):
    return ProcessSupervisor(
        "Test validator",
        "test_supervisor",
        policy=RetryPolicy(max_attempts=max_attempts, per_attempt_timeout=timeout),
        popen_factory=fake,
    )


def lifecycle_events(caplog):
    return [getattr(r, "lifecycle_event", None) for r in caplog.records]


@pytest.fixture
def python_sleeper():
    """Command for a real process that idles until signalled."""
    return [sys.executable, "-c", "import time; time.sleep(60)"]


class TestSpawn:
    """Spawning processes."""

    def test_spawn_records_process(self):
        fake = FakePopen([0])
        supervisor = make_supervisor(fake)

        managed = supervisor.spawn("solana-test-validator", ["--rpc-port", "8899"])

        assert managed.pid == 4242
        assert managed.service_name == "Test validator"
        assert managed.test_name == "test_supervisor"
        assert supervisor.is_running() is True
        assert supervisor.pid == 4242
        assert fake.cmd == ["solana-test-validator", "--rpc-port", "8899"]

    def test_spawn_detaches_and_redirects(self):
        fake = FakePopen([0])
        supervisor = make_supervisor(fake)

        supervisor.spawn("bin", stdout=OutputPolicy.DISCARD, stderr=OutputPolicy.CAPTURE)

        assert fake.kwargs["start_new_session"] is True
        assert fake.kwargs["stdin"] == subprocess.DEVNULL
        assert fake.kwargs["stdout"] == subprocess.DEVNULL
        assert hasattr(fake.kwargs["stderr"], "read")

    def test_inherit_passes_none(self):
        fake = FakePopen([0])
        supervisor = make_supervisor(fake)

        supervisor.spawn("bin", stdout=OutputPolicy.INHERIT, stderr=OutputPolicy.INHERIT)

        assert fake.kwargs["stdout"] is None
        assert fake.kwargs["stderr"] is None
        assert supervisor.read_output() == ""

    def test_missing_binary_raises_spawn_error(self, caplog):
        supervisor = ProcessSupervisor("Test validator", "test_missing")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(SpawnError, match="does-not-exist"):
                supervisor.spawn("/nonexistent/does-not-exist")

        assert supervisor.is_running() is False
        assert LifecycleEvent.SPAWN_FAILED.value in lifecycle_events(caplog)

    def test_os_error_from_factory_raises_spawn_error(self):
        def factory(cmd, **kwargs):
            raise PermissionError("permission denied")

        supervisor = ProcessSupervisor("svc", "test", popen_factory=factory)

        with pytest.raises(SpawnError) as exc_info:
            supervisor.spawn("bin")
        assert isinstance(exc_info.value.__cause__, PermissionError)

    def test_spawn_twice_is_rejected(self):
        fake = FakePopen([0])
        supervisor = make_supervisor(fake)
        supervisor.spawn("bin")

        with pytest.raises(SpawnError, match="already running"):
            supervisor.spawn("bin")

    def test_captured_output_is_readable(self):
        supervisor = ProcessSupervisor("svc", "test_capture")
        supervisor.spawn(
            sys.executable,
            ["-c", "import sys; sys.stderr.write('ledger corrupted\\n')"],
        )

        status = supervisor.wait(10)

        assert status.success
        assert "ledger corrupted" in supervisor.read_output()
        supervisor.terminate()


class TestWait:
    """Bounded waits."""

    def test_wait_returns_exit_status(self):
        fake = FakePopen([3])
        supervisor = make_supervisor(fake)
        supervisor.spawn("bin")

        status = supervisor.wait(1.0)

        assert status == ExitStatus(3)
        assert status.success is False

    def test_wait_timeout_does_not_kill(self):
        fake = FakePopen([TIMEOUT])
        supervisor = make_supervisor(fake)
        supervisor.spawn("bin")

        with pytest.raises(WaitTimeoutError) as exc_info:
            supervisor.wait(0.5)

        assert isinstance(exc_info.value, TimeoutError)
        assert exc_info.value.timeout == 0.5
        assert "kill" not in fake.calls
        assert supervisor.is_running() is True

    def test_wait_without_process(self):
        supervisor = ProcessSupervisor("svc", "test")
        with pytest.raises(ProcessNotRunningError):
            supervisor.wait(1.0)


class TestTerminate:
    """The SIGTERM -> SIGKILL escalation."""

    def test_no_process_is_noop(self):
        supervisor = ProcessSupervisor("svc", "test")
        supervisor.terminate()
        assert supervisor.last_exit_status is None

    def test_graceful_exit(self):
        fake = FakePopen([0])
        supervisor = make_supervisor(fake)
        supervisor.spawn("bin")

        supervisor.terminate()

        assert fake.calls == ["terminate", "wait"]
        assert supervisor.is_running() is False
        assert supervisor.last_exit_status == ExitStatus(0)

    def test_sigterm_is_repeated_on_timeout(self, caplog):
        fake = FakePopen([TIMEOUT, TIMEOUT, -15])
        supervisor = make_supervisor(fake)
        supervisor.spawn("bin")

        with caplog.at_level(logging.WARNING):
            supervisor.terminate()

        assert fake.calls == ["terminate", "wait", "terminate", "wait", "terminate", "wait"]
        assert supervisor.last_exit_status.signal == 15
        assert lifecycle_events(caplog).count(LifecycleEvent.TERMINATE_RETRY.value) == 2

    def test_wait_error_consumes_attempt_without_signal(self, caplog):
        fake = FakePopen([OSError("interrupted"), 0])
        supervisor = make_supervisor(fake)
        supervisor.spawn("bin")

        with caplog.at_level(logging.ERROR):
            supervisor.terminate()

        assert fake.calls == ["terminate", "wait", "wait"]
        assert LifecycleEvent.TERMINATE_WAIT_ERROR.value in lifecycle_events(caplog)
        assert supervisor.is_running() is False

    def test_escalates_to_kill_after_attempts(self, caplog):
        fake = FakePopen([TIMEOUT, TIMEOUT, TIMEOUT, -9])
        supervisor = make_supervisor(fake, max_attempts=3)
        supervisor.spawn("bin")

        with caplog.at_level(logging.DEBUG):
            supervisor.terminate()

        assert fake.calls == [
            "terminate", "wait",
            "terminate", "wait",
            "terminate", "wait",
            "terminate", "kill", "wait",
        ]
        assert fake.calls.index("terminate") < fake.calls.index("kill")
        assert supervisor.last_exit_status.signal == 9
        assert supervisor.is_running() is False
        events = lifecycle_events(caplog)
        assert LifecycleEvent.ESCALATED.value in events
        assert LifecycleEvent.KILLED.value in events

    def test_zero_attempts_still_signals_before_kill(self):
        fake = FakePopen([-9])
        supervisor = make_supervisor(fake, max_attempts=0)
        supervisor.spawn("bin")

        supervisor.terminate()

        assert fake.calls == ["terminate", "kill", "wait"]

    def test_process_surviving_kill_is_fatal(self):
        fake = FakePopen([TIMEOUT, TIMEOUT, TIMEOUT])
        supervisor = make_supervisor(fake, max_attempts=2)
        supervisor.spawn("bin")

        with pytest.raises(TerminationFatal) as exc_info:
            supervisor.terminate()

        assert exc_info.value.pid == 4242
        assert "survived SIGKILL" in str(exc_info.value)

    def test_terminate_twice_sends_no_extra_signals(self):
        fake = FakePopen([0])
        supervisor = make_supervisor(fake)
        supervisor.spawn("bin")

        supervisor.terminate()
        calls_after_first = list(fake.calls)
        supervisor.terminate()

        assert fake.calls == calls_after_first

    def test_already_exited_process_is_not_signalled(self, caplog):
        fake = FakePopen([])
        supervisor = make_supervisor(fake)
        supervisor.spawn("bin")
        fake.returncode = 1

        with caplog.at_level(logging.INFO):
            supervisor.terminate()

        assert fake.calls == []
        assert supervisor.last_exit_status == ExitStatus(1)
        assert LifecycleEvent.ALREADY_STOPPED.value in lifecycle_events(caplog)

    def test_real_process_is_stopped(self, python_sleeper):
        supervisor = ProcessSupervisor("svc", "test_real")
        managed = supervisor.spawn(python_sleeper[0], python_sleeper[1:])
        popen = managed.popen

        supervisor.terminate()

        assert popen.poll() is not None
        assert supervisor.last_exit_status.signal == 15


class TestKill:
    """Immediate kill without escalation."""

    def test_kill(self):
        fake = FakePopen([-9])
        supervisor = make_supervisor(fake)
        supervisor.spawn("bin")

        status = supervisor.kill()

        assert fake.calls == ["kill", "wait"]
        assert status.signal == 9
        assert supervisor.is_running() is False

    def test_kill_without_process(self):
        supervisor = ProcessSupervisor("svc", "test")
        with pytest.raises(ProcessNotRunningError):
            supervisor.kill()

    def test_kill_timeout_is_fatal(self):
        fake = FakePopen([TIMEOUT])
        supervisor = make_supervisor(fake)
        supervisor.spawn("bin")

        with pytest.raises(TerminationFatal):
            supervisor.kill()

    def test_kill_waits_at_least_kill_timeout(self):
        fake = FakePopen([-9])
        supervisor = make_supervisor(fake, max_attempts=0, timeout=0.0)
        supervisor.spawn("bin")

        supervisor.terminate()

        assert fake.calls == ["terminate", "kill", "wait"]
        assert fake.timeouts == [KILL_WAIT_TIMEOUT]
        assert supervisor.last_exit_status.signal == 9
        assert supervisor.is_running() is False

    def test_zero_timeout_policy_still_reaps_stubborn_process(self):
        ignore_sigterm = (
            "import signal, time; "
            "signal.signal(signal.SIGTERM, signal.SIG_IGN); "
            "print('ready', flush=True); "
            "time.sleep(60)"
        )
        supervisor = ProcessSupervisor(
            "svc", "test_zero_timeout", policy=RetryPolicy(max_attempts=0, per_attempt_timeout=0.0)
        )
        popen = supervisor.spawn(
            sys.executable, ["-c", ignore_sigterm], stdout=OutputPolicy.CAPTURE
        ).popen
        deadline = time.monotonic() + 10
        while "ready" not in supervisor.read_output() and time.monotonic() < deadline:
            time.sleep(0.05)

        supervisor.terminate()

        assert popen.poll() is not None
        assert supervisor.last_exit_status.signal == 9
        assert supervisor.is_running() is False


class TestScopedCleanup:
    """Termination on every exit path."""

    def test_context_manager_terminates(self, python_sleeper):
        with ProcessSupervisor("svc", "test_ctx") as supervisor:
            popen = supervisor.spawn(python_sleeper[0], python_sleeper[1:]).popen

        assert popen.poll() is not None

    def test_context_manager_terminates_on_exception(self, python_sleeper):
        with pytest.raises(RuntimeError):
            with ProcessSupervisor("svc", "test_ctx_error") as supervisor:
                popen = supervisor.spawn(python_sleeper[0], python_sleeper[1:]).popen
                raise RuntimeError("assertion failed in test body")

        assert popen.poll() is not None

    def test_garbage_collected_supervisor_reaps_process(self, python_sleeper):
        supervisor = ProcessSupervisor("svc", "test_gc")
        popen = supervisor.spawn(python_sleeper[0], python_sleeper[1:]).popen

        del supervisor
        gc.collect()

        assert popen.poll() is not None


class TestExitStatus:
    def test_signal(self):
        assert ExitStatus(-9).signal == 9
        assert ExitStatus(0).signal is None
        assert str(ExitStatus(-15)) == "killed by signal 15"
        assert str(ExitStatus(2)) == "exit code 2"


class TestRetryPolicy:
    def test_rejects_negative_values(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=-1, per_attempt_timeout=1.0)
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=1, per_attempt_timeout=-1.0)
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=1, per_attempt_timeout=1.0, retry_delay=-0.1)

    def test_with_attempts(self):
        policy = RetryPolicy(max_attempts=50, per_attempt_timeout=5.0, retry_delay=0.5)
        assert policy.with_attempts(5) == RetryPolicy(5, 5.0, 0.5)
        assert policy.max_attempts == 50
