"""
Process supervisor for a single external service process.

Owns exactly one spawned OS process: launches it detached from the
controlling terminal, captures its diagnostic output into a temporary
file, and tears it down through a SIGTERM-then-SIGKILL escalation.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import weakref
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any

from validator_harness.core.errors import (
    ProcessNotRunningError,
    SpawnError,
    TerminationFatal,
    WaitTimeoutError,
)
from validator_harness.core.events import LifecycleEvent, log_event
from validator_harness.core.policy import TERMINATION_POLICY, RetryPolicy

logger = logging.getLogger(__name__)

# Seconds the garbage-collection guard waits between SIGTERM and SIGKILL
ORPHAN_GRACE_PERIOD = 2.0

# Minimum wait for the kernel to reap a process after SIGKILL
KILL_WAIT_TIMEOUT = 5.0


class OutputPolicy(Enum):
    """Where a child stream goes."""

    INHERIT = "inherit"  # Share the parent's stream
    DISCARD = "discard"  # /dev/null
    CAPTURE = "capture"  # Buffered into the diagnostic sink


@dataclass(frozen=True)
class ExitStatus:
    """Exit status of a reaped process."""

    returncode: int

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def signal(self) -> int | None:
        """Signal number that killed the process, if any."""
        return -self.returncode if self.returncode < 0 else None

    def __str__(self) -> str:
        if self.signal is not None:
            return f"killed by signal {self.signal}"
        return f"exit code {self.returncode}"


@dataclass
class ManagedProcess:
    """Handle to a spawned process and its captured output."""

    pid: int
    service_name: str
    test_name: str
    popen: subprocess.Popen = field(repr=False)
    output_sink: IO[bytes] | None = field(default=None, repr=False)

    def read_output(self) -> str:
        """Return everything the process wrote to its captured streams."""
        if self.output_sink is None or self.output_sink.closed:
            return ""
        # The child shares the file offset; pread leaves it untouched
        fd = self.output_sink.fileno()
        chunks = []
        offset = 0
        try:
            size = os.fstat(fd).st_size
            while offset < size:
                chunk = os.pread(fd, size - offset, offset)
                if not chunk:
                    break
                chunks.append(chunk)
                offset += len(chunk)
        except OSError as e:
            return f"<unable to read process output: {e}>"
        return b"".join(chunks).decode(errors="replace")

    def close_sink(self) -> None:
        if self.output_sink is not None and not self.output_sink.closed:
            self.output_sink.close()


def _reap_orphan(popen: subprocess.Popen, service_name: str, sink: IO[bytes] | None) -> None:
    """Last-resort cleanup for a process whose supervisor was never terminated."""
    if popen.poll() is None:
        logger.warning(
            f"{service_name} process {popen.pid} was not terminated explicitly; reaping it"
        )
        try:
            popen.terminate()
            popen.wait(timeout=ORPHAN_GRACE_PERIOD)
        except subprocess.TimeoutExpired:
            popen.kill()
            popen.wait()
        except OSError as e:
            logger.error(f"Unable to reap process {popen.pid}: {e}")
    if sink is not None and not sink.closed:
        sink.close()


class ProcessSupervisor:
    """
    Supervises one OS process for the lifetime of a test.

    The supervisor is a scoped resource: terminate() runs when it is used
    as a context manager, and a weakref finalizer reaps the process if the
    supervisor is garbage collected (or the interpreter exits) while the
    process is still held.
    """

    def __init__(
        self,
        service_name: str,
        test_name: str,
        policy: RetryPolicy | None = None,
        popen_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        self.service_name = service_name
        self.test_name = test_name
        self.policy = policy or TERMINATION_POLICY
        self._popen_factory = popen_factory
        self._process: ManagedProcess | None = None
        self._finalizer: weakref.finalize | None = None
        self.last_exit_status: ExitStatus | None = None

    @property
    def process(self) -> ManagedProcess | None:
        return self._process

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    def is_running(self) -> bool:
        """True while a process handle is held (it may already have exited)."""
        return self._process is not None

    def spawn(
        self,
        binary: str | Path,
        args: Sequence[str] = (),
        *,
        cwd: str | Path | None = None,
        stdout: OutputPolicy = OutputPolicy.DISCARD,
        stderr: OutputPolicy = OutputPolicy.CAPTURE,
        env: dict[str, str] | None = None,
    ) -> ManagedProcess:
        """
        Launch ``binary`` with ``args``.

        Captured streams share one anonymous temporary file which can be
        read back with read_output().

        Raises:
            SpawnError: If a process is already held or the OS refuses to
                launch the binary.
        """
        if self._process is not None:
            raise SpawnError(
                f"{self.service_name} process already running (PID={self._process.pid})"
            )

        cmd = [str(binary), *args]
        sink: IO[bytes] | None = None
        if OutputPolicy.CAPTURE in (stdout, stderr):
            sink = tempfile.TemporaryFile()

        logger.debug(f"Starting process {cmd}")
        try:
            popen = self._popen_factory(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=self._redirection(stdout, sink),
                stderr=self._redirection(stderr, sink),
                cwd=str(cwd) if cwd is not None else None,
                env=env,
                start_new_session=True,  # Detach from the controlling terminal
            )
        except OSError as e:
            if sink is not None:
                sink.close()
            log_event(
                logger,
                logging.ERROR,
                LifecycleEvent.SPAWN_FAILED,
                f"Failed to start {self.service_name} ({binary}): {e}",
                service=self.service_name,
            )
            raise SpawnError(f"Failed to start {self.service_name} ({binary}): {e}") from e

        self._process = ManagedProcess(
            pid=popen.pid,
            service_name=self.service_name,
            test_name=self.test_name,
            popen=popen,
            output_sink=sink,
        )
        self._finalizer = weakref.finalize(self, _reap_orphan, popen, self.service_name, sink)
        log_event(
            logger,
            logging.DEBUG,
            LifecycleEvent.SPAWN,
            f"Started {self.service_name} process PID {popen.pid} for test {self.test_name!r}",
            pid=popen.pid,
            service=self.service_name,
        )
        return self._process

    @staticmethod
    def _redirection(policy: OutputPolicy, sink: IO[bytes] | None) -> Any:
        if policy == OutputPolicy.CAPTURE:
            return sink
        if policy == OutputPolicy.DISCARD:
            return subprocess.DEVNULL
        return None

    def read_output(self) -> str:
        """Full captured diagnostic output of the held process."""
        if self._process is None:
            return ""
        return self._process.read_output()

    def wait(self, timeout: float) -> ExitStatus:
        """
        Block until the process exits or ``timeout`` seconds elapse.

        The process is not killed on timeout.

        Raises:
            ProcessNotRunningError: If no process is held.
            WaitTimeoutError: If the process is still alive after ``timeout``.
        """
        managed = self._require_process()
        try:
            returncode = managed.popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise WaitTimeoutError(managed.pid, timeout) from e
        return ExitStatus(returncode)

    def kill(self) -> ExitStatus:
        """
        SIGKILL the process and block until it is reaped. No escalation.

        Raises:
            ProcessNotRunningError: If no process is held.
            TerminationFatal: If the process does not exit after SIGKILL.
        """
        managed = self._require_process()
        try:
            managed.popen.kill()
        except ProcessLookupError:
            pass

        try:
            status = self.wait(max(self.policy.per_attempt_timeout, KILL_WAIT_TIMEOUT))
        except WaitTimeoutError as e:
            raise TerminationFatal(
                managed.pid,
                f"{self.service_name} process (PID={managed.pid}) survived SIGKILL",
            ) from e

        log_event(
            logger,
            logging.DEBUG,
            LifecycleEvent.KILLED,
            f"{self.service_name} service process for {self.test_name!r} killed",
            pid=managed.pid,
            service=self.service_name,
        )
        self._release(status)
        return status

    def terminate(self) -> None:
        """
        Stop the process: SIGTERM, re-sent while waiting, then SIGKILL.

        Idempotent; does nothing when no process is held.

        Raises:
            TerminationFatal: If the process outlives SIGKILL as well.
        """
        managed = self._process
        if managed is None:
            return

        popen = managed.popen
        pid = managed.pid
        returncode = popen.poll()
        if returncode is not None:
            log_event(
                logger,
                logging.INFO,
                LifecycleEvent.ALREADY_STOPPED,
                "No need to terminate the process: already stopped",
                pid=pid,
                service=self.service_name,
            )
            self._release(ExitStatus(returncode))
            return

        self._send_sigterm(popen)
        log_event(
            logger,
            logging.DEBUG,
            LifecycleEvent.TERMINATE_REQUESTED,
            f"{self.service_name} service process for test {self.test_name!r} stopping (PID={pid})",
            pid=pid,
            service=self.service_name,
        )

        timeout = self.policy.per_attempt_timeout
        status: ExitStatus | None = None
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                status = self.wait(timeout)
                break
            except WaitTimeoutError:
                log_event(
                    logger,
                    logging.WARNING,
                    LifecycleEvent.TERMINATE_RETRY,
                    f"Process {pid} did not stop for {timeout}s. Repeat SIGTERM.",
                    pid=pid,
                    attempt=attempt,
                    service=self.service_name,
                )
                self._send_sigterm(popen)
            except OSError as e:
                log_event(
                    logger,
                    logging.ERROR,
                    LifecycleEvent.TERMINATE_WAIT_ERROR,
                    f"Unable to stop process {pid}: {e}",
                    pid=pid,
                    attempt=attempt,
                    service=self.service_name,
                )

        if status is None:
            log_event(
                logger,
                logging.ERROR,
                LifecycleEvent.ESCALATED,
                f"Waited too long for process {pid} to terminate; sending SIGKILL",
                pid=pid,
                service=self.service_name,
            )
            self.kill()
            return

        log_event(
            logger,
            logging.DEBUG,
            LifecycleEvent.TERMINATED,
            f"{self.service_name} service process for test {self.test_name!r} "
            f"stopped with {status} (PID={pid})",
            pid=pid,
            returncode=status.returncode,
            service=self.service_name,
        )
        self._release(status)

    @staticmethod
    def _send_sigterm(popen: subprocess.Popen) -> None:
        try:
            popen.terminate()
        except ProcessLookupError:
            pass

    def _require_process(self) -> ManagedProcess:
        if self._process is None:
            raise ProcessNotRunningError(f"{self.service_name} process does not exist")
        return self._process

    def _release(self, status: ExitStatus) -> None:
        self.last_exit_status = status
        if self._finalizer is not None:
            self._finalizer.detach()
            self._finalizer = None
        if self._process is not None:
            self._process.close_sink()
        self._process = None

    def __enter__(self) -> ProcessSupervisor:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()
