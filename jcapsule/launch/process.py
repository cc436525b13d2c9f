"""
Child process supervision.

Starts the planned command, waits for it and relays its exit status.
Cleanup runs through LaunchSession.cleanup(), which is idempotent; it is
reached from normal exit, from SIGTERM/SIGHUP handlers and from atexit,
so whichever comes first does the work.

Stdio is inherited by default. With ``pump_io`` each stream gets its own
copier thread.
"""

from __future__ import annotations

import atexit
import logging
import signal
import subprocess
import sys
import threading
from collections.abc import Callable
from typing import IO, TYPE_CHECKING

from jcapsule.errors import LaunchEnvironmentError

if TYPE_CHECKING:
    from .plan import LaunchPlan
    from .session import LaunchSession

logger = logging.getLogger(__name__)

PUMP_BUFFER_SIZE = 8192
TERMINATE_TIMEOUT = 5.0


def stream_copier(name: str, source: IO[bytes], sink: IO[bytes], close_sink: bool = False) -> Callable[[], None]:
    """
    Build the body of a pump thread copying ``source`` to ``sink`` until EOF.

    Each pump gets its own closure; nothing is shared between pumps.
    """

    def pump() -> None:
        try:
            while True:
                read = getattr(source, "read1", source.read)
                chunk = read(PUMP_BUFFER_SIZE)
                if not chunk:
                    break
                sink.write(chunk)
                sink.flush()
        except (OSError, ValueError) as e:
            logger.debug(f"[process] {name} pump stopped: {e}")
        finally:
            if close_sink:
                try:
                    sink.close()
                except OSError as e:
                    logger.debug(f"[process] Could not close {name} sink: {e}")
        logger.debug(f"[process] {name} pump finished")

    return pump


class ChildProcess:
    """
    The launched application.

    Example:
        child = ChildProcess(plan, session)
        child.start()
        exit_code = child.wait()
    """

    def __init__(self, plan: "LaunchPlan", session: "LaunchSession", pump_io: bool = False) -> None:
        self.plan = plan
        self.session = session
        self.pump_io = pump_io
        self._process: subprocess.Popen | None = None
        self._pumps: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        """
        Raises:
            LaunchEnvironmentError: If the executable cannot be started
        """
        pipe = subprocess.PIPE if self.pump_io else None
        try:
            self._process = subprocess.Popen(
                self.plan.command,
                env=self.plan.environment(),
                stdin=pipe,
                stdout=pipe,
                stderr=pipe,
            )
        except OSError as e:
            raise LaunchEnvironmentError(f"Could not start {self.plan.executable}: {e}") from e

        self.plan.pid = self._process.pid
        self.session.add_cleanup(self.terminate)
        logger.info(f"[process] Started child process {self.plan.pid}")
        if self.pump_io:
            self._start_pumps()

    def _start_pumps(self) -> None:
        process = self._process
        pumps = [
            ("stdout", stream_copier("stdout", process.stdout, sys.stdout.buffer), False),
            ("stderr", stream_copier("stderr", process.stderr, sys.stderr.buffer), False),
            # stdin may block forever on the terminal; don't let it hold up exit
            ("stdin", stream_copier("stdin", sys.stdin.buffer, process.stdin, close_sink=True), True),
        ]
        for name, body, daemon in pumps:
            thread = threading.Thread(target=body, name=f"capsule-pipe-{name}", daemon=daemon)
            thread.start()
            if not daemon:
                self._pumps.append(thread)

    def wait(self) -> int:
        """Wait for the child and return its exit status."""
        if self._process is None:
            raise RuntimeError("Child process not started")
        exit_code = self._process.wait()
        for thread in self._pumps:
            thread.join()
        self.plan.exit_code = exit_code
        logger.info(f"[process] Child process {self.plan.pid} exited with {exit_code}")
        return exit_code

    def terminate(self) -> None:
        """Stop the child if it is still running. Never raises."""
        if not self.running:
            return
        logger.info(f"[process] Terminating child process {self.plan.pid}")
        try:
            self._process.terminate()
            self._process.wait(timeout=TERMINATE_TIMEOUT)
        except subprocess.TimeoutExpired:
            self._process.kill()
        except OSError as e:
            logger.warning(f"[process] Could not terminate child process {self.plan.pid}: {e}")


def install_cleanup_handlers(session: "LaunchSession") -> None:
    """
    Route atexit and termination signals to the session's cleanup.

    Signal handlers can only be installed from the main thread; elsewhere
    only the atexit hook is registered.
    """
    atexit.register(session.cleanup)
    if threading.current_thread() is not threading.main_thread():
        return

    def on_signal(signum: int, frame) -> None:
        logger.info(f"[process] Received signal {signum}; cleaning up")
        session.cleanup()
        raise SystemExit(128 + signum)

    for name in ("SIGTERM", "SIGHUP"):
        signum = getattr(signal, name, None)
        if signum is not None:
            signal.signal(signum, on_signal)
