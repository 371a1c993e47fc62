"""Supervision of the single build/run child process."""

import logging
import os
import signal
import subprocess
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# Set in the daemon's environment so supervised descendants can detect nesting
NESTED_ENV_VAR = "FORGEWATCH_IS"

# Exit statuses a POSIX shell uses when it cannot run the command
SHELL_EXEC_FAILURES = {126: "not executable", 127: "not found"}


class ChildProcess(Protocol):
    """Capability for starting and stopping shell commands."""

    def start(self, command: str) -> Any:
        """Start ``command`` through a shell. Raises OSError on failure."""
        ...

    def poll(self, handle: Any) -> int | None:
        """Exit status if the child has exited, else None."""
        ...

    def terminate(self, handle: Any) -> None:
        """Ask the child to exit. A child that is already gone is not an error."""
        ...

    def wait(self, handle: Any) -> int:
        """Block until the child is reaped and return its exit status."""
        ...


class ShellChildProcess:
    """ChildProcess implementation on top of subprocess.

    On POSIX each child gets its own session so the whole process tree
    spawned by the shell is signalled together.
    """

    def __init__(self, shell: str | None = None):
        """Initialize.

        Args:
            shell: Shell executable (default: the platform's /bin/sh or cmd.exe)
        """
        self.shell = shell

    def start(self, command: str) -> subprocess.Popen:
        return subprocess.Popen(
            command,
            shell=True,
            executable=self.shell,
            start_new_session=os.name == "posix",
        )

    def poll(self, handle: subprocess.Popen) -> int | None:
        return handle.poll()

    def terminate(self, handle: subprocess.Popen) -> None:
        if os.name != "posix":
            if handle.poll() is None:
                handle.terminate()
            return
        # The group outlives its leader while background members remain
        try:
            os.killpg(handle.pid, signal.SIGTERM)
        except ProcessLookupError:
            pass

    def wait(self, handle: subprocess.Popen) -> int:
        return handle.wait()


class SupervisorState(Enum):
    """Lifecycle of the supervised child slot."""

    IDLE = "idle"
    RUNNING = "running"
    TERMINATING = "terminating"
    CLOSED = "closed"


class BuildSupervisor:
    """Keeps at most one build child alive.

    restart() terminates and reaps the current child before starting the next
    one, so two builds never overlap.
    """

    def __init__(self, processes: ChildProcess | None = None):
        """Initialize supervisor.

        Args:
            processes: Process capability (defaults to ShellChildProcess)
        """
        self.processes = processes or ShellChildProcess()
        self.current_child: Any | None = None
        self.state = SupervisorState.IDLE

    def _report_previous_exit(self, status: int) -> None:
        if status in SHELL_EXEC_FAILURES:
            logger.warning(
                f"Build command could not be executed ({SHELL_EXEC_FAILURES[status]}, exit {status})"
            )
        elif status != 0:
            logger.info(f"Previous build exited with status {status}")

    def _stop_current(self) -> None:
        child = self.current_child
        if child is None:
            return

        status = self.processes.poll(child)
        if status is not None:
            self._report_previous_exit(status)

        self.state = SupervisorState.TERMINATING
        pid = getattr(child, "pid", "?")
        logger.debug(f"Killing process {pid}")
        try:
            self.processes.terminate(child)
        except OSError as e:
            logger.debug(f"Could not signal process {pid}: {e}")
        try:
            self.processes.wait(child)
            logger.debug(f"Process {pid} terminated")
        except OSError as e:
            logger.debug(f"Could not reap process {pid}: {e}")

        self.current_child = None
        self.state = SupervisorState.IDLE

    def restart(self, command: str) -> None:
        """Replace the running build with a fresh run of ``command``.

        Args:
            command: Shell command string (may use pipes, redirection, etc.)
        """
        if self.state is SupervisorState.CLOSED:
            logger.debug("Supervisor is shut down, not starting build")
            return

        self._stop_current()

        try:
            child = self.processes.start(command)
        except OSError as e:
            logger.warning(f"Failed to start build command: {e}")
            return

        self.current_child = child
        self.state = SupervisorState.RUNNING
        logger.info(f"Started build process with PID {getattr(child, 'pid', '?')}")

    def shutdown(self) -> None:
        """Terminate and reap the current child; no builds start afterwards."""
        if self.state is SupervisorState.CLOSED:
            return
        self._stop_current()
        self.state = SupervisorState.CLOSED
