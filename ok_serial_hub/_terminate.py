import abc
import logging
import os
import signal
import subprocess
import sys
from typing import Any

from ok_serial_hub import _exceptions

log = logging.getLogger("ok_serial_hub.terminate")


class Terminator(abc.ABC):
    """Platform policy for spawning and killing the companion process"""

    @abc.abstractmethod
    def popen_kwargs(self) -> dict[str, Any]:
        """Extra subprocess.Popen arguments so terminate() can reach children"""

    @abc.abstractmethod
    def terminate(self, child: subprocess.Popen) -> None:
        """Kills 'child' and everything it spawned"""


class ProcessTreeTerminator(Terminator):
    """Windows: 'taskkill /T /F' the whole tree, without waiting on it.

    The launcher is usually a wrapper (npm.cmd, node shims) that starts
    the real server as its own child, and killing only the wrapper would
    leave the server running.
    """

    def popen_kwargs(self) -> dict[str, Any]:
        flags = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        flags |= getattr(subprocess, "CREATE_NO_WINDOW", 0)
        return {"creationflags": flags}

    def terminate(self, child: subprocess.Popen) -> None:
        argv = ["taskkill", "/PID", str(child.pid), "/T", "/F"]
        try:
            subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                **self.popen_kwargs(),
            )
            log.debug("Sent taskkill for tree of PID %d", child.pid)
        except OSError:
            log.warning("Can't run taskkill for PID %d", child.pid, exc_info=True)


class ProcessGroupTerminator(Terminator):
    """POSIX: the child leads its own session, so one killpg() hits it all"""

    def __init__(self, reap_timeout: float = 5.0):
        self._reap_timeout = reap_timeout

    def popen_kwargs(self) -> dict[str, Any]:
        return {"start_new_session": True}

    def terminate(self, child: subprocess.Popen) -> None:
        try:
            os.killpg(child.pid, signal.SIGKILL)
            log.debug("Sent SIGKILL to process group %d", child.pid)
        except ProcessLookupError:
            log.debug("Process group %d already gone", child.pid)
        except OSError as ex:
            message = f"Failed to stop server (PID {child.pid}): {ex}"
            raise _exceptions.ProcessStopException(message) from ex

        try:
            child.wait(timeout=self._reap_timeout)
        except subprocess.TimeoutExpired:
            log.warning("PID %d still running after SIGKILL", child.pid)


def default_terminator() -> Terminator:
    """The termination policy for the platform we're running on"""

    if sys.platform == "win32":
        return ProcessTreeTerminator()
    return ProcessGroupTerminator()
