import concurrent.futures
import contextlib
import logging
import subprocess
import threading
from typing import Callable, Literal

from ok_serial_hub import _exceptions
from ok_serial_hub import _launch
from ok_serial_hub import _terminate

log = logging.getLogger("ok_serial_hub.supervisor")
child_log = logging.getLogger("ok_serial_hub.companion")

ServerStatus = Literal["running", "stopped"]


class ProcessSupervisor(contextlib.AbstractContextManager):
    """Runs at most one companion process and makes sure it dies with us.

    'resolve' is called on every start to find out what to run and where.
    Leaving the context (or calling teardown()) kills any running child.
    """

    def __init__(
        self,
        resolve: Callable[[], _launch.LaunchSpec],
        *,
        terminator: _terminate.Terminator | None = None,
    ):
        self._resolve = resolve
        self._terminator = terminator or _terminate.default_terminator()
        self._lock = threading.Lock()
        self._child: subprocess.Popen | None = None
        self._closing = threading.Event()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.teardown()

    def __repr__(self) -> str:
        return f"ProcessSupervisor({self._resolve!r}, pid={self.pid})"

    @property
    def pid(self) -> int | None:
        with self._lock:
            return self._child.pid if self._child else None

    def status(self) -> ServerStatus:
        with self._lock:
            return "running" if self._child else "stopped"

    def start(self) -> str:
        with self._lock:
            return self._start_locked()

    def _start_locked(self) -> str:
        """Must be run with self._lock held."""

        if self._child:
            log.debug("Server already running (PID %d)", self._child.pid)
            return "Server already running"

        spec = self._resolve()
        if not spec.cwd.is_dir():
            message = f"Server directory not found: {spec.cwd}"
            raise _exceptions.ProcessPathNotFound(message)

        log.debug("Starting %s in %s", list(spec.argv), spec.cwd)
        try:
            child = subprocess.Popen(
                list(spec.argv),
                cwd=spec.cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **self._terminator.popen_kwargs(),
            )
        except OSError as ex:
            message = f"Failed to start server: {ex}"
            raise _exceptions.ProcessSpawnException(message) from ex

        _log_output(child)
        self._child = child
        log.info("Started server (PID %d)", child.pid)
        return "Server started successfully"

    def stop(self) -> str:
        with self._lock:
            child, self._child = self._child, None
            if not child:
                return "Server was not running"
            self._terminator.terminate(child)

        log.info("Stopped server (PID %d)", child.pid)
        return "Server stopped successfully"

    def teardown(self) -> None:
        """Cancels any pending autostart and kills the server if running"""

        self._closing.set()
        with self._lock:
            child, self._child = self._child, None
            if not child:
                return
            try:
                self._terminator.terminate(child)
                log.info("Stopped server (PID %d) at exit", child.pid)
            except _exceptions.ProcessStopException:
                log.warning("Can't stop server at exit", exc_info=True)

    def autostart(self, delay: float = 2.0) -> concurrent.futures.Future:
        """Calls start() after 'delay' seconds on a background thread.

        The future resolves to start()'s result or exception, and is
        cancelled if teardown() happens first.
        """

        future: concurrent.futures.Future[str] = concurrent.futures.Future()
        future.add_done_callback(_log_autostart)

        def run() -> None:
            if self._closing.wait(timeout=delay):
                future.cancel()
                return

            with self._lock:
                # teardown() may have run between the wait and the lock
                if self._closing.is_set():
                    future.cancel()
                    return
                if not future.set_running_or_notify_cancel():
                    return
                try:
                    result, error = self._start_locked(), None
                except Exception as ex:
                    result, error = None, ex

            if error:
                future.set_exception(error)
            else:
                future.set_result(result)

        name = "server autostart"
        threading.Thread(target=run, name=name, daemon=True).start()
        log.debug("Server autostart in %.1fs", delay)
        return future


def _log_autostart(future: concurrent.futures.Future) -> None:
    if future.cancelled():
        log.debug("Server autostart cancelled")
    elif ex := future.exception():
        log.error("Server autostart failed: %s", ex)


def _log_output(child: subprocess.Popen) -> None:
    streams = ((child.stdout, logging.INFO), (child.stderr, logging.WARNING))
    for pipe, level in streams:
        if pipe:
            args, name = (pipe, child.pid, level), f"PID {child.pid} output"
            thread = threading.Thread(target=_pump, args=args, name=name)
            thread.daemon = True
            thread.start()


def _pump(pipe, pid: int, level: int) -> None:
    with pipe:
        for line in iter(pipe.readline, b""):
            if text := line.decode("utf-8", errors="replace").rstrip():
                child_log.log(level, "[%d] %s", pid, text)
