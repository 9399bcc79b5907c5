import contextlib
import dataclasses
import errno
import logging
import threading

import pydantic
import serial

from ok_serial_hub import _config
from ok_serial_hub import _exceptions
from ok_serial_hub import _scanning

log = logging.getLogger("ok_serial_hub.registry")
data_log = logging.getLogger(log.name + ".data")


@dataclasses.dataclass
class PortSession:
    """One open serial port, exclusively owned by the registry"""

    name: str
    config: _config.PortConfig
    handle: serial.Serial


class SerialSessionRegistry(contextlib.AbstractContextManager):
    """Tracks open serial ports by name and performs I/O on them.

    Every operation holds one registry-wide lock, so a read blocking on
    one port also holds up writes and closes on other ports for up to
    READ_TIMEOUT.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, PortSession] = {}

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close_all()

    def __repr__(self) -> str:
        with self._lock:
            return f"SerialSessionRegistry({sorted(self._sessions)!r})"

    def list_ports(self) -> list[_scanning.SerialPort]:
        return _scanning.scan_serial_ports()

    def is_open(self, name: str) -> bool:
        with self._lock:
            return name in self._sessions

    def open_ports(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    @pydantic.validate_call
    def open(
        self, name: str, config: _config.PortConfigLike = _config.PortConfig()
    ) -> str:
        if isinstance(config, int):
            config = _config.PortConfig(baud_rate=config)
        elif isinstance(config, dict):
            config = _config.PortConfig.model_validate(config)

        with self._lock:
            if name in self._sessions:
                message = "Port is already open"
                raise _exceptions.SerialSessionBusy(message, name)

            log.debug("Opening %s (%s)", name, config)
            try:
                handle = serial.Serial(
                    port=name,
                    timeout=_config.READ_TIMEOUT,
                    exclusive=True,
                    **config.serial_kwargs(),
                )
            except (OSError, ValueError) as ex:
                if getattr(ex, "errno", None) == errno.EBUSY:
                    message = "Serial port busy (EBUSY)"
                else:
                    message = f"Failed to open port: {ex}"
                raise _exceptions.SerialOpenException(message, name) from ex

            self._sessions[name] = PortSession(name, config, handle)

        log.info("Opened %s at %d baud", name, config.baud_rate)
        return f"Port {name} opened successfully"

    def close(self, name: str) -> str:
        with self._lock:
            session = self._sessions.pop(name, None)
            if not session:
                message = "Port not found or already closed"
                raise _exceptions.SerialNotOpen(message, name)
            _release(session)

        log.info("Closed %s", name)
        return f"Port {name} closed successfully"

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            for session in sessions:
                _release(session)
        if sessions:
            log.debug("Closed %d ports", len(sessions))

    @pydantic.validate_call
    def write(self, name: str, data: bytes | str) -> int:
        """Writes and flushes data, returning the count the OS accepted"""

        if isinstance(data, str):
            data = data.encode()

        with self._lock:
            handle = self._handle(name)
            try:
                written = handle.write(data)
            except OSError as ex:
                message = f"Failed to write to port: {ex}"
                data_log.warning("%s: %s", name, message)
                raise _exceptions.SerialWriteException(message, name) from ex

            try:
                handle.flush()  # waits for transmission, not just buffering
            except OSError as ex:
                message = f"Failed to flush port: {ex}"
                data_log.warning("%s: %s", name, message)
                raise _exceptions.SerialWriteException(message, name) from ex

        written = len(data) if written is None else written
        data_log.debug("%s: Wrote %d/%db", name, written, len(data))
        return written

    @pydantic.validate_call
    def read_bytes(self, name: str, max_len: pydantic.NonNegativeInt) -> bytes:
        """Reads up to max_len bytes; empty if nothing arrives in time"""

        with self._lock:
            handle = self._handle(name)
            if max_len == 0:
                return b""
            try:
                # Block (up to the timeout) for one byte, then grab what's waiting
                incoming = handle.read(size=1)
                if incoming and max_len > 1:
                    waiting = min(handle.in_waiting, max_len - 1)
                    if waiting > 0:
                        incoming += handle.read(size=waiting)
            except OSError as ex:
                message = f"Failed to read from port: {ex}"
                data_log.warning("%s: %s", name, message)
                raise _exceptions.SerialReadException(message, name) from ex

        data_log.debug("%s: Read %db (max %d)", name, len(incoming), max_len)
        return bytes(incoming)

    def read(self, name: str, max_len: int) -> str:
        """Like read_bytes(), decoded as UTF-8 with replacement characters"""

        return self.read_bytes(name, max_len).decode("utf-8", errors="replace")

    def _handle(self, name: str) -> serial.Serial:
        """Must be run with self._lock held."""

        session = self._sessions.get(name)
        if not session:
            raise _exceptions.SerialNotOpen("Port not open", name)
        return session.handle


def _release(session: PortSession) -> None:
    try:
        session.handle.close()
    except OSError:
        log.warning("Can't close %s cleanly", session.name, exc_info=True)
