"""
Serial port sessions (PySerial wrapper) and companion server supervision
for desktop applications.
"""

from beartype import BeartypeConf as _BeartypeConf
from beartype.claw import beartype_this_package as _beartype_me

# ruff: noqa: E402
_beartype_me(conf=_BeartypeConf(is_pep484_tower=True))

from ok_serial_hub._commands import (
    CommandRequest,
    CommandResult,
    DeviceHub,
)

from ok_serial_hub._config import BAUD_RATES, READ_TIMEOUT, PortConfig

from ok_serial_hub._exceptions import (
    HubException,
    ProcessException,
    ProcessPathNotFound,
    ProcessSpawnException,
    ProcessStopException,
    SerialException,
    SerialIoException,
    SerialNotOpen,
    SerialOpenException,
    SerialReadException,
    SerialScanException,
    SerialSessionBusy,
    SerialWriteException,
)

from ok_serial_hub._launch import BuildProfile, CompanionOptions, LaunchSpec
from ok_serial_hub._registry import PortSession, SerialSessionRegistry
from ok_serial_hub._scanning import PortKind, SerialPort, scan_serial_ports
from ok_serial_hub._supervisor import ProcessSupervisor, ServerStatus

from ok_serial_hub._terminate import (
    ProcessGroupTerminator,
    ProcessTreeTerminator,
    Terminator,
    default_terminator,
)

__all__ = [n for n in dir() if not n.startswith("_")]
