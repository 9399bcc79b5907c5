import contextlib
import io
import json
import ok_logging_setup
import os
import pathlib
import pty
import pytest
import sys
import typing

import ok_serial_hub

ok_logging_setup.install(
    {
        "OK_LOGGING_LEVEL": "ok_serial_hub=DEBUG,WARNING",
        "OK_LOGGING_OUTPUT": "stdout",
    }
)

SLEEPER = "import time; time.sleep(60)"


class PseudoTtySerial(typing.NamedTuple):
    path: str
    control: io.FileIO
    simulated: io.FileIO


@pytest.fixture
def pty_serial():
    with contextlib.ExitStack() as cleanup:
        ctrl_fd, sim_fd = pty.openpty()
        path = os.ttyname(sim_fd)
        ctrl = cleanup.enter_context(os.fdopen(ctrl_fd, "r+b", buffering=0))
        sim = cleanup.enter_context(os.fdopen(sim_fd, "r+b", buffering=0))
        yield PseudoTtySerial(path=path, control=ctrl, simulated=sim)


@pytest.fixture
def registry():
    with ok_serial_hub.SerialSessionRegistry() as reg:
        yield reg


@pytest.fixture
def set_scan_override(monkeypatch, tmp_path):
    path = tmp_path / "scan.json"
    path.write_text("{}")
    monkeypatch.setenv("OK_SERIAL_HUB_SCAN_OVERRIDE", str(path))

    def set_ports(ports: dict[str, dict[str, str]]):
        path.write_text(json.dumps(ports))

    return set_ports


@pytest.fixture
def sleeper_spec(tmp_path) -> ok_serial_hub.LaunchSpec:
    """A companion stand-in: a Python child that just sleeps"""

    return ok_serial_hub.LaunchSpec(
        argv=(sys.executable, "-c", SLEEPER), cwd=pathlib.Path(tmp_path)
    )


@pytest.fixture
def supervisor(sleeper_spec):
    with ok_serial_hub.ProcessSupervisor(lambda: sleeper_spec) as sup:
        yield sup
