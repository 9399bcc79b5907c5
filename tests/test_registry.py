"""Unit tests for ok_serial_hub._registry, using a pty as the device."""

import termios
import threading
import time

import pydantic
import pytest
import serial

import ok_serial_hub
from ok_serial_hub import PortConfig


def read_until(registry, port, expected: str, timeout: float = 2.0) -> str:
    deadline, text = time.monotonic() + timeout, ""
    while len(text) < len(expected) and time.monotonic() < deadline:
        text += registry.read(port, 64)
    return text


#
# Basic smoke test
#


def test_end_to_end(registry, pty_serial):
    config = {"baud_rate": 9600, "data_bits": 8, "stop_bits": 1, "parity": "none"}
    port = pty_serial.path

    assert registry.open(port, config) == f"Port {port} opened successfully"
    tcattr = termios.tcgetattr(pty_serial.simulated.fileno())
    iflag, oflag, cflag, lflag, ispeed, ospeed, cc = tcattr
    assert ispeed == termios.B9600

    assert registry.write(port, "AT\r\n") == 4
    assert pty_serial.control.read(256) == b"AT\r\n"

    pty_serial.control.write(b"OK\r\n")
    assert read_until(registry, port, "OK\r\n") == "OK\r\n"

    assert registry.close(port) == f"Port {port} closed successfully"
    with pytest.raises(ok_serial_hub.SerialNotOpen):
        registry.read(port, 64)


def test_open_with_baud_only(registry, pty_serial):
    registry.open(pty_serial.path, 57600)
    tcattr = termios.tcgetattr(pty_serial.simulated.fileno())
    assert tcattr[4] == termios.B57600


def test_open_applies_framing(registry, pty_serial, mocker):
    opener = mocker.patch("serial.Serial", wraps=serial.Serial)
    config = PortConfig(baud_rate=19200, data_bits=7, stop_bits=2, parity="even")
    registry.open(pty_serial.path, config)

    kwargs = opener.call_args.kwargs
    assert kwargs["port"] == pty_serial.path
    assert kwargs["baudrate"] == 19200
    assert kwargs["bytesize"] == serial.SEVENBITS
    assert kwargs["stopbits"] == serial.STOPBITS_TWO
    assert kwargs["parity"] == serial.PARITY_EVEN
    assert kwargs["timeout"] == ok_serial_hub.READ_TIMEOUT == 0.1
    assert kwargs["exclusive"] is True


def test_open_falls_back_on_unknown_framing(registry, pty_serial, mocker):
    opener = mocker.patch("serial.Serial", wraps=serial.Serial)
    config = {"baud_rate": 9600, "data_bits": 9, "stop_bits": 3, "parity": "x"}
    registry.open(pty_serial.path, config)

    kwargs = opener.call_args.kwargs
    assert kwargs["bytesize"] == serial.EIGHTBITS
    assert kwargs["stopbits"] == serial.STOPBITS_ONE
    assert kwargs["parity"] == serial.PARITY_NONE


def test_open_rejects_bad_config_dict(registry, pty_serial):
    with pytest.raises(pydantic.ValidationError):
        registry.open(pty_serial.path, {"baud_rate": -1})
    assert not registry.is_open(pty_serial.path)


#
# Session bookkeeping
#


def test_duplicate_open_fails(registry, pty_serial):
    registry.open(pty_serial.path, 9600)
    with pytest.raises(ok_serial_hub.SerialSessionBusy):
        registry.open(pty_serial.path, 9600)

    # the first session is untouched
    assert registry.write(pty_serial.path, b"STILL OPEN") == 10
    assert pty_serial.control.read(256) == b"STILL OPEN"


def test_reopen_after_close(registry, pty_serial):
    registry.open(pty_serial.path, 9600)
    registry.close(pty_serial.path)
    registry.open(pty_serial.path, 9600)
    assert registry.is_open(pty_serial.path)


def test_close_unknown_port(registry):
    with pytest.raises(ok_serial_hub.SerialNotOpen, match="not found"):
        registry.close("/dev/ttyNOPE")


def test_close_twice(registry, pty_serial):
    registry.open(pty_serial.path, 9600)
    registry.close(pty_serial.path)
    with pytest.raises(ok_serial_hub.SerialNotOpen):
        registry.close(pty_serial.path)


def test_io_before_open_fails(registry, pty_serial):
    with pytest.raises(ok_serial_hub.SerialNotOpen, match="not open"):
        registry.write(pty_serial.path, "AT\r\n")
    with pytest.raises(ok_serial_hub.SerialNotOpen):
        registry.read(pty_serial.path, 64)
    with pytest.raises(ok_serial_hub.SerialNotOpen):
        registry.read_bytes(pty_serial.path, 64)


def test_open_missing_device(registry):
    with pytest.raises(ok_serial_hub.SerialOpenException) as exc_info:
        registry.open("/dev/does-not-exist-ok-serial-hub", 9600)
    assert "Failed to open port" in str(exc_info.value)
    assert exc_info.value.port == "/dev/does-not-exist-ok-serial-hub"
    assert not registry.is_open("/dev/does-not-exist-ok-serial-hub")


def test_exclusive_across_registries(registry, pty_serial):
    registry.open(pty_serial.path, 9600)
    with ok_serial_hub.SerialSessionRegistry() as other:
        with pytest.raises(ok_serial_hub.SerialOpenException):
            other.open(pty_serial.path, 9600)


def test_open_ports_and_close_all(pty_serial):
    with ok_serial_hub.SerialSessionRegistry() as reg:
        reg.open(pty_serial.path, 9600)
        assert reg.open_ports() == [pty_serial.path]
        reg.close_all()
        assert reg.open_ports() == []

    with ok_serial_hub.SerialSessionRegistry() as reg:
        reg.open(pty_serial.path, 9600)
    assert not reg.is_open(pty_serial.path)

    # handle was released on exit, so a new registry can claim the port
    with ok_serial_hub.SerialSessionRegistry() as reg:
        reg.open(pty_serial.path, 9600)


#
# Reading
#


def test_read_timeout_is_empty(registry, pty_serial):
    registry.open(pty_serial.path, 9600)
    start = time.monotonic()
    assert registry.read(pty_serial.path, 64) == ""
    elapsed = time.monotonic() - start
    assert 0.05 <= elapsed <= 0.5


def test_read_respects_max_len(registry, pty_serial):
    registry.open(pty_serial.path, 9600)
    pty_serial.control.write(b"0123456789")
    assert registry.read_bytes(pty_serial.path, 4) == b"0123"

    rest = b""
    while len(rest) < 6:
        chunk = registry.read_bytes(pty_serial.path, 64)
        assert chunk
        rest += chunk
    assert rest == b"456789"


def test_read_zero_length(registry, pty_serial):
    registry.open(pty_serial.path, 9600)
    pty_serial.control.write(b"DATA")
    assert registry.read_bytes(pty_serial.path, 0) == b""


def test_read_lossy_utf8(registry, pty_serial):
    registry.open(pty_serial.path, 9600)
    pty_serial.control.write("µ ok".encode() + b"\xff")
    assert read_until(registry, pty_serial.path, "µ ok�") == "µ ok�"


def test_read_bytes_is_binary_safe(registry, pty_serial):
    registry.open(pty_serial.path, 9600)
    payload = bytes([0x00, 0xFF, 0x10, 0x80, 0x7E])
    pty_serial.control.write(payload)
    received = b""
    deadline = time.monotonic() + 2.0
    while len(received) < len(payload) and time.monotonic() < deadline:
        received += registry.read_bytes(pty_serial.path, 64)
    assert received == payload


def test_read_failure(registry, pty_serial, mocker):
    registry.open(pty_serial.path, 9600)
    boom = serial.SerialException("device disconnected")
    mocker.patch.object(serial.Serial, "read", side_effect=boom)
    with pytest.raises(ok_serial_hub.SerialReadException, match="disconnected"):
        registry.read(pty_serial.path, 64)


#
# Writing
#


def test_write_bytes_and_text(registry, pty_serial):
    registry.open(pty_serial.path, 115200)
    assert registry.write(pty_serial.path, b"\x00\x01\x02") == 3
    assert pty_serial.control.read(256) == b"\x00\x01\x02"

    assert registry.write(pty_serial.path, "µ") == 2  # counts bytes
    assert pty_serial.control.read(256) == "µ".encode()

    assert registry.write(pty_serial.path, "") == 0


def test_write_failure(registry, pty_serial, mocker):
    registry.open(pty_serial.path, 9600)
    boom = serial.SerialTimeoutException("Write timeout")
    mocker.patch.object(serial.Serial, "write", side_effect=boom)
    with pytest.raises(ok_serial_hub.SerialWriteException) as exc_info:
        registry.write(pty_serial.path, "AT\r\n")
    assert "Failed to write to port: Write timeout" in str(exc_info.value)


def test_flush_failure(registry, pty_serial, mocker):
    registry.open(pty_serial.path, 9600)
    mocker.patch.object(serial.Serial, "flush", side_effect=OSError("EIO"))
    with pytest.raises(ok_serial_hub.SerialWriteException) as exc_info:
        registry.write(pty_serial.path, "AT\r\n")
    assert "Failed to flush port: EIO" in str(exc_info.value)


def test_partial_write_count(registry, pty_serial, mocker):
    registry.open(pty_serial.path, 9600)
    mocker.patch.object(serial.Serial, "write", return_value=2)
    assert registry.write(pty_serial.path, "AT\r\n") == 2


#
# Locking
#


def test_concurrent_read_and_write(registry, pty_serial):
    registry.open(pty_serial.path, 9600)
    started, done = threading.Event(), []

    def reader():
        started.set()
        done.append(registry.read(pty_serial.path, 64))

    thread = threading.Thread(target=reader)
    thread.start()
    started.wait()
    registry.write(pty_serial.path, "X")
    thread.join(timeout=5.0)
    assert done == [""]
    assert pty_serial.control.read(256) == b"X"
