import json
import logging
import os
import pathlib
from typing import Literal

import msgspec
import natsort
from serial.tools import list_ports
from serial.tools import list_ports_common

from ok_serial_hub import _exceptions

log = logging.getLogger("ok_serial_hub.scanning")

PortKind = Literal["USB", "Bluetooth", "PCI", "Unknown"]


class SerialPort(msgspec.Struct, frozen=True, omit_defaults=True):
    """What we know about a potentially available serial port on the system"""

    name: str
    kind: PortKind = "Unknown"
    description: str | None = None
    attr: dict[str, str] = msgspec.field(default_factory=dict)

    def __str__(self):
        return self.name

    def descriptor(self) -> dict[str, str]:
        """Name, port_type and (if any) description, for UI listings"""

        out = {"name": self.name, "port_type": self.kind}
        if self.description:
            out["description"] = self.description
        return out


def scan_serial_ports() -> list[SerialPort]:
    """Returns a list of serial ports found on the current system"""

    if ov := os.getenv("OK_SERIAL_HUB_SCAN_OVERRIDE"):
        try:
            ov_data = json.loads(pathlib.Path(ov).read_text())
            if not isinstance(ov_data, dict) or not all(
                isinstance(attr, dict)
                and all(isinstance(aval, str) for aval in attr.values())
                for attr in ov_data.values()
            ):
                raise ValueError("Override data is not a dict of dicts")
        except (OSError, ValueError) as ex:
            msg = f"Can't read $OK_SERIAL_HUB_SCAN_OVERRIDE {ov}"
            raise _exceptions.SerialScanException(msg) from ex

        out = [_describe(p, a) for p, a in ov_data.items()]
        log.debug("$OK_SERIAL_HUB_SCAN_OVERRIDE (%s): %d ports", ov, len(out))
    else:
        try:
            ports = list_ports.comports()
        except OSError as ex:
            msg = f"Can't scan serial ports ({ex})"
            raise _exceptions.SerialScanException(msg) from ex

        out = [_convert_port(p) for p in ports]

    out.sort(key=natsort.natsort_keygen(key=lambda p: p.name, alg=natsort.ns.P))
    log.debug("Found %d ports", len(out))
    return out


def _convert_port(p: list_ports_common.ListPortInfo) -> SerialPort:
    _NA = (None, "", "n/a")
    attr = {k.lower(): str(v) for k, v in vars(p).items() if v not in _NA}
    return _describe(p.device, attr)


def _describe(name: str, attr: dict[str, str]) -> SerialPort:
    kind = _classify(name, attr)
    if kind == "USB":
        maker = json.dumps(attr.get("manufacturer", "Unknown"))
        description = f"USB Device - Manufacturer: {maker}"
    else:
        description = None
    return SerialPort(name=name, kind=kind, description=description, attr=attr)


def _classify(name: str, attr: dict[str, str]) -> PortKind:
    hwid = attr.get("hwid", "").upper()
    subsystem = attr.get("subsystem", "").lower()
    device = attr.get("device", name).lower()
    if "vid" in attr or subsystem.startswith("usb") or hwid.startswith("USB"):
        return "USB"
    if "BTHENUM" in hwid or "rfcomm" in device or "bluetooth" in device:
        return "Bluetooth"
    if subsystem == "pci" or hwid.startswith("PCI"):
        return "PCI"
    return "Unknown"
