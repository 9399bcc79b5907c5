import logging
from typing import Any

import pydantic
import serial

log = logging.getLogger("ok_serial_hub.config")

# Advisory only, for populating pickers; open() never checks against it
BAUD_RATES: tuple[int, ...] = (
    300,
    1200,
    2400,
    4800,
    9600,
    19200,
    38400,
    57600,
    115200,
    230400,
    460800,
    921600,
)

READ_TIMEOUT = 0.1  # seconds, for every open session

_PARITY = {
    "none": serial.PARITY_NONE,
    "odd": serial.PARITY_ODD,
    "even": serial.PARITY_EVEN,
}
_STOP_BITS = {1: serial.STOPBITS_ONE, 2: serial.STOPBITS_TWO}
_DATA_BITS = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}


class PortConfig(pydantic.BaseModel):
    """Serial framing captured at open time.

    Values outside the supported sets fall back to a default instead of
    failing validation: parity to "none", stop_bits to 1, data_bits to 8.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    baud_rate: pydantic.PositiveInt = 9600
    data_bits: int = 8
    stop_bits: int = 1
    parity: str = "none"

    @pydantic.field_validator("data_bits")
    @classmethod
    def _fallback_data_bits(cls, value: int) -> int:
        if value not in _DATA_BITS:
            log.debug("Unsupported data_bits=%d, using 8", value)
            return 8
        return value

    @pydantic.field_validator("stop_bits")
    @classmethod
    def _fallback_stop_bits(cls, value: int) -> int:
        if value not in _STOP_BITS:
            log.debug("Unsupported stop_bits=%d, using 1", value)
            return 1
        return value

    @pydantic.field_validator("parity")
    @classmethod
    def _fallback_parity(cls, value: str) -> str:
        if value not in _PARITY:
            log.debug("Unsupported parity=%r, using 'none'", value)
            return "none"
        return value

    def serial_kwargs(self) -> dict[str, int | str]:
        """Keyword arguments for serial.Serial() matching this config"""

        return dict(
            baudrate=self.baud_rate,
            bytesize=_DATA_BITS[self.data_bits],
            stopbits=_STOP_BITS[self.stop_bits],
            parity=_PARITY[self.parity],
        )


# What callers may pass where a PortConfig is wanted: the model itself,
# a bare baud rate, or the model's fields as decoded from JSON
PortConfigLike = PortConfig | int | dict[str, Any]
