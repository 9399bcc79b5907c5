"""Exception hierarchy for ok_serial_hub"""


class HubException(OSError):
    pass


class SerialException(HubException):
    def __init__(
        self,
        message: str,
        port: str | None = None,
    ):
        super().__init__(f"{port}: {message}" if port else message)
        self.port = port


class SerialScanException(SerialException):
    pass


class SerialOpenException(SerialException):
    pass


class SerialSessionBusy(SerialOpenException):
    pass


class SerialNotOpen(SerialException):
    pass


class SerialIoException(SerialException):
    pass


class SerialWriteException(SerialIoException):
    pass


class SerialReadException(SerialIoException):
    pass


class ProcessException(HubException):
    pass


class ProcessPathNotFound(ProcessException):
    pass


class ProcessSpawnException(ProcessException):
    pass


class ProcessStopException(ProcessException):
    pass
