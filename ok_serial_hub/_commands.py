import concurrent.futures
import contextlib
import logging
from typing import Any, Callable

import beartype.roar
import msgspec
import pydantic

from ok_serial_hub import _config
from ok_serial_hub import _exceptions
from ok_serial_hub import _launch
from ok_serial_hub import _registry
from ok_serial_hub import _supervisor
from ok_serial_hub import _terminate

log = logging.getLogger("ok_serial_hub.commands")


class CommandResult(msgspec.Struct, omit_defaults=True):
    """Outcome of one command: a value, or an error message for the UI"""

    ok: bool
    value: Any = None
    error: str | None = None


class CommandRequest(msgspec.Struct):
    command: str
    args: dict[str, Any] = msgspec.field(default_factory=dict)


class DeviceHub(contextlib.AbstractContextManager):
    """The serial registry and server supervisor behind named commands.

    Every command either succeeds with a value or fails with the message
    of the HubException (or argument error) that stopped it. Nothing is
    retried here; that's up to whoever sent the command.
    """

    def __init__(
        self,
        resolve: Callable[[], _launch.LaunchSpec] | None = None,
        *,
        terminator: _terminate.Terminator | None = None,
        autostart_delay: float | None = None,
    ):
        self.registry = _registry.SerialSessionRegistry()
        self.supervisor = _supervisor.ProcessSupervisor(
            resolve or _launch.CompanionOptions.from_env(),
            terminator=terminator,
        )
        self.autostart: concurrent.futures.Future | None = None
        self._autostart_delay = autostart_delay
        self._commands: dict[str, Callable[..., Any]] = {
            "list_serial_ports": self.list_serial_ports,
            "open_serial_port": self.open_serial_port,
            "close_serial_port": self.close_serial_port,
            "write_serial_data": self.write_serial_data,
            "read_serial_data": self.read_serial_data,
            "get_available_baud_rates": self.get_available_baud_rates,
            "start_backend_server": self.start_backend_server,
            "stop_backend_server": self.stop_backend_server,
            "get_server_status": self.get_server_status,
        }

    def __enter__(self) -> "DeviceHub":
        if self._autostart_delay is not None:
            self.autostart = self.supervisor.autostart(self._autostart_delay)
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.supervisor.teardown()
        self.registry.close_all()

    def commands(self) -> list[str]:
        return list(self._commands)

    def invoke(
        self, command: str, args: dict[str, Any] | None = None
    ) -> CommandResult:
        handler = self._commands.get(command)
        if not handler:
            return CommandResult(ok=False, error=f"Unknown command: {command}")

        try:
            value = handler(**(args or {}))
        except (
            _exceptions.HubException,
            beartype.roar.BeartypeCallHintViolation,
            pydantic.ValidationError,
        ) as ex:
            log.debug("%s failed: %s", command, ex)
            return CommandResult(ok=False, error=str(ex))

        return CommandResult(ok=True, value=value)

    def invoke_json(self, request: bytes | str) -> bytes:
        """Runs a JSON {"command": ..., "args": {...}} request"""

        try:
            req = msgspec.json.decode(request, type=CommandRequest)
        except msgspec.DecodeError as ex:
            result = CommandResult(ok=False, error=f"Bad request: {ex}")
        else:
            result = self.invoke(req.command, req.args)
        return msgspec.json.encode(result)

    @pydantic.validate_call
    def list_serial_ports(self) -> list[dict[str, str]]:
        return [p.descriptor() for p in self.registry.list_ports()]

    @pydantic.validate_call
    def open_serial_port(
        self, port_name: str, config: _config.PortConfigLike
    ) -> str:
        return self.registry.open(port_name, config)

    @pydantic.validate_call
    def close_serial_port(self, port_name: str) -> str:
        return self.registry.close(port_name)

    @pydantic.validate_call
    def write_serial_data(self, port_name: str, data: str) -> int:
        return self.registry.write(port_name, data)

    @pydantic.validate_call
    def read_serial_data(
        self, port_name: str, buffer_size: pydantic.NonNegativeInt = 1024
    ) -> str:
        return self.registry.read(port_name, buffer_size)

    @pydantic.validate_call
    def get_available_baud_rates(self) -> list[int]:
        return list(_config.BAUD_RATES)

    @pydantic.validate_call
    def start_backend_server(self) -> str:
        return self.supervisor.start()

    @pydantic.validate_call
    def stop_backend_server(self) -> str:
        return self.supervisor.stop()

    @pydantic.validate_call
    def get_server_status(self) -> str:
        return self.supervisor.status()
