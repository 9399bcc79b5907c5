import logging
import os
import pathlib
import sys
from typing import Literal

import msgspec
import pydantic

log = logging.getLogger("ok_serial_hub.launch")

BuildProfile = Literal["development", "production"]


class LaunchSpec(msgspec.Struct, frozen=True):
    """How to start the companion process"""

    argv: tuple[str, ...]
    cwd: pathlib.Path


class CompanionOptions(pydantic.BaseModel):
    """Locates the companion server for the current build profile.

    A development build runs the server's package script from the source
    tree; a production build runs the compiled entry point shipped in the
    bundled resource directory. Calling the options object returns the
    matching LaunchSpec.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    profile: BuildProfile = "production"
    source_dir: pathlib.Path = pathlib.Path(".")
    resource_dir: pathlib.Path = pathlib.Path(sys.prefix)
    server_dir: str = "server"
    dev_script: str = "dev"
    entry_point: str = "dist/server.js"

    @classmethod
    def from_env(cls, **overrides) -> "CompanionOptions":
        env = {
            "profile": os.getenv("OK_SERIAL_HUB_PROFILE"),
            "source_dir": os.getenv("OK_SERIAL_HUB_SOURCE_DIR"),
            "resource_dir": os.getenv("OK_SERIAL_HUB_RESOURCE_DIR"),
        }
        env.update((k, v) for k, v in overrides.items() if v is not None)
        return cls(**{k: v for k, v in env.items() if v})

    def __call__(self) -> LaunchSpec:
        windows = sys.platform == "win32"
        if self.profile == "development":
            npm = "npm.cmd" if windows else "npm"
            argv = (npm, "run", self.dev_script)
            cwd = self.source_dir / self.server_dir
        else:
            node = "node.exe" if windows else "node"
            argv = (node, self.entry_point)
            cwd = self.resource_dir / self.server_dir

        log.debug("%s companion: %s (in %s)", self.profile, argv, cwd)
        return LaunchSpec(argv=argv, cwd=cwd)
