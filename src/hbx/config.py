"""Store location and remote-side defaults, resolved once at startup."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

HOME_ENV = "HBX_HOME"
REMOTE_BIN_ENV = "HBX_REMOTE_BIN"

DEFAULT_HOME = "~/.hbx"
DEFAULT_REMOTE_BIN = "/usr/local/bin/hbx"

CONFIG_NAME = "config"
STORE_DIRECTORY = "store"
LOCK_NAME = "hbx.lock"


@dataclass(frozen=True)
class StoreConfig:
    """Where a store lives and how to reach its remote counterpart.

    Attributes:
        home: Store home directory holding the config file and blob directory.
        remote_bin: Path of the hbx executable on remote hosts.
    """
    home: Path
    remote_bin: str = DEFAULT_REMOTE_BIN

    @classmethod
    def from_env(cls, home: str | os.PathLike[str] | None = None) -> StoreConfig:
        """Resolve a config from explicit values, then the environment.

        *home* wins over ``HBX_HOME``, which wins over ``~/.hbx``.
        """
        if home is None:
            home = os.environ.get(HOME_ENV) or DEFAULT_HOME
        remote_bin = os.environ.get(REMOTE_BIN_ENV) or DEFAULT_REMOTE_BIN
        return cls(Path(home).expanduser(), remote_bin)

    @property
    def config_path(self) -> Path:
        return self.home / CONFIG_NAME

    @property
    def store_dir(self) -> Path:
        return self.home / STORE_DIRECTORY

    @property
    def lock_path(self) -> Path:
        return self.home / LOCK_NAME
