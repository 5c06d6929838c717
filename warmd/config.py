"""Configuration and runtime files for warmd.

Everything lives under one home directory (``~/.warmd`` unless
``WARMD_HOME`` says otherwise):

- ``config.yaml``: user configuration (engine, socket path, debug pattern)
- ``daemon.yaml``: runtime info written by the running daemon
- ``daemon.sock``: the daemon's Unix socket
- ``daemon.log``: daemon output when started in the background
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from warmd.exceptions import ConfigError

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "WARMD_HOME"
ENGINE_ENV_VAR = "WARMD_ENGINE"
DEBUG_ENV_VAR = "WARMD_DEBUG"

CONFIG_FILE_NAME = "config.yaml"
RUNTIME_FILE_NAME = "daemon.yaml"
SOCKET_FILE_NAME = "daemon.sock"
LOG_FILE_NAME = "daemon.log"


def default_home() -> Path:
    """Get the warmd home directory."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".warmd"


class DaemonConfig(BaseModel):
    """Daemon configuration."""

    home: Path = Field(default_factory=default_home)
    engine: str | None = Field(
        default=None,
        description="Engine to load, e.g. 'mypkg.cli:engine' or a module name",
    )
    socket_path: Path | None = Field(
        default=None, description="Unix socket path (default: <home>/daemon.sock)"
    )
    debug: str = Field(default="", description="Baseline debug pattern")

    @property
    def socket(self) -> Path:
        """Get the socket path."""
        return self.socket_path or self.home / SOCKET_FILE_NAME

    @property
    def config_file(self) -> Path:
        """Get the user configuration file path."""
        return self.home / CONFIG_FILE_NAME

    @property
    def runtime_file(self) -> Path:
        """Get the runtime info file path."""
        return self.home / RUNTIME_FILE_NAME

    @property
    def log_file(self) -> Path:
        """Get the daemon log file path."""
        return self.home / LOG_FILE_NAME


class RuntimeInfo(BaseModel):
    """What clients need to reach a running daemon."""

    pid: int
    socket_path: Path
    token: str
    engine: str | None = None
    started_at: datetime = Field(default_factory=datetime.now)


def load_config(home: Path | None = None) -> DaemonConfig:
    """Load configuration from the config file and environment.

    ``WARMD_ENGINE`` and ``WARMD_DEBUG`` override the file.

    Args:
        home: Home directory. Defaults to ``default_home()``.

    Returns:
        The loaded configuration.

    Raises:
        ConfigError: If the config file is unreadable or invalid.
    """
    home = home or default_home()
    config_file = home / CONFIG_FILE_NAME

    data: dict[str, Any] = {}
    if config_file.exists():
        try:
            with open(config_file, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(config_file, str(e)) from e
        if not isinstance(loaded, dict):
            raise ConfigError(config_file, "expected a mapping at the top level")
        data.update(loaded)

    data["home"] = home

    engine = os.environ.get(ENGINE_ENV_VAR)
    if engine:
        data["engine"] = engine
    if DEBUG_ENV_VAR in os.environ:
        data["debug"] = os.environ[DEBUG_ENV_VAR]

    try:
        return DaemonConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(config_file, str(e)) from e


def save_config(config: DaemonConfig) -> None:
    """Write the user-settable fields of a configuration to its file.

    Args:
        config: Configuration to save.
    """
    config.home.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude={"home"}, exclude_none=True)
    with open(config.config_file, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False)


def write_runtime_info(path: Path, info: RuntimeInfo) -> None:
    """Write runtime info, readable by the owner only.

    Args:
        path: Runtime file path.
        info: Runtime info to write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        yaml.dump(info.model_dump(mode="json"), f, default_flow_style=False)
    path.chmod(0o600)


def read_runtime_info(path: Path) -> RuntimeInfo | None:
    """Read runtime info left by a running daemon.

    Args:
        path: Runtime file path.

    Returns:
        The runtime info, or None if missing or unreadable.
    """
    if not path.exists():
        return None

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return RuntimeInfo.model_validate(data)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        logger.warning("Ignoring unreadable runtime file %s: %s", path, e)
        return None


def remove_runtime_info(path: Path, pid: int | None = None) -> None:
    """Remove the runtime file.

    Args:
        path: Runtime file path.
        pid: If given, only remove the file when it belongs to this process.
    """
    if pid is not None:
        info = read_runtime_info(path)
        if info is not None and info.pid != pid:
            return
    path.unlink(missing_ok=True)
