"""Unit tests for configuration and runtime files."""

import os
from pathlib import Path

import pytest

from warmd.config import (
    DaemonConfig,
    RuntimeInfo,
    default_home,
    load_config,
    read_runtime_info,
    remove_runtime_info,
    save_config,
    write_runtime_info,
)
from warmd.exceptions import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of the tests."""
    for name in ("WARMD_HOME", "WARMD_ENGINE", "WARMD_DEBUG"):
        monkeypatch.delenv(name, raising=False)


class TestDaemonConfig:
    """Tests for DaemonConfig paths."""

    def test_files_live_under_home(self, tmp_path: Path) -> None:
        config = DaemonConfig(home=tmp_path)

        assert config.socket == tmp_path / "daemon.sock"
        assert config.config_file == tmp_path / "config.yaml"
        assert config.runtime_file == tmp_path / "daemon.yaml"
        assert config.log_file == tmp_path / "daemon.log"

    def test_socket_path_override(self, tmp_path: Path) -> None:
        config = DaemonConfig(home=tmp_path, socket_path=tmp_path / "other.sock")

        assert config.socket == tmp_path / "other.sock"

    def test_home_from_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WARMD_HOME", str(tmp_path))

        assert default_home() == tmp_path

    def test_default_home(self) -> None:
        assert default_home() == Path.home() / ".warmd"


class TestLoadConfig:
    """Tests for load_config and save_config."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)

        assert config.home == tmp_path
        assert config.engine is None
        assert config.debug == ""

    def test_reads_file(self, tmp_path: Path) -> None:
        (tmp_path / "config.yaml").write_text("engine: mytool\ndebug: 'mytool.*'\n")

        config = load_config(tmp_path)

        assert config.engine == "mytool"
        assert config.debug == "mytool.*"

    def test_environment_overrides_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (tmp_path / "config.yaml").write_text("engine: mytool\ndebug: 'mytool.*'\n")
        monkeypatch.setenv("WARMD_ENGINE", "othertool:engine")
        monkeypatch.setenv("WARMD_DEBUG", "")

        config = load_config(tmp_path)

        assert config.engine == "othertool:engine"
        assert config.debug == ""

    def test_save_then_load(self, tmp_path: Path) -> None:
        save_config(DaemonConfig(home=tmp_path / "new", engine="mytool"))

        config = load_config(tmp_path / "new")

        assert config.engine == "mytool"
        assert "home" not in (tmp_path / "new" / "config.yaml").read_text()

    @pytest.mark.parametrize(
        "content", ["engine: [unclosed", "- a list", "debug: {nested: true}"]
    )
    def test_invalid_file_raises(self, tmp_path: Path, content: str) -> None:
        (tmp_path / "config.yaml").write_text(content)

        with pytest.raises(ConfigError) as exc_info:
            load_config(tmp_path)

        assert exc_info.value.path == tmp_path / "config.yaml"


class TestRuntimeInfo:
    """Tests for the runtime file."""

    def test_write_and_read(self, tmp_path: Path) -> None:
        path = tmp_path / "home" / "daemon.yaml"
        info = RuntimeInfo(pid=1234, socket_path=tmp_path / "d.sock", token="abc", engine="tool")

        write_runtime_info(path, info)

        assert read_runtime_info(path) == info
        assert os.stat(path).st_mode & 0o777 == 0o600

    def test_missing_file(self, tmp_path: Path) -> None:
        assert read_runtime_info(tmp_path / "daemon.yaml") is None

    def test_garbage_file(self, tmp_path: Path) -> None:
        path = tmp_path / "daemon.yaml"
        path.write_text("pid: not-a-number\n")

        assert read_runtime_info(path) is None

    def test_remove_only_own_file(self, tmp_path: Path) -> None:
        path = tmp_path / "daemon.yaml"
        write_runtime_info(path, RuntimeInfo(pid=1234, socket_path=tmp_path / "s", token="t"))

        remove_runtime_info(path, pid=999)
        assert path.exists()

        remove_runtime_info(path, pid=1234)
        assert not path.exists()

    def test_remove_missing_file(self, tmp_path: Path) -> None:
        remove_runtime_info(tmp_path / "daemon.yaml")
