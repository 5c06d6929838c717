"""Unit tests for engines and engine loading."""

import asyncio
import sys
from pathlib import Path

import pytest

from warmd.engine import Engine, EngineResolver, ModuleEngine, exit_status, load_engine
from warmd.exceptions import EngineError, EngineLoadError

ENGINES_MODULE = '''\
class Formatter:
    async def execute(self, argv, text, allow_errors):
        return 0


class Registry:
    formatter = Formatter()


formatter = Formatter()
registry = Registry()


def make_formatter():
    return Formatter()


not_an_engine = 42


def make_nothing():
    return "nothing"
'''


@pytest.fixture
def engines_module(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    """Importable module exposing engines in different shapes."""
    module_dir = tmp_path / "engines"
    module_dir.mkdir()
    (module_dir / "warmd_sample_engines.py").write_text(ENGINES_MODULE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(module_dir))
    return "warmd_sample_engines"


class TestExitStatus:
    """Tests for exit_status."""

    @pytest.mark.parametrize(("code", "status"), [(None, 0), (0, 0), (3, 3), (256, 0), (-1, 255)])
    def test_integer_codes(self, code: int | None, status: int) -> None:
        assert exit_status(code) == status

    def test_message_is_printed_and_fails(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert exit_status("bad input") == 1
        assert capsys.readouterr().err == "bad input\n"


class TestModuleEngine:
    """Tests for ModuleEngine."""

    def test_runs_module_with_args_and_text(
        self, sample_tool: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """The module should see our argv and stdin."""
        engine = ModuleEngine(sample_tool)

        status = asyncio.run(engine.execute(["a", "b"], "input", True))

        assert status == 0
        assert capsys.readouterr().out == "args: a b\nstdin: input\n"

    def test_runs_module_again(self, sample_tool: str, capsys: pytest.CaptureFixture[str]) -> None:
        """Each execute should run the module's main code once more."""
        engine = ModuleEngine(sample_tool)

        asyncio.run(engine.execute(["first"], None, True))
        asyncio.run(engine.execute(["second"], None, True))

        assert capsys.readouterr().out == "args: first\nargs: second\n"

    def test_restores_argv_and_stdin(self, sample_tool: str) -> None:
        argv, stdin = sys.argv, sys.stdin

        asyncio.run(ModuleEngine(sample_tool).execute(["x"], "text", True))

        assert sys.argv is argv
        assert sys.stdin is stdin

    def test_system_exit_status_is_returned(self, sample_tool: str) -> None:
        assert asyncio.run(ModuleEngine(sample_tool).execute(["fail"], None, True)) == 3

    def test_system_exit_message_is_status_one(
        self, sample_tool: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        status = asyncio.run(ModuleEngine(sample_tool).execute(["message"], None, True))

        assert status == 1
        assert "bad input" in capsys.readouterr().err

    def test_failure_raises_when_errors_not_allowed(self, sample_tool: str) -> None:
        with pytest.raises(EngineError) as exc_info:
            asyncio.run(ModuleEngine(sample_tool).execute(["fail"], None, False))

        assert exc_info.value.status == 3

    def test_exceptions_propagate(self, sample_tool: str) -> None:
        with pytest.raises(RuntimeError, match="kaboom"):
            asyncio.run(ModuleEngine(sample_tool).execute(["boom"], None, True))


class TestLoadEngine:
    """Tests for load_engine."""

    def test_bare_module_becomes_module_engine(self, sample_tool: str) -> None:
        engine = load_engine(sample_tool)

        assert isinstance(engine, ModuleEngine)
        assert engine.module == sample_tool

    def test_missing_module(self) -> None:
        with pytest.raises(EngineLoadError, match="not found"):
            load_engine("warmd_no_such_module")

    def test_engine_object(self, engines_module: str) -> None:
        engine = load_engine(f"{engines_module}:formatter")

        assert isinstance(engine, Engine)
        assert type(engine).__name__ == "Formatter"

    def test_dotted_attribute(self, engines_module: str) -> None:
        engine = load_engine(f"{engines_module}:registry.formatter")

        assert type(engine).__name__ == "Formatter"

    @pytest.mark.parametrize("attribute", ["Formatter", "make_formatter"])
    def test_class_or_factory_is_called(self, engines_module: str, attribute: str) -> None:
        engine = load_engine(f"{engines_module}:{attribute}")

        assert type(engine).__name__ == "Formatter"

    @pytest.mark.parametrize(
        "target",
        [
            ":formatter",
            "warmd_no_such_module:engine",
            "warmd_sample_engines:missing",
            "warmd_sample_engines:not_an_engine",
            "warmd_sample_engines:make_nothing",
        ],
    )
    def test_invalid_targets(self, engines_module: str, target: str) -> None:
        with pytest.raises(EngineLoadError):
            load_engine(target)


class TestEngineResolver:
    """Tests for EngineResolver."""

    def test_loads_once(self, engines_module: str) -> None:
        resolver = EngineResolver(f"{engines_module}:make_formatter")
        assert not resolver.loaded

        first = resolver.resolve()
        second = resolver.resolve()

        assert first is second
        assert resolver.loaded

    def test_no_target(self) -> None:
        with pytest.raises(EngineLoadError, match="No engine configured"):
            EngineResolver(None).resolve()

    def test_load_failure_is_retried(self) -> None:
        resolver = EngineResolver("warmd_no_such_module")

        with pytest.raises(EngineLoadError):
            resolver.resolve()
        assert not resolver.loaded
