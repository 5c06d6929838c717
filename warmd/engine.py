"""Engines: the tools the daemon keeps warm.

An engine is any object with an ``execute(argv, text, allow_errors)`` method
returning an awaitable exit status. ``ModuleEngine`` runs a Python module as
``__main__`` in the daemon's own interpreter, so anything imported once
stays imported for the next run.
"""

import asyncio
import importlib
import importlib.util
import io
import logging
import runpy
import sys
from collections.abc import Awaitable, Sequence
from typing import Any, Protocol, runtime_checkable

from warmd.exceptions import EngineError, EngineLoadError

logger = logging.getLogger(__name__)


@runtime_checkable
class Engine(Protocol):
    """Task executor invoked once per job."""

    def execute(
        self, argv: Sequence[str], text: str | None, allow_errors: bool
    ) -> Awaitable[int]: ...


class EngineSource(Protocol):
    """Anything that can hand the daemon its engine."""

    def resolve(self) -> Engine: ...


def exit_status(code: Any) -> int:
    """Translate a ``SystemExit`` code into a process exit status.

    Mirrors the interpreter: None is success, integers are kept (modulo 256)
    and anything else is printed to stderr and reported as 1.

    Args:
        code: The ``SystemExit.code`` value.

    Returns:
        Exit status between 0 and 255.
    """
    if code is None:
        return 0
    if isinstance(code, int) and not isinstance(code, bool):
        return code % 256
    print(code, file=sys.stderr)
    return 1


class ModuleEngine:
    """Run a Python module in-process, like ``python -m <module> args...``.

    The module runs in a worker thread so the daemon keeps accepting
    connections meanwhile. ``sys.argv`` and ``sys.stdin`` are swapped for
    the run; the standard streams are expected to be routed by the caller.
    """

    def __init__(self, module: str) -> None:
        """Initialize the engine.

        Args:
            module: Dotted name of the module to run.
        """
        self.module = module

    async def execute(self, argv: Sequence[str], text: str | None, allow_errors: bool) -> int:
        """Run the module once.

        Args:
            argv: Arguments passed as ``sys.argv[1:]``.
            text: Text served on ``sys.stdin``, or None for empty input.
            allow_errors: If False, a non-zero status raises EngineError.

        Returns:
            The module's exit status.

        Raises:
            EngineError: If the run failed and errors are not allowed.
        """
        status = await asyncio.to_thread(self._run, list(argv), text)
        if status and not allow_errors:
            raise EngineError(f"{self.module} exited with status {status}", status)
        return status

    def _run(self, argv: list[str], text: str | None) -> int:
        saved_argv, saved_stdin = sys.argv, sys.stdin
        sys.argv = [self.module, *argv]
        sys.stdin = io.StringIO(text or "")
        try:
            runpy.run_module(self.module, run_name="__main__", alter_sys=True)
        except SystemExit as e:
            return exit_status(e.code)
        finally:
            sys.argv, sys.stdin = saved_argv, saved_stdin
        return 0

    def __repr__(self) -> str:
        return f"ModuleEngine({self.module!r})"


def load_engine(target: str) -> Engine:
    """Load an engine from a target string.

    ``package.module:attribute`` names an engine object, or a class or
    factory called without arguments to produce one. A bare module name is
    wrapped in a ModuleEngine.

    Args:
        target: The engine target.

    Returns:
        The loaded engine.

    Raises:
        EngineLoadError: If the target cannot be imported or is not an engine.
    """
    module_name, sep, attribute = target.partition(":")
    if not module_name:
        raise EngineLoadError(f"Invalid engine target: {target!r}")

    if not sep:
        try:
            spec = importlib.util.find_spec(module_name)
        except (ImportError, ValueError) as e:
            raise EngineLoadError(f"Cannot locate engine module {module_name}: {e}") from e
        if spec is None:
            raise EngineLoadError(f"Engine module not found: {module_name}")
        return ModuleEngine(module_name)

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise EngineLoadError(f"Cannot import engine module {module_name}: {e}") from e

    obj: Any = module
    for part in attribute.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise EngineLoadError(f"Engine {target!r} not found: {e}") from e

    if not isinstance(obj, Engine) or isinstance(obj, type):
        if not callable(obj):
            raise EngineLoadError(f"{target!r} is not an engine")
        obj = obj()

    if not isinstance(obj, Engine):
        raise EngineLoadError(f"{target!r} does not provide an execute() method")
    return obj


class EngineResolver:
    """Locate the engine once and keep it for the daemon's lifetime."""

    def __init__(self, target: str | None) -> None:
        """Initialize the resolver.

        Args:
            target: Engine target, see ``load_engine``.
        """
        self._target = target
        self._engine: Engine | None = None

    @property
    def target(self) -> str | None:
        """Get the engine target."""
        return self._target

    @property
    def loaded(self) -> bool:
        """Check whether the engine has been loaded yet."""
        return self._engine is not None

    def resolve(self) -> Engine:
        """Get the engine, loading it on first use.

        Raises:
            EngineLoadError: If no engine is configured or it fails to load.
        """
        if self._engine is None:
            if not self._target:
                raise EngineLoadError(
                    "No engine configured (set 'engine' in config.yaml or WARMD_ENGINE)"
                )
            logger.info("Loading engine %s", self._target)
            self._engine = load_engine(self._target)
        return self._engine
