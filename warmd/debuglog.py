"""Namespace-based debug logging on top of the standard logging module.

Patterns are comma or whitespace separated logger names. ``*`` matches any
run of characters and a leading ``-`` excludes matching names::

    warmd.*,-warmd.daemon.slot

Enabled loggers are lowered to DEBUG and their records are written to
whatever ``sys.stderr`` is at the time of the call, so output produced
while a job holds the daemon's streams reaches that job's client.
"""

import fnmatch
import logging
import re
import sys
from typing import TextIO

logger = logging.getLogger(__name__)

DEBUG_FORMAT = "%(name)s %(message)s"


class _StderrHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Handler that looks up ``sys.stderr`` on every emit."""

    def __init__(self, level: int = logging.NOTSET) -> None:
        logging.Handler.__init__(self, level)

    @property
    def stream(self) -> TextIO:  # type: ignore[override]
        return sys.stderr


class _PatternFilter(logging.Filter):
    """Accept records whose logger name matches the enabled namespaces."""

    def __init__(self, include: list[str], exclude: list[str]) -> None:
        super().__init__()
        self.include = include
        self.exclude = exclude

    def matches(self, name: str) -> bool:
        if any(_match(name, pattern) for pattern in self.exclude):
            return False
        return any(_match(name, pattern) for pattern in self.include)

    def filter(self, record: logging.LogRecord) -> bool:
        return self.matches(record.name)


def _match(name: str, pattern: str) -> bool:
    # "warmd.*" also covers the "warmd" logger itself
    if pattern.endswith(".*") and name == pattern[:-2]:
        return True
    return fnmatch.fnmatchcase(name, pattern)


def parse_pattern(pattern: str) -> tuple[list[str], list[str]]:
    """Split a pattern into included and excluded namespaces.

    Args:
        pattern: Comma or whitespace separated namespaces.

    Returns:
        Tuple of (include, exclude) lists.
    """
    include: list[str] = []
    exclude: list[str] = []
    for part in re.split(r"[\s,]+", pattern.strip()):
        if not part:
            continue
        if part.startswith("-"):
            exclude.append(part[1:])
        else:
            include.append(part)
    return include, exclude


class DebugLogging:
    """Turn debug output on and off for logger namespaces.

    Only two operations matter to the daemon: ``enable(pattern)`` and
    ``disable()``. Enabling replaces whatever was enabled before.
    """

    def __init__(self, root: logging.Logger | None = None) -> None:
        """Initialize debug logging.

        Args:
            root: Logger the debug handler is attached to. Defaults to the
                root logger.
        """
        self._root = root or logging.getLogger()
        self._handler: _StderrHandler | None = None
        self._saved_levels: dict[str, int] = {}
        self._pattern = ""

    @property
    def pattern(self) -> str:
        """Get the currently enabled pattern (empty if disabled)."""
        return self._pattern

    def enabled(self, name: str) -> bool:
        """Check whether debug output is enabled for a logger name."""
        if self._handler is None:
            return False
        return any(
            isinstance(f, _PatternFilter) and f.matches(name) for f in self._handler.filters
        )

    def enable(self, pattern: str) -> None:
        """Enable debug output for the namespaces in a pattern.

        Args:
            pattern: Namespace pattern, e.g. ``warmd.*``.
        """
        self.disable()

        include, exclude = parse_pattern(pattern)
        if not include:
            return

        pattern_filter = _PatternFilter(include, exclude)
        handler = _StderrHandler(logging.DEBUG)
        handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
        handler.addFilter(pattern_filter)

        for name in self._candidate_loggers(include):
            if pattern_filter.matches(name):
                self._lower(name)

        self._root.addHandler(handler)
        self._handler = handler
        self._pattern = pattern
        logger.debug("Debug logging enabled for %s", pattern)

    def disable(self) -> None:
        """Disable debug output and restore the previous logger levels."""
        if self._handler is not None:
            self._root.removeHandler(self._handler)
            self._handler = None

        for name, level in self._saved_levels.items():
            logging.getLogger(name).setLevel(level)
        self._saved_levels.clear()
        self._pattern = ""

    def _candidate_loggers(self, include: list[str]) -> set[str]:
        names = {name for name in logging.root.manager.loggerDict}
        for pattern in include:
            # Plain names and "prefix.*" patterns are created eagerly
            base = pattern[:-2] if pattern.endswith(".*") else pattern
            if not any(ch in base for ch in "*?["):
                names.add(base)
        return names

    def _lower(self, name: str) -> None:
        target = logging.getLogger(name)
        if name not in self._saved_levels:
            self._saved_levels[name] = target.level
        target.setLevel(logging.DEBUG)


# Process-wide debug logging used by the daemon
debug_logging = DebugLogging()


def enable(pattern: str) -> None:
    """Enable debug output on the process-wide instance."""
    debug_logging.enable(pattern)


def disable() -> None:
    """Disable debug output on the process-wide instance."""
    debug_logging.disable()
