"""Debug pattern reconciliation between the daemon baseline and jobs."""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class DebugToggle(Protocol):
    """The two operations the daemon needs from a debug-logging subsystem."""

    def enable(self, pattern: str) -> None: ...

    def disable(self) -> None: ...


class DebugReconciler:
    """Keep the enabled debug pattern in line with what each job asks for.

    The baseline is captured once when the daemon starts. A job either asks
    for its own pattern or falls back to the baseline. The subsystem is only
    called on transitions, and the state is left as is after the job so the
    next job only pays for a change if it wants something different.
    """

    def __init__(self, baseline: str, toggle: DebugToggle) -> None:
        """Initialize the reconciler and apply the baseline.

        Args:
            baseline: Debug pattern from the daemon's environment.
            toggle: The debug-logging subsystem.
        """
        self._baseline = baseline
        self._active = baseline
        self._toggle = toggle

        if baseline:
            toggle.enable(baseline)

    @property
    def baseline(self) -> str:
        """Get the pattern captured at startup."""
        return self._baseline

    @property
    def active(self) -> str:
        """Get the pattern currently enabled."""
        return self._active

    def reconcile(self, requested: str) -> None:
        """Apply the pattern a job asked for.

        Args:
            requested: The job's debug pattern, empty for none.
        """
        desired = requested or self._baseline
        if desired == self._active:
            return

        if desired:
            self._toggle.enable(desired)
        else:
            self._toggle.disable()

        logger.debug("Debug pattern changed from %r to %r", self._active, desired)
        self._active = desired
