"""Color settings shared by engines running inside the daemon.

The client reports how many colors its terminal supports and the daemon
stores it in ``settings.level`` for the duration of a job. Engines that
print through ``settings.console()`` get a rich Console that honors it even
though their output goes to a socket rather than a terminal.
"""

from typing import TextIO

from rich.console import Console

# Level -> rich color system. Level 0 disables color entirely.
COLOR_SYSTEMS: dict[int, str | None] = {
    0: None,
    1: "standard",
    2: "256",
    3: "truecolor",
}


def level_for_color_system(color_system: str | None) -> int:
    """Map a rich color system name back to a level.

    Args:
        color_system: Value of ``Console.color_system``.

    Returns:
        Level between 0 and 3.
    """
    if color_system in (None, ""):
        return 0
    if color_system == "windows":
        return 1
    for level, name in COLOR_SYSTEMS.items():
        if name == color_system:
            return level
    return 0


class ColorSettings:
    """Mutable color level, ``None`` meaning "not set, detect as usual"."""

    def __init__(self, level: int | None = None) -> None:
        self.level = level

    @property
    def level(self) -> int | None:
        """Get the current color level."""
        return self._level

    @level.setter
    def level(self, value: int | None) -> None:
        if value is not None:
            value = max(0, min(value, max(COLOR_SYSTEMS)))
        self._level = value

    def console(self, file: TextIO | None = None) -> Console:
        """Create a console that honors the current level.

        Args:
            file: Stream to print to. Defaults to the current ``sys.stdout``.

        Returns:
            A rich Console.
        """
        if self._level is None:
            return Console(file=file)
        if self._level == 0:
            return Console(file=file, color_system=None, no_color=True)
        return Console(
            file=file,
            color_system=COLOR_SYSTEMS[self._level],  # type: ignore[arg-type]
            force_terminal=True,
        )


# Process-wide settings, mutated per job by the daemon
settings = ColorSettings()
