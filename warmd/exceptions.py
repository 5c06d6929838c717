"""Custom exceptions for warmd."""


class WarmdError(Exception):
    """Base exception for warmd errors."""

    pass


class ConfigError(WarmdError):
    """Raised when the configuration file cannot be read or is invalid."""

    def __init__(self, path: object, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid configuration in {path}: {reason}")


class EngineLoadError(WarmdError):
    """Raised when the configured engine cannot be located or loaded."""

    pass


class EngineError(WarmdError):
    """Raised by an engine when a run fails and errors are not allowed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class SlotError(WarmdError):
    """Raised when the shared environment is touched without holding the slot."""

    pass
