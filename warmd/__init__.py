"""warmd - keep an expensive-to-start Python tool warm in a local daemon."""

__version__ = "0.1.0"
