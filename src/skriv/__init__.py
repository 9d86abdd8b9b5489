"""skriv: a small multi-tab text editor with session restore."""

__version__ = "0.3.0"

__all__ = ["__version__"]
