"""TCP chat server, terminal client and SQLite store for accounts and rooms."""

__version__ = "0.1.0"
__all__ = ["__version__"]