"""Discover, verify and apply versioned SQL schema migrations."""

__version__ = "0.8.8"

__all__ = [
    "async_traits",
    "checksum",
    "embed",
    "errors",
    "migration",
    "runner",
    "traits",
    "util",
]