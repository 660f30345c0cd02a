"""Compile context-sensitive rewrite rules into weighted transducers."""

from ._version import __version__

__all__ = ["__version__"]
