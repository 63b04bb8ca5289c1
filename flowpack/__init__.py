"""flowpack.

Packs a flow application, its third-party dependencies, its user data and its
locale files into a single redistributable bundle, and boots that bundle in one
of three run modes.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
