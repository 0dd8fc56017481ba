"""The installed version of covwatch, as declared in setup.py.

Kept in its own module to avoid circular imports.
"""

import importlib.metadata


__all__ = ["__version__"]

DISTRIBUTION = "covwatch"

__version__: str

try:
    __version__ = importlib.metadata.version(DISTRIBUTION)
except importlib.metadata.PackageNotFoundError:
    # Running from a source tree that was never installed
    __version__ = "0.0.0"
