from ._logger import configure_logger


# configure covwatch logger before other modules log
configure_logger()  # noqa: E402

from .version import __version__  # noqa: E402


__all__ = ["__version__"]
