import logging
from typing import List  # noqa:F401
from typing import Optional  # noqa:F401
from typing import Union  # noqa:F401


log = logging.getLogger(__name__)


def asbool(value):
    # type: (Union[str, bool, None]) -> bool
    """Convert the given String to a boolean object.

    Accepted values are `True` and `1`.
    """
    if value is None:
        return False

    if isinstance(value, bool):
        return value

    return value.lower() in ("true", "1")


def parse_list(value):
    # type: (Optional[str]) -> List[str]
    """Split a comma separated string into its non-empty, stripped fragments.

    >>> parse_list("a, b,,c")
    ['a', 'b', 'c']
    >>> parse_list("")
    []
    """
    if not isinstance(value, str):
        return []

    fragments = [s.strip() for s in value.split(",")]
    return [f for f in fragments if f != ""]


def format_list(values):
    # type: (Optional[List[str]]) -> str
    """Inverse of ``parse_list``, used to hand list settings over to child processes."""
    return ",".join(values or [])
