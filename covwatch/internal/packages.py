from functools import lru_cache as cached
from pathlib import Path
import sys
import sysconfig
import typing as t


def _path(name: str) -> t.Optional[Path]:
    try:
        return Path(sysconfig.get_path(name)).resolve()
    except (KeyError, TypeError):
        return None


stdlib_path = _path("stdlib")
platstdlib_path = _path("platstdlib")
purelib_path = _path("purelib")
platlib_path = _path("platlib")


@cached(maxsize=1)
def dependency_paths() -> t.Tuple[Path, ...]:
    """Directories holding code the project depends on rather than owns.

    These are the interpreter's standard library and site-packages
    directories, plus any ``site-packages`` entry of ``sys.path`` (e.g. the
    ones added by a virtual environment or a ``--user`` install).
    """
    paths = []
    for p in (stdlib_path, platstdlib_path, purelib_path, platlib_path):
        if p is not None and p not in paths:
            paths.append(p)

    for entry in sys.path:
        if entry and "site-packages" in entry:
            p = Path(entry).resolve()
            if p not in paths:
                paths.append(p)

    return tuple(paths)


def is_dependency(path: Path) -> bool:
    return any(path.is_relative_to(p) for p in dependency_paths())
