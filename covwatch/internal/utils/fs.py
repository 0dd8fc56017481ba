import os
from pathlib import Path
import tempfile
import typing as t


TMP_SUFFIX = ".tmp"


def atomic_write(path: t.Union[str, Path], data: bytes) -> None:
    """Write ``data`` to ``path`` so that readers see either the previous
    content (or nothing) or the complete new content, never a partial file.

    The data is written to a temporary file in the destination directory,
    flushed to disk and then renamed over the destination. Concurrent writers
    of the same path race on the rename only, and the last one wins.
    """
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(prefix="." + path.name + ".", suffix=TMP_SUFFIX, dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, str(path))
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def is_temporary(path: t.Union[str, Path]) -> bool:
    return str(path).endswith(TMP_SUFFIX)
