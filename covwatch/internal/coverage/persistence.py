"""Per-process coverage reports.

Every process writes the snapshot of its registry to its own file in the
report directory::

    <temp_dir>/<process uuid>.json

    {
        "process": {"uuid": ..., "pid": ..., "ppid": ..., "parent": ..., "argv": [...], "time": ...},
        "coverage": {"/abs/path/module.py": {<file coverage record>}, ...}
    }

The file is written atomically. Flushing again overwrites it with the
current, cumulative snapshot, so flushing is idempotent. A forked child
starts a new file and new counters, so the counts inherited from the parent
are never reported twice. A child started by ``multiprocessing`` flushes from
its finalizers, since it never reaches the interpreter exit.
"""
import json
from multiprocessing import util as mp_util
import os
from pathlib import Path
import sys
import time
import typing as t
import uuid

from covwatch.internal import atexit
from covwatch.internal import forksafe
from covwatch.internal.coverage.registry import CoverageRegistry
from covwatch.internal.logger import get_logger
from covwatch.internal.utils.fs import atomic_write


log = get_logger(__name__)


# Flush after the shutdown hooks with the default priority, which may still
# run instrumented code.
FLUSH_PRIORITY = 100


def new_process_id():
    # type: () -> str
    return str(uuid.uuid4())


class ReportWriter:
    def __init__(self, registry, directory, parent=None):
        # type: (CoverageRegistry, t.Union[str, Path], t.Optional[str]) -> None
        self.registry = registry
        self.directory = Path(directory)
        self.parent = parent
        self.uuid = new_process_id()
        self._lock = forksafe.Lock()
        self._started = False

    @classmethod
    def from_config(cls, config, registry):
        # type: (t.Any, CoverageRegistry) -> ReportWriter
        return cls(registry, config.temp_directory, parent=config.parent_id)

    @property
    def path(self):
        # type: () -> Path
        return self.directory / ("%s.json" % self.uuid)

    def process_info(self):
        # type: () -> t.Dict[str, t.Any]
        return {
            "uuid": self.uuid,
            "pid": os.getpid(),
            "ppid": os.getppid(),
            "parent": self.parent,
            "argv": list(sys.argv),
            "time": time.time(),
        }

    def flush(self):
        # type: () -> t.Optional[Path]
        """Write the current snapshot of the registry and return the report path.

        A flush requested while another one is in progress in this process,
        e.g. from a signal handler, is skipped and ``None`` is returned.
        """
        if not self._lock.acquire(blocking=False):
            log.debug("Coverage flush already in progress, skipping")
            return None

        try:
            path = self.path
            data = json.dumps({"process": self.process_info(), "coverage": self.registry.snapshot().to_dict()})
            os.makedirs(str(self.directory), exist_ok=True)
            atomic_write(path, data.encode("utf-8"))
            log.debug("Coverage report written to %s", path)
            return path
        except OSError as e:
            log.warning("Cannot write coverage report to %s: %s", self.directory, e)
            return None
        finally:
            self._lock.release()

    def _after_fork(self):
        # type: () -> None
        self.uuid = new_process_id()
        self.registry.reset()

    def _after_process_fork(self):
        # type: () -> None
        # multiprocessing children leave through os._exit(), which skips the
        # shutdown hooks, but they run the multiprocessing finalizers first.
        if self._started:
            mp_util.Finalize(None, self.flush, exitpriority=0)

    def start(self):
        # type: () -> None
        """Flush when the process ends, whichever way it ends."""
        if self._started:
            return
        atexit.register(self.flush, register_signal=True, priority=FLUSH_PRIORITY)
        forksafe.register(self._after_fork)
        mp_util.register_after_fork(self, ReportWriter._after_process_fork)
        self._started = True

    def stop(self):
        # type: () -> None
        if not self._started:
            return
        atexit.unregister(self.flush)
        try:
            forksafe.unregister(self._after_fork)
        except ValueError:
            pass
        self._started = False
