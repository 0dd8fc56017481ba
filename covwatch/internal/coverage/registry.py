import threading
import typing as t

from covwatch.internal import forksafe
from covwatch.internal.coverage.data import CoverageMap
from covwatch.internal.coverage.data import CoverageSkeleton
from covwatch.internal.coverage.data import FileCoverage
from covwatch.internal.logger import get_logger


log = get_logger(__name__)


class _Shard:
    """Counters updated by a single thread."""

    __slots__ = ("s", "f", "b")

    def __init__(self, skeleton):
        # type: (CoverageSkeleton) -> None
        self.s = [0] * len(skeleton.statement_map)
        self.f = [0] * len(skeleton.fn_map)
        self.b = [[0] * len(m.locations) for m in skeleton.branch_map]

    def zero(self):
        # type: () -> None
        for counts in (self.s, self.f):
            counts[:] = [0] * len(counts)
        for paths in self.b:
            paths[:] = [0] * len(paths)


class FileCounters:
    """The counters of one file, as seen by its instrumented code.

    Instrumented modules reach this object through their ``__covwatch__``
    global. Every thread increments its own shard of counters, so the hot
    path takes no lock. Shards are summed when a snapshot is taken and outlive
    the threads that created them.
    """

    __slots__ = ("skeleton", "_local", "_shards")

    def __init__(self, skeleton):
        # type: (CoverageSkeleton) -> None
        self.skeleton = skeleton
        self._local = threading.local()
        self._shards = []  # type: t.List[_Shard]

    @property
    def path(self):
        # type: () -> str
        return self.skeleton.path

    def _shard(self):
        # type: () -> _Shard
        try:
            return self._local.shard
        except AttributeError:
            shard = self._local.shard = _Shard(self.skeleton)
            self._shards.append(shard)
            return shard

    def s(self, sid):
        # type: (int) -> None
        self._shard().s[sid] += 1

    def f(self, fid):
        # type: (int) -> None
        self._shard().f[fid] += 1

    def b(self, bid, index):
        # type: (int, int) -> None
        self._shard().b[bid][index] += 1

    def t(self, bid, index, value):
        # type: (int, int, t.Any) -> t.Any
        self._shard().b[bid][index] += 1
        return value

    def reset(self):
        # type: () -> None
        for shard in list(self._shards):
            shard.zero()

    def snapshot(self):
        # type: () -> FileCoverage
        record = FileCoverage.from_skeleton(self.skeleton)
        for shard in list(self._shards):
            for i, c in enumerate(shard.s):
                record.s[i] += c
            for i, c in enumerate(shard.f):
                record.f[i] += c
            for i, paths in enumerate(shard.b):
                counts = record.b[i]
                for n, c in enumerate(paths):
                    counts[n] += c
        return record


class CoverageRegistry:
    """Process local map of file path to counters."""

    def __init__(self):
        # type: () -> None
        self._files = {}  # type: t.Dict[str, FileCounters]
        self._lock = forksafe.Lock()

    def register(self, path, skeleton):
        # type: (str, CoverageSkeleton) -> FileCounters
        """Seed the counters of ``path`` at zero and return them.

        Registering a path again with the same skeleton returns the existing
        counters, so a module that is reloaded keeps accumulating.
        """
        with self._lock:
            counters = self._files.get(path)
            if counters is not None:
                if counters.skeleton.hash == skeleton.hash and counters.skeleton == skeleton:
                    return counters
                log.warning("%s changed since it was first loaded, its coverage restarts from zero", path)

            counters = self._files[path] = FileCounters(skeleton)
            return counters

    def get(self, path):
        # type: (str) -> t.Optional[FileCounters]
        return self._files.get(path)

    def increment(self, path, kind, cid, index=0):
        # type: (str, str, int, int) -> None
        counters = self._files[path]
        if kind == "s":
            counters.s(cid)
        elif kind == "f":
            counters.f(cid)
        elif kind == "b":
            counters.b(cid, index)
        else:
            raise ValueError("Unknown counter kind %r" % kind)

    def snapshot(self):
        # type: () -> CoverageMap
        return CoverageMap((path, counters.snapshot()) for path, counters in list(self._files.items()))

    def reset(self):
        # type: () -> None
        """Zero every counter, keeping the files registered.

        Modules that are already loaded keep their counters object, so they
        go on reporting into the new measurement window.
        """
        for counters in list(self._files.values()):
            counters.reset()

    def clear(self):
        # type: () -> None
        with self._lock:
            self._files.clear()

    def __contains__(self, path):
        # type: (object) -> bool
        return path in self._files

    def __len__(self):
        # type: () -> int
        return len(self._files)

    @property
    def paths(self):
        # type: () -> t.List[str]
        return list(self._files)
