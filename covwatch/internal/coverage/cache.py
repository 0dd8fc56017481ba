"""Content addressed cache of instrumented sources.

Each entry is a JSON file named after its key in the cache directory::

    {"path": "...", "hash": "<content hash>", "code": "<instrumented text>", "skeleton": {...}}

The key digests everything the instrumented output depends on, so an entry is
only ever written with one value. Processes sharing the directory may write
the same entry at the same time: every write is atomic and the values are
identical, so whichever rename lands last is as good as the first.
"""
from hashlib import sha256
import json
import os
from pathlib import Path
import sys
import typing as t

from covwatch.internal.coverage.data import CoverageSkeleton
from covwatch.internal.coverage.instrumentation import Instrumenter
from covwatch.internal.coverage.instrumentation import content_hash
from covwatch.internal.logger import get_logger
from covwatch.internal.utils.fs import atomic_write


log = get_logger(__name__)


ENTRY_SUFFIX = ".json"

Result = t.Tuple[str, CoverageSkeleton]


class InstrumentationCache:
    def __init__(self, instrumenter, directory=None, enabled=True):
        # type: (Instrumenter, t.Optional[t.Union[str, Path]], bool) -> None
        self.instrumenter = instrumenter
        self.directory = Path(directory) if directory is not None else None
        self._enabled = enabled and self.directory is not None

    @classmethod
    def from_config(cls, config, instrumenter):
        # type: (t.Any, Instrumenter) -> InstrumentationCache
        return cls(instrumenter, config.cache_directory, enabled=config.caching_enabled)

    @property
    def enabled(self):
        # type: () -> bool
        return self._enabled

    def disable(self, reason):
        # type: (str) -> None
        if self._enabled:
            log.warning("Instrumentation cache disabled for this process: %s", reason)
        self._enabled = False

    def key(self, path, content):
        # type: (str, str) -> str
        instrumenter = type(self.instrumenter)
        material = json.dumps(
            {
                "content": content_hash(content),
                "instrumenter": "%s.%s" % (instrumenter.__module__, instrumenter.__qualname__),
                "options": self.instrumenter.options,
                "path": path,
                "python": "%d.%d" % sys.version_info[:2],
                "version": self.instrumenter.version,
            },
            sort_keys=True,
        )
        return sha256(material.encode("utf-8")).hexdigest()

    def entry_path(self, key):
        # type: (str) -> Path
        return t.cast(Path, self.directory) / (key + ENTRY_SUFFIX)

    def get_or_instrument(self, path, content):
        # type: (str, str) -> Result
        """Return the instrumented text and skeleton of ``content``.

        A hit never invokes the instrumenter. A miss invokes it and stores the
        result, unless the cache is disabled.
        """
        if not self._enabled:
            return self.instrumenter.instrument(path, content)

        key = self.key(path, content)

        cached = self._read(key, path, content)
        if cached is not None:
            return cached

        result = self.instrumenter.instrument(path, content)
        self._write(key, path, result)
        return result

    def _read(self, key, path, content):
        # type: (str, str, str) -> t.Optional[Result]
        entry_path = self.entry_path(key)
        try:
            with entry_path.open("r", encoding="utf-8") as f:
                entry = json.load(f)
            skeleton = CoverageSkeleton.from_dict(entry["skeleton"])
            code = entry["code"]
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError):
            log.debug("Ignoring unreadable cache entry %s", entry_path, exc_info=True)
            return None

        if entry.get("path") != path or skeleton.hash != content_hash(content) or not isinstance(code, str):
            log.debug("Cache entry %s does not belong to %s, ignoring it", entry_path, path)
            return None

        return code, skeleton

    def _write(self, key, path, result):
        # type: (str, str, Result) -> None
        code, skeleton = result
        data = json.dumps(
            {"path": path, "hash": skeleton.hash, "code": code, "skeleton": skeleton.to_dict()},
            sort_keys=True,
        ).encode("utf-8")
        try:
            os.makedirs(str(self.directory), exist_ok=True)
            atomic_write(self.entry_path(key), data)
        except OSError as e:
            self.disable("cannot write to %s (%s)" % (self.directory, e))
