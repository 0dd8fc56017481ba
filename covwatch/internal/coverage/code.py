from functools import partial
import importlib
from importlib.machinery import BYTECODE_SUFFIXES
from importlib.machinery import EXTENSION_SUFFIXES
from importlib.machinery import SOURCE_SUFFIXES
from importlib.machinery import ExtensionFileLoader
from importlib.machinery import FileFinder
from importlib.machinery import SourceFileLoader
from importlib.machinery import SourcelessFileLoader
from importlib.util import decode_source
from pathlib import Path
import sys
from types import ModuleType
import typing as t

from covwatch.internal.coverage.cache import InstrumentationCache
from covwatch.internal.coverage.data import CoverageMap
from covwatch.internal.coverage.data import CoverageSkeleton
from covwatch.internal.coverage.errors import UnknownExtensionError
from covwatch.internal.coverage.exclusion import ExclusionPolicy
from covwatch.internal.coverage.handlers import ExtensionHandlers
from covwatch.internal.coverage.handlers import PYTHON_EXTENSION
from covwatch.internal.coverage.handlers import load_transform
from covwatch.internal.coverage.instrumentation import COUNTERS_NAME
from covwatch.internal.coverage.instrumentation import AstInstrumenter
from covwatch.internal.coverage.instrumentation import Instrumenter
from covwatch.internal.coverage.instrumentation import compile_instrumented
from covwatch.internal.coverage.persistence import ReportWriter
from covwatch.internal.coverage.registry import CoverageRegistry
from covwatch.internal.logger import get_logger
from covwatch.internal.module import ModuleWatchdog
from covwatch.internal.module import origin
from covwatch.settings.coverage import CoverageConfig


log = get_logger(__name__)

_original_exec = exec

# Never instrument the collector itself
_own_path = Path(__file__).resolve().parents[2]


def read_source(path, handlers):
    # type: (str, ExtensionHandlers) -> str
    """Read a file and run it through the handler chain of its extension."""
    ext = handlers.extension_for(path)
    if ext is None:
        raise UnknownExtensionError("No handler registered for %s" % path)
    with open(path, "rb") as f:
        source = decode_source(f.read())
    return handlers.apply(ext, source, path)


def load_skeleton(path, handlers, cache):
    # type: (str, ExtensionHandlers, InstrumentationCache) -> CoverageSkeleton
    _, skeleton = cache.get_or_instrument(path, read_source(path, handlers))
    return skeleton


class ExtensionSourceLoader(SourceFileLoader):
    """Loader of source files with a registered extension other than ``.py``.

    The raw content goes through the handler chain of its extension before it
    is compiled. Since the result depends on the handlers, bytecode is never
    cached.
    """

    def __init__(self, fullname, path, handlers):
        # type: (str, str, ExtensionHandlers) -> None
        super().__init__(fullname, path)
        self.handlers = handlers

    def get_code(self, fullname):
        source_path = self.get_filename(fullname)
        return self.source_to_code(self.get_data(source_path), source_path)

    def source_to_code(self, data, path, *, _optimize=-1):
        ext = self.handlers.extension_for(path)
        source = decode_source(data) if isinstance(data, bytes) else data
        if ext is not None:
            source = self.handlers.apply(ext, source, path)
        return compile(source, path, "exec", dont_inherit=True, optimize=_optimize)


def _file_finder_hook(handlers):
    # type: (ExtensionHandlers) -> t.Optional[t.Callable[[str], FileFinder]]
    known = set(SOURCE_SUFFIXES) | set(BYTECODE_SUFFIXES) | set(EXTENSION_SUFFIXES)
    extra = [ext for ext in handlers.extensions if ext not in known]
    if not extra:
        return None
    return FileFinder.path_hook(
        (ExtensionFileLoader, EXTENSION_SUFFIXES),
        (SourceFileLoader, SOURCE_SUFFIXES),
        (partial(ExtensionSourceLoader, handlers=handlers), extra),
        (SourcelessFileLoader, BYTECODE_SUFFIXES),
    )


class SourceCodeCollector(ModuleWatchdog):
    """Instrument eligible modules as they are imported.

    The collector sits first in ``sys.meta_path``. The regular finders still
    find every module, and the collector executes the instrumented source of
    the eligible ones in place of their loader. Modules loaded by any other
    kind of loader, or not eligible, are executed by their own loader.
    """

    _instance = None  # type: t.Optional[SourceCodeCollector]

    def __init__(self):
        # type: () -> None
        super().__init__()
        self.config = None  # type: t.Optional[CoverageConfig]
        self.registry = CoverageRegistry()
        self.handlers = ExtensionHandlers()
        self.policy = None  # type: t.Optional[ExclusionPolicy]
        self.cache = None  # type: t.Optional[InstrumentationCache]
        self.writer = None  # type: t.Optional[ReportWriter]
        self.source_map = True
        self._path_hook = None  # type: t.Optional[t.Callable[[str], FileFinder]]

    @classmethod
    def install(
        cls,
        config=None,  # type: t.Optional[CoverageConfig]
        registry=None,  # type: t.Optional[CoverageRegistry]
        instrumenter=None,  # type: t.Optional[Instrumenter]
        handlers=None,  # type: t.Optional[ExtensionHandlers]
        persist=True,  # type: bool
    ):
        # type: (...) -> None
        if cls.is_installed():
            return

        if config is None:
            config = CoverageConfig()

        super().install()

        instance = t.cast(SourceCodeCollector, cls._instance)
        instance._configure(config, registry, instrumenter, handlers)

        cls.register_pre_exec_module_hook(instance._is_eligible, instance._exec_instrumented)

        instance._path_hook = _file_finder_hook(instance.handlers)
        if instance._path_hook is not None:
            sys.path_hooks.insert(0, instance._path_hook)
            sys.path_importer_cache.clear()
            importlib.invalidate_caches()

        if persist:
            instance.writer = ReportWriter.from_config(config, instance.registry)
            instance.writer.start()

    def _configure(self, config, registry, instrumenter, handlers):
        # type: (CoverageConfig, t.Optional[CoverageRegistry], t.Optional[Instrumenter], t.Optional[ExtensionHandlers]) -> None
        self.config = config
        if registry is not None:
            self.registry = registry

        if handlers is not None:
            self.handlers = handlers
        transform = load_transform(config.transform) if config.transform else None
        for ext in config.extension:
            # Extensions registered by the caller keep their own handlers
            if ext not in self.handlers:
                self.handlers.register(ext, None if ext == PYTHON_EXTENSION else transform)

        self.policy = ExclusionPolicy.from_config(config, extensions=self.handlers.extensions)
        self.cache = InstrumentationCache.from_config(
            config, instrumenter if instrumenter is not None else AstInstrumenter.from_config(config)
        )
        self.source_map = config.source_map

    @classmethod
    def uninstall(cls):
        # type: () -> None
        instance = cls._instance
        if isinstance(instance, SourceCodeCollector):
            if instance.writer is not None:
                instance.writer.stop()
            if instance._path_hook is not None:
                try:
                    sys.path_hooks.remove(instance._path_hook)
                except ValueError:
                    pass
                sys.path_importer_cache.clear()
                importlib.invalidate_caches()

        super().uninstall()

    def _is_eligible(self, module):
        # type: (ModuleType) -> bool
        spec = getattr(module, "__spec__", None)
        if spec is None:
            return False

        loader = getattr(spec.loader, "loader", spec.loader)
        if type(loader) is not SourceFileLoader and not isinstance(loader, ExtensionSourceLoader):
            return False

        path = origin(module)
        if path is None or path.is_relative_to(_own_path):
            return False

        if self.handlers.extension_for(path.name) is None:
            return False

        return t.cast(ExclusionPolicy, self.policy).should_instrument(path)

    def _exec_instrumented(self, _, module):
        # type: (t.Any, ModuleType) -> None
        path = str(origin(module))

        text, skeleton = t.cast(InstrumentationCache, self.cache).get_or_instrument(
            path, read_source(path, self.handlers)
        )
        code = compile_instrumented(text, path, skeleton.line_map if self.source_map else ())

        # The counters are registered before the module runs, so that a file
        # that is loaded reports its statements even when none of them run.
        module.__dict__[COUNTERS_NAME] = self.registry.register(path, skeleton)

        log.debug("Executing instrumented module %s from %s", module.__name__, path)
        _original_exec(code, module.__dict__)

    def skeleton_for(self, path):
        # type: (str) -> CoverageSkeleton
        return load_skeleton(path, self.handlers, t.cast(InstrumentationCache, self.cache))

    @classmethod
    def flush(cls):
        # type: () -> t.Optional[Path]
        instance = cls._instance
        if not isinstance(instance, SourceCodeCollector) or instance.writer is None:
            return None
        return instance.writer.flush()

    @classmethod
    def reset(cls):
        # type: () -> None
        instance = cls._instance
        if isinstance(instance, SourceCodeCollector):
            instance.registry.reset()

    @classmethod
    def snapshot(cls):
        # type: () -> CoverageMap
        instance = cls._instance
        if not isinstance(instance, SourceCodeCollector):
            return CoverageMap()
        return instance.registry.snapshot()
