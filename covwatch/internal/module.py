import abc
from importlib._bootstrap import _init_module_attrs
from importlib.abc import Loader
from importlib.machinery import ModuleSpec
from importlib.util import find_spec
from pathlib import Path
import sys
from types import ModuleType
from typing import Any
from typing import Callable
from typing import Dict
from typing import List  # noqa:F401
from typing import Optional
from typing import Set  # noqa:F401
from typing import Tuple  # noqa:F401
from typing import Union
from typing import cast

from covwatch.internal.logger import get_logger


ModuleHookType = Callable[[ModuleType], None]
PreExecHookType = Callable[[Any, ModuleType], None]
PreExecHookCond = Union[str, Callable[[ModuleType], bool]]


log = get_logger(__name__)


def origin(module: ModuleType) -> Optional[Path]:
    """Get the origin source file of the module."""
    try:
        # DEV: Use object.__getattribute__ to avoid potential side-effects.
        orig = Path(object.__getattribute__(module, "__file__")).resolve()
    except (AttributeError, TypeError):
        # Module is probably only partially initialised, so we look at its
        # spec instead
        try:
            # DEV: Use object.__getattribute__ to avoid potential side-effects.
            orig = Path(object.__getattribute__(module, "__spec__").origin).resolve()
        except (AttributeError, ValueError, TypeError):
            orig = None

    if orig is not None and orig.is_file():
        return orig.with_suffix(".py") if orig.suffix == ".pyc" else orig

    return None


def is_namespace_spec(spec: ModuleSpec) -> bool:
    return spec.origin is None and spec.submodule_search_locations is not None


class _ImportHookChainedLoader:
    """Proxy around the loader chosen by the regular finders.

    The proxy runs the first matching pre-exec hook registered by an installed
    ``ModuleWatchdog`` in place of the wrapped loader's ``exec_module``, then
    every ``after_import`` callback. Anything else is forwarded to the wrapped
    loader, so code inspecting ``spec.loader`` keeps working.
    """

    def __init__(self, loader, spec=None):
        # type: (Optional[Loader], Optional[ModuleSpec]) -> None
        self.loader = loader
        self.spec = spec

        self.callbacks = {}  # type: Dict[Any, Callable[[ModuleType], None]]

        # A missing loader is generally an indication of a namespace package.
        if loader is None or hasattr(loader, "create_module"):
            self.create_module = self._create_module
        if loader is None or hasattr(loader, "exec_module"):
            self.exec_module = self._exec_module

    def __getattr__(self, name):
        # Proxy any other attribute access to the underlying loader.
        return getattr(self.loader, name)

    def add_callback(self, key, callback):
        # type: (Any, Callable[[ModuleType], None]) -> None
        self.callbacks[key] = callback

    def _create_module(self, spec):
        if self.loader is not None:
            return self.loader.create_module(spec)

        if is_namespace_spec(spec):
            module = ModuleType(spec.name)
            _init_module_attrs(spec, module)
            return module

        return None

    def _exec_module(self, module: ModuleType) -> None:
        # Collect and run only the first hook that matches the module.
        pre_exec_hook = None

        for _ in sys.meta_path:
            if isinstance(_, ModuleWatchdog):
                for cond, hook in _._pre_exec_module_hooks:
                    try:
                        matched = (isinstance(cond, str) and cond == module.__name__) or (
                            callable(cond) and cond(module)
                        )
                    except Exception:
                        log.debug("Exception happened while processing pre_exec_module_hooks", exc_info=True)
                        matched = False
                    if matched:
                        # Several pre-exec hooks could match, we keep the first one
                        pre_exec_hook = hook
                        break

            if pre_exec_hook is not None:
                break

        if pre_exec_hook:
            pre_exec_hook(self, module)
        else:
            if self.loader is None:
                spec = getattr(module, "__spec__", None)
                if spec is not None and is_namespace_spec(spec):
                    sys.modules[spec.name] = module
            else:
                self.loader.exec_module(module)

        for callback in self.callbacks.values():
            callback(module)


class BaseModuleWatchdog(abc.ABC):
    """Base module watchdog.

    Invokes ``after_import`` every time a new module is imported.
    """

    _instance = None  # type: Optional[BaseModuleWatchdog]

    def __init__(self):
        # type: () -> None
        self._finding = set()  # type: Set[str]

    def _add_to_meta_path(self):
        # type: () -> None
        sys.meta_path.insert(0, self)  # type: ignore[arg-type]

    @classmethod
    def _find_in_meta_path(cls):
        # type: () -> Optional[int]
        for i, meta_path in enumerate(sys.meta_path):
            if type(meta_path) is cls:
                return i
        return None

    @classmethod
    def _remove_from_meta_path(cls):
        # type: () -> None
        i = cls._find_in_meta_path()

        if i is None:
            raise RuntimeError("%s is not installed" % cls.__name__)

        sys.meta_path.pop(i)

    def after_import(self, module: ModuleType) -> None:
        raise NotImplementedError()

    def find_spec(
        self, fullname: str, path: Optional[str] = None, target: Optional[ModuleType] = None
    ) -> Optional[ModuleSpec]:
        if fullname in self._finding:
            return None

        self._finding.add(fullname)

        try:
            try:
                # Best effort
                spec = find_spec(fullname)
            except Exception:
                return None

            if spec is None:
                return None

            loader = getattr(spec, "loader", None)

            if not isinstance(loader, _ImportHookChainedLoader):
                spec.loader = cast(Loader, _ImportHookChainedLoader(loader, spec))

            cast(_ImportHookChainedLoader, spec.loader).add_callback(type(self), self.after_import)

            return spec

        finally:
            self._finding.remove(fullname)

    @classmethod
    def _check_installed(cls):
        # type: () -> None
        if not cls.is_installed():
            raise RuntimeError("%s is not installed" % cls.__name__)

    @classmethod
    def install(cls):
        # type: () -> None
        """Install the module watchdog."""
        if cls.is_installed():
            raise RuntimeError("%s is already installed" % cls.__name__)

        cls._instance = cls()
        cls._instance._add_to_meta_path()
        log.debug("%s installed", cls)

    @classmethod
    def is_installed(cls):
        """Check whether this module watchdog class is installed."""
        return cls._instance is not None and type(cls._instance) is cls

    @classmethod
    def uninstall(cls):
        # type: () -> None
        """Uninstall the module watchdog.

        This will uninstall only the most recently installed instance of this
        class.
        """
        cls._check_installed()
        cls._remove_from_meta_path()

        cls._instance = None

        log.debug("%s uninstalled", cls)


class ModuleWatchdog(BaseModuleWatchdog):
    """Module watchdog.

    Hooks into the import machinery to detect when modules are loaded. This is
    also responsible for triggering any registered pre-exec hooks, which may
    execute a module in place of its loader.

    Subclasses might customize the default behavior by overriding the
    ``after_import`` method, which is triggered on every module import, once
    the subclass is installed.
    """

    def __init__(self):
        # type: () -> None
        super().__init__()
        self._pre_exec_module_hooks = []  # type: List[Tuple[PreExecHookCond, PreExecHookType]]

    def after_import(self, module):
        # type: (ModuleType) -> None
        pass

    @classmethod
    def register_pre_exec_module_hook(cls, cond, hook):
        # type: (PreExecHookCond, PreExecHookType) -> None
        """Register a hook to execute before/instead of exec_module.

        The pre exec_module hook is executed before the module is executed
        to allow for changed modules to be executed as needed. To ensure
        that the hook is applied only to the modules that are required,
        the condition is evaluated against the module name, or called with
        the module object when it is a callable.
        """
        cls._check_installed()

        log.debug("Registering pre_exec module hook '%r' on condition '%s'", hook, cond)
        instance = cast(ModuleWatchdog, cls._instance)
        instance._pre_exec_module_hooks.append((cond, hook))
