"""Per-extension source handlers.

Every file extension eligible for coverage has a handler, a callable turning
the raw source of a file into Python source::

    handler(source: str, filename: str) -> str

The base handler of ``.py`` returns the source unchanged. The base handler of
any other extension is the configured pre-transform (e.g. a transpiler), or
the identity when there is none.

Handlers are never replaced. They are wrapped by middleware, which receives
the handler installed so far and returns the one that replaces it::

    def log_sources(next_handler):
        def handler(source, filename):
            log.debug("loading %s", filename)
            return next_handler(source, filename)
        return handler

    handlers.wrap(".py", log_sources)

The most recently wrapped middleware runs first.
"""
import importlib
import os
import typing as t

from covwatch.internal.coverage.errors import CoverageError
from covwatch.internal.coverage.errors import TransformError
from covwatch.internal.coverage.errors import UnknownExtensionError
from covwatch.internal.logger import get_logger


log = get_logger(__name__)


Handler = t.Callable[[str, str], str]
Middleware = t.Callable[[Handler], Handler]
Transform = t.Callable[..., str]


PYTHON_EXTENSION = ".py"


def _identity(source: str, filename: str) -> str:
    return source


def _pre_transform(transform: Transform) -> Handler:
    def handler(source: str, filename: str) -> str:
        return transform(source, filename=filename)

    return handler


def load_transform(value: str) -> Transform:
    """Import a pre-transform given as ``package.module:callable``."""
    module_name, _, attr = value.partition(":")
    if not module_name or not attr:
        raise ValueError("Invalid transform %r, expected 'module:callable'" % value)

    try:
        obj = importlib.import_module(module_name)
        for name in attr.split("."):
            obj = getattr(obj, name)
    except (ImportError, AttributeError) as e:
        raise ImportError('Could not import transform "%s". %s: %s.' % (value, e.__class__.__name__, e)) from e

    if not callable(obj):
        raise TypeError("Transform %r is not callable" % value)

    return t.cast(Transform, obj)


def validate_extension(ext: str) -> str:
    if not isinstance(ext, str) or len(ext) < 2 or not ext.startswith("."):
        raise ValueError("Invalid extension %r, expected a suffix like '.py'" % (ext,))
    if os.sep in ext or "/" in ext or (os.altsep and os.altsep in ext):
        raise ValueError("Invalid extension %r, it must not contain a path separator" % (ext,))
    return ext


class ExtensionHandle:
    """Capability returned by ``ExtensionHandlers.register`` for one extension."""

    __slots__ = ("_handlers", "extension")

    def __init__(self, handlers: "ExtensionHandlers", extension: str) -> None:
        self._handlers = handlers
        self.extension = extension

    def __repr__(self):
        return "ExtensionHandle(%r)" % self.extension

    def wrap(self, middleware: Middleware) -> "ExtensionHandle":
        self._handlers.wrap(self.extension, middleware)
        return self

    def __call__(self, source: str, filename: str) -> str:
        return self._handlers.apply(self.extension, source, filename)


class ExtensionHandlers:
    """Dispatch table of extension to handler."""

    def __init__(self) -> None:
        self._handlers = {}  # type: t.Dict[str, Handler]
        self._handles = {}  # type: t.Dict[str, ExtensionHandle]

    @classmethod
    def from_config(cls, config: t.Any) -> "ExtensionHandlers":
        handlers = cls()
        transform = load_transform(config.transform) if config.transform else None
        for ext in config.extension:
            handlers.register(ext, None if ext == PYTHON_EXTENSION else transform)
        return handlers

    def register(self, ext: str, transform: t.Optional[Transform] = None) -> ExtensionHandle:
        """Make ``ext`` eligible for coverage.

        Registering an extension twice returns the handle of the first
        registration. Use ``wrap`` to change the handling of a registered
        extension.
        """
        validate_extension(ext)

        try:
            handle = self._handles[ext]
        except KeyError:
            pass
        else:
            if transform is not None:
                log.warning("Extension %s is already registered, the new transform %r is ignored", ext, transform)
            return handle

        if ext == PYTHON_EXTENSION or transform is None:
            self._handlers[ext] = _identity
        else:
            self._handlers[ext] = _pre_transform(transform)

        handle = self._handles[ext] = ExtensionHandle(self, ext)
        log.debug("Registered handler for extension %s", ext)
        return handle

    def wrap(self, ext: str, middleware: Middleware) -> None:
        previous = self.handler(ext)
        wrapped = middleware(previous)
        if not callable(wrapped):
            raise TypeError("Middleware %r did not return a handler" % middleware)
        self._handlers[ext] = wrapped

    def handler(self, ext: str) -> Handler:
        try:
            return self._handlers[ext]
        except KeyError:
            raise UnknownExtensionError("No handler registered for extension %r" % ext) from None

    def handle(self, ext: str) -> ExtensionHandle:
        try:
            return self._handles[ext]
        except KeyError:
            raise UnknownExtensionError("No handler registered for extension %r" % ext) from None

    def extension_for(self, path: str) -> t.Optional[str]:
        """The longest registered extension ``path`` ends with."""
        name = os.path.basename(path)
        matches = [ext for ext in self._handlers if name.endswith(ext) and len(name) > len(ext)]
        return max(matches, key=len) if matches else None

    def handler_for(self, path: str) -> t.Optional[Handler]:
        ext = self.extension_for(path)
        return self._handlers[ext] if ext is not None else None

    def apply(self, ext: str, source: str, filename: str) -> str:
        """Run the handler chain of ``ext`` over ``source``.

        Failures of user supplied handlers are raised as ``TransformError``.
        """
        handler = self.handler(ext)
        try:
            result = handler(source, filename)
        except CoverageError:
            raise
        except Exception as e:
            raise TransformError(filename, e) from e

        if not isinstance(result, str):
            raise TransformError(filename, "handler returned %s instead of source text" % type(result).__name__)

        return result

    @property
    def extensions(self) -> t.Tuple[str, ...]:
        return tuple(self._handlers)

    def __contains__(self, ext: object) -> bool:
        return ext in self._handlers
