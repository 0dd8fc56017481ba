class CoverageError(Exception):
    """Base class of the errors raised by the coverage collector."""


class InstrumentationError(CoverageError):
    """The source of a module could not be instrumented, e.g. because it does not parse."""

    def __init__(self, path, reason):
        super().__init__("Cannot instrument %s: %s" % (path, reason))
        self.path = path
        self.reason = reason


class TransformError(CoverageError):
    """A user supplied pre-transform failed on a module."""

    def __init__(self, path, reason):
        super().__init__("Cannot transform %s: %s" % (path, reason))
        self.path = path
        self.reason = reason


class UnknownExtensionError(CoverageError, LookupError):
    """No handler is registered for a file extension."""


class CorruptReportError(CoverageError, ValueError):
    """A process report file does not hold a coverage map."""
