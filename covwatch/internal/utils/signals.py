import signal
import sys


def _is_interpreter_finalizing():
    """Check if the Python interpreter is in the process of shutting down.

    Calling signal.signal() during interpreter finalization can cause a
    SIGSEGV because Python's internal signal state may have been freed.
    """
    # Python 3.12+ has sys._is_finalizing()
    if hasattr(sys, "_is_finalizing"):
        return sys._is_finalizing()
    elif hasattr(sys, "is_finalizing"):
        return sys.is_finalizing()
    return False


def handle_signal(sig, f):
    """
    Installs ``f`` as the handler of ``sig`` and returns the handler it
    replaced, so that the caller can restore it or chain to it.

    ``None`` is returned when the handler could not be installed, e.g. from a
    thread other than the main one or while the interpreter shuts down.
    """
    if _is_interpreter_finalizing():
        return None

    try:
        old_signal = signal.getsignal(sig)
    except (OSError, ValueError):
        # Signal operations may fail during shutdown
        return None

    if old_signal == f:
        return None

    try:
        signal.signal(sig, f)
    except (OSError, ValueError):
        return None

    return old_signal


def restore_signal(sig, handler):
    """Put ``handler`` back in place, falling back to the default disposition."""
    if handler is None:
        handler = signal.SIG_DFL
    try:
        signal.signal(sig, handler)
    except (OSError, ValueError, TypeError):
        return False
    return True
