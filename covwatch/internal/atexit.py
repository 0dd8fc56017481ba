# -*- encoding: utf-8 -*-
"""
An API to provide shutdown hooks.

Hooks registered here run exactly once per process, in ascending priority and
then registration order, whichever way the process ends: normal interpreter
exit, an uncaught exception, or an exit signal (TERM or INT) when requested
with ``register_signal=True``. When a signal triggers the hooks, the previous
disposition of that signal is restored afterwards and the signal is delivered
again, so that the process still terminates the way its parent expects. A
previous Python handler, like the one raising ``KeyboardInterrupt``, is called
instead and the hooks wait for the interpreter exit.
"""
import atexit
import os
import signal
import threading
import typing

from covwatch.internal.logger import get_logger
from covwatch.internal.utils import signals


log = get_logger(__name__)


EXIT_SIGNALS = (signal.SIGTERM, signal.SIGINT)

DEFAULT_PRIORITY = 0


class _Hook(typing.NamedTuple):
    priority: int
    seq: int
    func: typing.Callable[[], None]


_hooks = []  # type: typing.List[_Hook]
_done = []  # type: typing.List[typing.Callable[[], None]]
_seq = 0
_atexit_installed = False
_previous_handlers = {}  # type: typing.Dict[int, typing.Any]


def register(func, register_signal=False, priority=DEFAULT_PRIORITY):
    # type: (typing.Callable[[], None], bool, int) -> typing.Callable[[], None]
    """
    Register a function to be called when the program exits.
    """
    global _seq, _atexit_installed

    unregister(func)
    _seq += 1
    _hooks.append(_Hook(priority, _seq, func))

    if not _atexit_installed:
        atexit.register(run_hooks)
        _atexit_installed = True

    if register_signal:
        # Register the function to be called when an exit signal (TERM or INT) is received.
        # Default value is False to avoid changing the signal disposition unexpectedly.
        register_on_exit_signal()

    return func


def unregister(func):
    # type: (typing.Callable[[], None]) -> None
    """
    Unregister a function to be called when the program exits.
    """
    _hooks[:] = [h for h in _hooks if h.func != func]


def run_hooks():
    # type: () -> None
    """Run every registered hook that has not run yet.

    A hook is marked as done before it is called, so that a signal arriving
    while the hook runs cannot make it run a second time.
    """
    for hook in sorted(_hooks):
        if any(hook.func == f for f in _done):
            continue
        _done.append(hook.func)
        try:
            hook.func()
        except Exception:
            log.exception("Exception ignored in shutdown hook %r", hook.func)


def _reset_done():
    # type: () -> None
    # A forked child is a new process: its hooks have not run yet.
    del _done[:]


if hasattr(os, "register_at_fork"):
    os.register_at_fork(after_in_child=_reset_done)


def handle_exit(sig, frame):
    previous = _previous_handlers.get(sig)

    if callable(previous):
        # e.g. signal.default_int_handler, which raises KeyboardInterrupt. The
        # program may catch it and keep running, so the hooks are left to the
        # interpreter exit.
        previous(sig, frame)
        return

    run_hooks()

    _previous_handlers.pop(sig, None)
    signals.restore_signal(sig, previous)

    if previous == signal.SIG_IGN:
        return

    # Deliver the signal again with the default disposition in place so that
    # the exit status reflects the signal, as if we never intercepted it.
    os.kill(os.getpid(), sig)


def register_on_exit_signal():
    # type: () -> None
    if threading.current_thread() is not threading.main_thread():
        log.debug("Exit signal handlers can only be installed from the main thread")
        return

    for sig in EXIT_SIGNALS:
        if sig in _previous_handlers:
            continue
        try:
            if signal.getsignal(sig) == signal.SIG_IGN:
                # The process is meant to survive this signal (e.g. nohup)
                continue
            previous = signals.handle_signal(sig, handle_exit)
        except Exception:
            # We catch a general exception here because we don't know
            # what might go wrong, but we don't want to stop
            # normal program execution based upon failing to register
            # a signal handler.
            log.debug("Encountered an exception while registering a signal", exc_info=True)
            continue
        if previous is not None:
            _previous_handlers[sig] = previous


def unregister_exit_signals():
    # type: () -> None
    """Restore the dispositions that were in place before ``register_on_exit_signal``."""
    for sig, previous in list(_previous_handlers.items()):
        if signal.getsignal(sig) == handle_exit:
            signals.restore_signal(sig, previous)
        del _previous_handlers[sig]
