import os

import pytest

from covwatch.internal import forksafe


def _wait_for(pid):
    _, status = os.waitpid(pid, 0)
    return os.WEXITSTATUS(status)


def test_forksafe():
    state = []

    @forksafe.register
    def after_in_child():
        state.append(1)

    def my_func():
        return state

    pid = os.fork()

    if pid == 0:
        # child
        assert my_func() == [1]
        os._exit(12)
    else:
        assert my_func() == []

    assert _wait_for(pid) == 12
    forksafe.unregister(after_in_child)


def test_registry_order():
    state = ["before_fork"]

    @forksafe.register
    def after_in_child_1():
        state.append("after_in_child_1")

    @forksafe.register
    def after_in_child_2():
        state.append("after_in_child_2")

    pid = os.fork()

    if pid == 0:
        os._exit(12 if state == ["before_fork", "after_in_child_1", "after_in_child_2"] else 1)
    else:
        assert state == ["before_fork"]

    assert _wait_for(pid) == 12
    forksafe.unregister(after_in_child_1)
    forksafe.unregister(after_in_child_2)


def test_hook_exception():
    state = []

    @forksafe.register
    def after_in_child():
        raise ValueError

    @forksafe.register
    def state_append():
        state.append(1)

    pid = os.fork()
    if pid == 0:
        # The failing hook does not prevent the next one from running
        os._exit(12 if state == [1] else 1)

    assert state == []
    assert _wait_for(pid) == 12
    forksafe.unregister(after_in_child)
    forksafe.unregister(state_append)


def test_unregister_unknown_hook():
    with pytest.raises(ValueError):
        forksafe.unregister(lambda: None)


def test_lock_released_in_child():
    lock = forksafe.Lock()
    lock.acquire()

    pid = os.fork()
    if pid == 0:
        # The lock held by the parent is a fresh one in the child
        os._exit(12 if lock.acquire(blocking=False) else 1)

    lock.release()
    assert _wait_for(pid) == 12


def test_lock_proxies_the_wrapped_lock():
    lock = forksafe.Lock()
    with lock:
        assert lock.locked()
    assert not lock.locked()
