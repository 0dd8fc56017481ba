import threading

import mock
import pytest

from covwatch.internal.coverage.registry import CoverageRegistry
from tests.coverage.utils import make_skeleton


PATH = "/project/module.py"


@pytest.fixture
def registry():
    return CoverageRegistry()


def test_registered_file_starts_at_zero(registry):
    registry.register(PATH, make_skeleton(PATH, statements=3, functions=1, branches=1))

    record = registry.snapshot()[PATH]

    assert record.s == {0: 0, 1: 0, 2: 0}
    assert record.f == {0: 0}
    assert record.b == {0: [0, 0]}
    assert PATH in registry
    assert len(registry) == 1
    assert registry.paths == [PATH]


def test_increment(registry):
    registry.register(PATH, make_skeleton(PATH))

    registry.increment(PATH, "s", 0)
    registry.increment(PATH, "s", 1)
    registry.increment(PATH, "s", 1)
    registry.increment(PATH, "f", 0)
    registry.increment(PATH, "b", 0, 1)

    record = registry.snapshot()[PATH]
    assert record.s == {0: 1, 1: 2}
    assert record.f == {0: 1}
    assert record.b == {0: [0, 1]}


def test_increment_errors(registry):
    registry.register(PATH, make_skeleton(PATH))

    with pytest.raises(ValueError):
        registry.increment(PATH, "x", 0)

    with pytest.raises(KeyError):
        registry.increment("/project/unknown.py", "s", 0)

    with pytest.raises(IndexError):
        registry.increment(PATH, "s", 2)


def test_conditional_counter_returns_value(registry):
    counters = registry.register(PATH, make_skeleton(PATH))

    value = object()
    assert counters.t(0, 0, value) is value
    assert registry.snapshot()[PATH].b == {0: [1, 0]}


def test_register_same_skeleton_keeps_counters(registry):
    counters = registry.register(PATH, make_skeleton(PATH))
    counters.s(0)

    assert registry.register(PATH, make_skeleton(PATH)) is counters
    assert registry.snapshot()[PATH].s == {0: 1, 1: 0}


def test_register_changed_skeleton_restarts(registry):
    counters = registry.register(PATH, make_skeleton(PATH))
    counters.s(0)

    with mock.patch("covwatch.internal.coverage.registry.log") as log:
        changed = registry.register(PATH, make_skeleton(PATH, statements=3, hash="other"))

    assert changed is not counters
    log.warning.assert_called_once()
    record = registry.snapshot()[PATH]
    assert record.hash == "other"
    assert record.s == {0: 0, 1: 0, 2: 0}


def test_threads_do_not_lose_increments(registry):
    counters = registry.register(PATH, make_skeleton(PATH))
    barrier = threading.Barrier(8)

    def work():
        barrier.wait()
        for _ in range(1000):
            counters.s(0)
            counters.b(0, 0)

    threads = [threading.Thread(target=work) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    # Shards of finished threads are still counted
    record = registry.snapshot()[PATH]
    assert record.s[0] == 8000
    assert record.b[0] == [8000, 0]


def test_snapshot_is_a_copy(registry):
    counters = registry.register(PATH, make_skeleton(PATH))
    counters.s(0)

    snapshot = registry.snapshot()
    counters.s(0)

    assert snapshot[PATH].s[0] == 1
    assert registry.snapshot()[PATH].s[0] == 2


def test_reset_keeps_registrations(registry):
    counters = registry.register(PATH, make_skeleton(PATH))
    counters.s(0)
    counters.f(0)

    registry.reset()

    assert registry.snapshot()[PATH].s == {0: 0, 1: 0}
    assert registry.get(PATH) is counters

    counters.s(1)
    assert registry.snapshot()[PATH].s == {0: 0, 1: 1}


def test_clear(registry):
    registry.register(PATH, make_skeleton(PATH))

    registry.clear()

    assert len(registry) == 0
    assert registry.get(PATH) is None
    assert registry.snapshot() == {}
