import threading
import time

import pytest

from fcsync.engine.models import Histogram
from fcsync.engine.pool import WorkerPool, all_succeeded


def _task(lane: int, delay: float = 0.0):
    def run():
        time.sleep(delay)
        return [Histogram(lane=lane, index_no=1, sample_size=1, counts={"A": 1})]

    return run


def _failing():
    raise RuntimeError("boom")


def test_outcomes_are_ordered_by_lane():
    pool = WorkerPool(threads=4)

    outcomes = pool.run({lane: _task(lane, delay=0.05 * (4 - lane)) for lane in range(1, 5)})

    assert [outcome.lane for outcome in outcomes] == [1, 2, 3, 4]
    assert all_succeeded(outcomes)
    assert outcomes[2].histograms[0].lane == 3


def test_failure_is_scoped_to_its_lane():
    pool = WorkerPool(threads=2)

    outcomes = pool.run({1: _task(1), 2: _failing, 3: _task(3)})

    assert [outcome.succeeded for outcome in outcomes] == [True, False, True]
    assert outcomes[1].error == "boom"
    assert outcomes[1].histograms == []
    assert not all_succeeded(outcomes)


def test_concurrency_is_bounded():
    lock = threading.Lock()
    running = 0
    peak = 0

    def task():
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        time.sleep(0.02)
        with lock:
            running -= 1
        return []

    WorkerPool(threads=2).run({lane: task for lane in range(1, 9)})

    assert 1 <= peak <= 2


def test_callback_per_lane():
    seen = []

    WorkerPool(threads=3).run({lane: _task(lane) for lane in (1, 2, 3)}, on_done=seen.append)

    assert sorted(outcome.lane for outcome in seen) == [1, 2, 3]


def test_no_tasks():
    assert WorkerPool().run({}) == []
    assert all_succeeded([])


def test_needs_a_thread():
    with pytest.raises(ValueError):
        WorkerPool(threads=0)
