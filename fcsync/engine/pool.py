"""Fixed-size thread pool running one task per lane."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import Callable

from fcsync.engine.models import Histogram, LaneOutcome

logger = logging.getLogger(__name__)

LaneTask = Callable[[], list[Histogram]]


class WorkerPool:
    """Runs lane tasks on a bounded ThreadPoolExecutor.

    Each task either returns the histograms of its lane or raises; an error
    fails only that lane. Results are merged into one map under a lock and
    returned ordered by lane, whatever the completion order.
    """

    def __init__(self, threads: int = 4):
        if threads < 1:
            raise ValueError(f"Need at least one thread, got {threads}")
        self.threads = threads

    def run(
        self,
        tasks: dict[int, LaneTask],
        on_done: Callable[[LaneOutcome], None] | None = None,
    ) -> list[LaneOutcome]:
        outcomes: dict[int, LaneOutcome] = {}
        lock = threading.Lock()

        def _handle_future(lane: int, fut: concurrent.futures.Future) -> LaneOutcome:
            try:
                outcome = LaneOutcome(lane=lane, histograms=fut.result())
            except Exception as exc:
                logger.error("Lane %d failed: %s", lane, exc)
                outcome = LaneOutcome(lane=lane, error=str(exc) or type(exc).__name__)
            with lock:
                outcomes[lane] = outcome
            return outcome

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.threads) as executor:
            futures = {executor.submit(task): lane for lane, task in tasks.items()}
            for fut in concurrent.futures.as_completed(futures):
                outcome = _handle_future(futures[fut], fut)
                if on_done:
                    on_done(outcome)

        with lock:
            return [outcomes[lane] for lane in sorted(outcomes)]


def all_succeeded(outcomes: list[LaneOutcome]) -> bool:
    return all(outcome.succeeded for outcome in outcomes)
