"""Bounded-concurrency, cancellable, priority-ordered search.

The engine knows nothing about Twitch. It gets an ordered list of candidate
values (index 0 has the highest priority) and a probe coroutine that resolves
one value into a :class:`~vodforce.models.Resolution`. Two aggregation policies
are supported:

* ``stop_at_first=True`` - the lowest-index candidate with a hit wins. A hit is
  only committed once every lower index has resolved, so the result never
  depends on which request happened to come back first.
* ``stop_at_first=False`` - every hit over the whole candidate list is
  collected.

Workers pull indices in priority order, so ``max_in_flight`` workers means at
most ``max_in_flight`` probes (and requests) in flight.
"""

import asyncio
import enum
import logging

from vodforce.models import Aborted, ClipScanResult, ExhaustedNoMatch, Found

logger = logging.getLogger(__name__)


class SearchState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    FOUND = "found"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


class SearchEngine:
    def __init__(self, max_in_flight, cancel=None, on_progress=None):
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self.max_in_flight = max_in_flight
        self.cancel = cancel if cancel is not None else asyncio.Event()
        self.on_progress = on_progress
        self.state = SearchState.IDLE
        self.stop_at_first = True

        self.candidates = []
        self.table = {}
        self.best = None
        self.frontier = 0
        self.next_index = 0
        self.committed = False
        self.partial = {}

    @property
    def total(self):
        return len(self.candidates)

    @property
    def done(self):
        return len(self.table)

    @property
    def progress(self):
        if not self.candidates:
            return 1.0
        return self.done / self.total

    def halted(self):
        return self.committed or self.cancel.is_set()

    async def run(self, candidates, probe, stop_at_first=True, seeds=0):
        """Probe ``candidates`` in priority order.

        ``seeds`` leading candidates (hints) are resolved completely before the
        rest of the list is dispatched. ``probe(value, halted)`` returns a
        Resolution, or None when it stopped early because ``halted()`` was true.
        A Resolution with ``complete=False`` stopped early but keeps its hits.
        """
        if self.state is not SearchState.IDLE:
            raise RuntimeError(f"search already {self.state.value}")
        self.state = SearchState.RUNNING
        self.candidates = list(candidates)
        self.stop_at_first = stop_at_first
        logger.debug("Searching %d candidates with %d workers", self.total, self.max_in_flight)

        for limit in (min(seeds, self.total), self.total):
            pending = limit - self.next_index
            if pending <= 0:
                continue
            workers = [asyncio.create_task(self.worker(limit, probe)) for _ in range(min(self.max_in_flight, pending))]
            try:
                await asyncio.gather(*workers)
            finally:
                # no worker outlives run(), even when one of them raised
                for worker in workers:
                    worker.cancel()
                await asyncio.gather(*workers, return_exceptions=True)
            if self.halted():
                break

        return self.finish()

    async def worker(self, limit, probe):
        while not self.halted() and self.next_index < limit:
            index = self.next_index
            self.next_index += 1
            if self.stop_at_first and self.best is not None and index > self.best:
                return

            resolution = await probe(self.candidates[index], self.halted)
            if resolution is None:
                return
            if not resolution.complete:
                # halted halfway through the candidate, keep what it confirmed
                self.partial[index] = resolution
                return
            self.record(index, resolution)

    def record(self, index, resolution):
        # runs on the loop thread between awaits, so no lock is needed
        if self.committed:
            return
        self.table[index] = resolution
        if resolution.hits and (self.best is None or index < self.best):
            self.best = index
        while self.frontier in self.table:
            self.frontier += 1
        if self.on_progress is not None:
            self.on_progress(self.done, self.total)
        if self.stop_at_first and self.best is not None and self.frontier > self.best:
            logger.debug("Committing hit at priority %d", self.best)
            self.committed = True

    def degraded(self):
        return sum(resolution.degraded for resolution in [*self.table.values(), *self.partial.values()])

    def finish(self):
        if self.stop_at_first:
            return self.finish_first()
        return self.finish_all()

    def finish_first(self):
        if self.committed:
            self.state = SearchState.FOUND
            hit = self.table[self.best].hits[0]
            return Found(hit.url, hit.value)
        if self.done < self.total:
            self.state = SearchState.ABORTED
            return Aborted("cancelled before the search finished", self.progress)
        self.state = SearchState.EXHAUSTED
        return ExhaustedNoMatch(self.degraded())

    def finish_all(self):
        resolved = {**self.partial, **self.table}
        found = [
            Found(hit.url, hit.value)
            for index in sorted(resolved)
            for hit in resolved[index].hits
        ]
        if self.done < self.total:
            self.state = SearchState.ABORTED
            return ClipScanResult(found, complete=False, degraded=self.degraded(),
                                  reason="cancelled before the scan finished", progress=self.progress)
        self.state = SearchState.FOUND if found else SearchState.EXHAUSTED
        return ClipScanResult(found, complete=True, degraded=self.degraded())


def prioritize(start, end, hints=()):
    """Order ``[start, end]`` with in-range hints first, then nearest to the first hint.

    Returns ``(order, seeds)`` where ``seeds`` is how many leading entries came
    from hints. Out-of-range hints are dropped.
    """
    seeds = []
    for hint in hints:
        if start <= hint <= end and hint not in seeds:
            seeds.append(hint)

    if not seeds:
        return list(range(start, end + 1)), 0

    anchor = seeds[0]
    taken = set(seeds)
    rest = sorted((t for t in range(start, end + 1) if t not in taken), key=lambda t: (abs(t - anchor), t))
    return seeds + rest, len(seeds)
