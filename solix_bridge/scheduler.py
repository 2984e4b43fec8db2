from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional, Protocol

log = logging.getLogger("solix_bridge.scheduler")

ClockFn = Callable[[], float]


class Cycle(Protocol):
    def run_cycle(self) -> Any: ...


def compute_sleep_ms(interval_ms: int, elapsed_ms: int) -> int:
    """Time left in the interval after a cycle; never negative.

    An overrunning cycle yields 0, meaning the next cycle starts immediately.
    """

    return max(0, int(interval_ms) - int(elapsed_ms))


class Scheduler:
    """Runs the cycle forever at a fixed cadence.

    Start times stay aligned to ``interval_ms`` because the time a cycle took
    is subtracted from the following sleep.
    """

    def __init__(
        self,
        cycle: Cycle,
        *,
        interval_ms: int,
        clock_fn: ClockFn | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        self._cycle = cycle
        self.interval_ms = int(interval_ms)
        self._clock = clock_fn or time.monotonic
        self._stop = stop_event or threading.Event()
        self.cycles_run = 0

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run_once(self) -> int:
        """Run one cycle and return the sleep owed before the next one (ms)."""

        start = self._clock()
        try:
            self._cycle.run_cycle()
        except Exception:
            log.exception("cycle failed with an uncontained error; continuing")
        finally:
            self.cycles_run += 1
        elapsed_ms = int((self._clock() - start) * 1000)
        return compute_sleep_ms(self.interval_ms, elapsed_ms)

    def run_forever(self, *, max_cycles: Optional[int] = None) -> None:
        while not self._stop.is_set():
            sleep_ms = self.run_once()
            if max_cycles is not None and self.cycles_run >= max_cycles:
                return
            log.info("sleeping for %dms", sleep_ms)
            if sleep_ms > 0:
                self._stop.wait(sleep_ms / 1000.0)
        log.info("scheduler stopped after %d cycles", self.cycles_run)
