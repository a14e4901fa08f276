"""Poll-detect-publish cycle shared by the add-ons.

A Poller fetches external state on a timer, compares it with the last value
it saw and only performs side effects when something changed. Cycles never
overlap: a trigger that arrives while a cycle is running is folded into a
single follow-up run.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .addon_base import run_addon_loop

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Change:
    """Comparison of a freshly fetched value with the cached one."""
    key: str
    previous: Any
    current: Any

    @property
    def changed(self) -> bool:
        return self.previous != self.current

    @property
    def is_baseline(self) -> bool:
        """True when nothing was cached yet (first poll after start)."""
        return self.previous is None


class PollState:
    """Last known value per tracked resource.

    Only lives as long as the process. A fresh instance holds nothing, so the
    first comparison for any key reports ``previous=None``.
    """

    def __init__(self):
        self._values: Dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def compare(self, key: str, current: Any) -> Change:
        return Change(key=key, previous=self._values.get(key), current=current)

    def commit(self, key: str, value: Any) -> None:
        self._values[key] = value


class SingleFlight:
    """Runs at most one call at a time.

    A call made while another is in progress is not executed concurrently;
    instead one extra run is scheduled after the current one finishes
    (queue depth 1). Further calls during that time are merged into it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._running = False
        self._pending = False

    @property
    def running(self) -> bool:
        return self._running

    def run(self, func: Callable[[], None]) -> bool:
        """Run ``func`` unless a run is already in flight.

        Returns:
            True if this caller executed ``func``, False if it was coalesced
        """
        with self._lock:
            if self._running:
                self._pending = True
                logger.debug("Cycle already running, queued one follow-up run")
                return False
            self._running = True

        try:
            while True:
                func()
                with self._lock:
                    if not self._pending:
                        break
                    self._pending = False
        finally:
            with self._lock:
                self._running = False
                self._pending = False
        return True


class Poller:
    """Base class for a timed poll-detect-publish service.

    Subclasses implement :meth:`poll`. Exceptions escaping a poll are logged
    and handed to :meth:`on_cycle_error` so the loop keeps running.
    """

    name = "poller"

    def __init__(self, interval_seconds: float, shutdown_event: Optional[threading.Event] = None):
        self.interval_seconds = interval_seconds
        self.shutdown_event = shutdown_event or threading.Event()
        self.state = PollState()
        self._guard = SingleFlight()
        self.refresh_requested = threading.Event()
        self.cycle_count = 0

    def poll(self) -> None:
        raise NotImplementedError

    def on_cycle_error(self, exc: Exception) -> None:
        """Hook for reporting a failed cycle (e.g. on a status topic)."""

    def _guarded_poll(self) -> None:
        self.cycle_count += 1
        try:
            self.poll()
        except Exception as e:
            logger.error("%s cycle %d failed: %s", self.name, self.cycle_count, e, exc_info=True)
            self.on_cycle_error(e)

    def request_refresh(self, source: str = "user") -> None:
        """Ask the main loop to run a cycle as soon as possible.

        Only sets a flag, so it is safe to call from the MQTT network thread.
        Requests made while a cycle runs lead to one follow-up cycle.
        """
        logger.info("%s refresh requested via %s", self.name, source)
        self.refresh_requested.set()

    def run_cycle(self) -> bool:
        """Run one cycle under the single-flight guard."""
        return self._guard.run(self._guarded_poll)

    def run(self, run_once: bool = False) -> None:
        logger.info("%s polling every %ds", self.name, self.interval_seconds)
        run_addon_loop(
            self.run_cycle,
            self.interval_seconds,
            self.shutdown_event,
            logger=logger,
            run_once=run_once,
            wake_event=self.refresh_requested,
        )
