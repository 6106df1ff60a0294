from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from tabulation.log import get_logger

log = get_logger("poller")

T = TypeVar("T")

RUNNING = "running"
PAUSED = "paused"
STOPPED = "stopped"


class ConsistencyPoller(Generic[T]):
    """
    Periodically re-fetches authoritative state and keeps a local copy in sync.

    - one fetch in flight at a time, across stop/start and pause/resume too;
      a tick that finds one running is skipped
    - a fetch whose result equals the cached state changes nothing
    - a changed result replaces the cache and calls ``on_change`` once
    - a failed fetch keeps the previous cache and records ``last_error``
    - ``set_visible(False)`` pauses; becoming visible again fetches at once
    - after ``stop()`` nothing started earlier can touch the cache: every
      cycle carries the generation it started in and stale results are dropped
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        interval: float,
        on_change: Optional[Callable[[T], None]] = None,
        name: str = "poller",
    ):
        if interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {interval}")
        self._fetch = fetch
        self.interval = float(interval)
        self._on_change = on_change
        self.name = name

        self.state = STOPPED
        self.cache: Optional[T] = None
        self.has_cache = False
        self.last_changed_at: Optional[datetime] = None
        self.last_error: Optional[Exception] = None

        self._visible = True
        self._generation = 0
        self._in_flight = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_polling(self) -> bool:
        return self.state == RUNNING

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    # -----------------------
    # Lifecycle
    # -----------------------
    def start(self) -> None:
        """Begin polling; must be called from inside a running event loop."""
        if self.state != STOPPED:
            return
        if self._visible:
            self._launch()
        else:
            self._generation += 1
            self.state = PAUSED
        log.info("%s: started (every %.1fs)", self.name, self.interval)

    def stop(self) -> None:
        self._halt(STOPPED)
        log.info("%s: stopped", self.name)

    def set_visible(self, visible: bool) -> None:
        self._visible = visible
        if not visible and self.state == RUNNING:
            self._halt(PAUSED)
            log.debug("%s: paused while hidden", self.name)
        elif visible and self.state == PAUSED:
            log.debug("%s: resumed", self.name)
            self._launch()

    def _launch(self) -> None:
        self._generation += 1
        self.state = RUNNING
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation))

    def _halt(self, state: str) -> None:
        self._generation += 1
        self.state = state
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            await self._cycle(generation)
            await asyncio.sleep(self.interval)

    # -----------------------
    # Cycles
    # -----------------------
    async def refresh(self) -> bool:
        """Fetch now, outside the schedule. Returns True if the state changed."""
        return await self._cycle(self._generation)

    async def _cycle(self, generation: int) -> bool:
        if self._in_flight:
            log.debug("%s: previous fetch still in flight, skipping", self.name)
            return False

        self._in_flight = True
        try:
            result = await self._fetch()
        except Exception as e:
            if generation == self._generation:
                self.last_error = e
                log.warning("%s: fetch failed, keeping cached state: %s", self.name, e)
            return False
        finally:
            self._in_flight = False

        if generation != self._generation:
            return False
        self.last_error = None
        if self.has_cache and result == self.cache:
            return False

        self.cache = copy.deepcopy(result)
        self.has_cache = True
        self.last_changed_at = datetime.now(timezone.utc)
        if self._on_change is not None:
            try:
                self._on_change(self.cache)
            except Exception:
                log.exception("%s: change handler failed", self.name)
        return True
