from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PrefetchQueue(Generic[T]):
    """Bounded look-ahead cache over a random placement pool.

    The queue keeps a window of up to ``prefetch_count`` upcoming pool entries
    and starts background fetches for those that still need one, so the next
    pick is normally an already-downloaded entry. ``next()`` returns ``None``
    when nothing in the window is ready; the caller then falls back to a
    uniform pick over the whole pool.

    Fetch tasks are fire-and-forget on the running event loop. A failed fetch
    leaves the entry needing a fetch later. ``reset()`` forgets in-flight
    fetches without cancelling them; their late completions are ignored.
    """

    def __init__(
        self,
        *,
        prefetch_count: int,
        identity_of: Callable[[T], str],
        needs_fetch: Callable[[T], bool],
        fetch: Callable[[T], Awaitable[Any]],
        rng: Optional[random.Random] = None,
        log_tag: str = "prefetch",
    ) -> None:
        if prefetch_count < 1:
            raise ValueError("prefetch_count must be >= 1")
        self.prefetch_count = prefetch_count
        self._identity_of = identity_of
        self._needs_fetch = needs_fetch
        self._fetch = fetch
        self._rng = rng or random.Random()
        self._tag = log_tag
        self._pool: List[T] = []
        self._order: List[int] = []
        self._cursor = 0
        self._window: List[T] = []
        self._in_flight: Dict[str, "asyncio.Task[Any]"] = {}
        self._generation = 0

    @property
    def pool(self) -> Sequence[T]:
        return tuple(self._pool)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def ready_count(self) -> int:
        return sum(1 for entry in self._window if not self._needs_fetch(entry))

    def set_pool(self, entries: Sequence[T]) -> None:
        """Replace the working pool and reset cursor state."""
        self.reset()
        self._pool = list(entries)
        self._order = list(range(len(self._pool)))
        self._rng.shuffle(self._order)
        self._cursor = 0
        logger.debug("%s: pool set (%d entries)", self._tag, len(self._pool))

    def prime(self) -> None:
        """Top up the look-ahead window and start fetches for entries that need one.

        Must be called from the running event loop when any entry needs a fetch.
        """
        if not self._pool:
            return
        window_keys = {self._identity_of(e) for e in self._window}
        scanned = 0
        while len(self._window) < self.prefetch_count and scanned < len(self._pool):
            entry = self._pool[self._order[self._cursor]]
            self._cursor = (self._cursor + 1) % len(self._pool)
            scanned += 1
            key = self._identity_of(entry)
            if key in window_keys:
                continue
            self._window.append(entry)
            window_keys.add(key)
        for entry in self._window:
            if len(self._in_flight) >= self.prefetch_count:
                break
            self._start_fetch(entry)

    def _start_fetch(self, entry: T) -> None:
        key = self._identity_of(entry)
        if key in self._in_flight or not self._needs_fetch(entry):
            return
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run_fetch(entry, key, self._generation))
        self._in_flight[key] = task
        logger.debug("%s: fetch started for '%s' (%d in flight)", self._tag, key, len(self._in_flight))

    async def _run_fetch(self, entry: T, key: str, generation: int) -> None:
        try:
            await self._fetch(entry)
        except Exception as exc:
            logger.debug("%s: fetch failed for '%s': %s", self._tag, key, exc)
        finally:
            if generation == self._generation and self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]
                logger.debug("%s: fetch settled for '%s'", self._tag, key)

    def next(self, previous: Optional[T] = None) -> Optional[T]:
        """Return a ready window entry other than ``previous``, or None."""
        previous_key = self._identity_of(previous) if previous is not None else None
        for index, entry in enumerate(self._window):
            if self._needs_fetch(entry):
                continue
            if previous_key is not None and self._identity_of(entry) == previous_key:
                continue
            del self._window[index]
            self._refill()
            return entry
        return None

    def _refill(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Outside a loop only entries that need no fetch can join the window.
            self._fill_window_only()
            return
        self.prime()

    def _fill_window_only(self) -> None:
        window_keys = {self._identity_of(e) for e in self._window}
        scanned = 0
        while len(self._window) < self.prefetch_count and scanned < len(self._pool):
            entry = self._pool[self._order[self._cursor]]
            self._cursor = (self._cursor + 1) % len(self._pool)
            scanned += 1
            key = self._identity_of(entry)
            if key not in window_keys:
                self._window.append(entry)
                window_keys.add(key)

    def reset(self) -> None:
        """Stop tracking in-flight fetches; stale completions are ignored."""
        self._generation += 1
        self._in_flight.clear()
        self._window.clear()
        self._cursor = 0

    async def drain(self) -> None:
        """Wait for every currently tracked fetch to settle."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)
