"""Latest-wins coordination of rate fetches for the selected display currency.

Selecting a currency publishes an optimistic table right away (the table
already held, rebased to the new currency) and starts a task that settles it
from a fresh cache entry or an authoritative fetch. Built-in fallback rates
from a failed fetch are never treated as authoritative or cached.
Each selection bumps a generation counter; a fetch only publishes its result
if no newer selection happened while it was in flight.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Protocol

from fxledger.rate_cache import RateCache
from fxledger.rate_source import RateFetchFailure, RateFetchResult
from fxledger.rates import (
    SUPPORTED_CURRENCIES,
    RateError,
    RateFetchFailed,
    RateTable,
    normalize,
    validate_table,
)

logger = logging.getLogger(__name__)


class FetchState(str, Enum):
    IDLE = "idle"
    FETCHING_WITH_FALLBACK = "fetching_with_fallback"
    SETTLED = "settled"
    ERRORED = "errored"


@dataclass(frozen=True)
class RateSnapshot:
    """The published rate state. A new snapshot is created for every change."""

    currency: str | None
    table: RateTable | None
    state: FetchState
    generation: int
    authoritative: bool = False
    error: str | None = None


class SupportsRateFetch(Protocol):
    async def fetch_result(self, base: str) -> RateFetchResult:
        ...


Listener = Callable[[RateSnapshot], None]


class RateFetchCoordinator:
    def __init__(
        self,
        source: SupportsRateFetch,
        cache: RateCache | None = None,
        supported: tuple[str, ...] = SUPPORTED_CURRENCIES,
    ) -> None:
        self.source = source
        self.cache = cache if cache is not None else RateCache()
        self.supported = tuple(supported)
        self._generation = 0
        self._snapshot = RateSnapshot(
            currency=None, table=None, state=FetchState.IDLE, generation=0
        )
        self._last_good: RateTable | None = None
        self._current: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[Listener] = []

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def snapshot(self) -> RateSnapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every published snapshot. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def select_currency(self, currency: str, *, force: bool = False) -> asyncio.Task:
        """Switch the display currency.

        Must be called with a running event loop. Publishes the optimistic
        table immediately and returns the task that settles it, from a fresh
        cache entry or (with ``force``, or on a miss) from the source.
        """
        target = currency.strip().upper()
        self._generation += 1
        generation = self._generation
        had_table = self._last_good is not None

        held = self._snapshot.table
        optimistic = normalize(held if held is not None else RateTable.defaults(), target)
        self._publish(
            RateSnapshot(
                currency=target,
                table=optimistic,
                state=FetchState.FETCHING_WITH_FALLBACK,
                generation=generation,
            )
        )

        task = asyncio.get_running_loop().create_task(
            self._refresh(generation, target, had_table, force)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._current = task
        return task

    async def wait(self) -> RateSnapshot:
        """Wait for the most recent fetch to finish and return the published snapshot."""
        task = None
        while self._current is not None:
            task = self._current
            await asyncio.wait({task})
            if task is self._current:
                break
        if task is not None and not task.cancelled() and task.exception() is not None:
            raise task.exception()
        return self._snapshot

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._current = None

    async def _refresh(self, generation: int, target: str, had_table: bool, force: bool) -> None:
        if not force:
            cached = await self.cache.aget(target)
            if cached is not None:
                if generation != self._generation:
                    logger.debug(f"Ignoring cached rates for {target} from generation {generation}")
                    return
                self._settle(generation, target, cached)
                return

        try:
            result = await self.source.fetch_result(target)
            if isinstance(result, RateFetchFailure):
                raise RateFetchFailed(result.reason)
            table = validate_table(normalize(result.table, target), target, self.supported)
        except RateError as exc:
            if generation != self._generation:
                logger.debug(f"Ignoring failed fetch for {target} from generation {generation}")
                return
            logger.warning(f"Rate fetch for {target} failed: {exc}")
            state = FetchState.SETTLED if had_table else FetchState.ERRORED
            self._publish(
                replace(self._snapshot, state=state, authoritative=False, error=str(exc))
            )
            return

        if generation != self._generation:
            logger.debug(
                f"Discarding stale rates for {target} "
                f"(generation {generation}, current {self._generation})"
            )
            return

        self._settle(generation, target, table)
        await self.cache.aput(target, table)

    def _settle(self, generation: int, target: str, table: RateTable) -> None:
        self._last_good = table
        self._publish(
            RateSnapshot(
                currency=target,
                table=table,
                state=FetchState.SETTLED,
                generation=generation,
                authoritative=True,
            )
        )

    def _publish(self, snapshot: RateSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)
