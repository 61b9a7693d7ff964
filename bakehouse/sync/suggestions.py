"""Suggested-batch polling gated on the simulated clock.

Two triggers refresh the suggestion list: an explicit refresh (enabling the
feature or forcing it) and the simulated clock advancing by at least
``threshold_minutes`` since the last check. The clock is sampled on a fixed
wall-clock cadence that does not depend on the speed multiplier.

Suggestions are keyed by ``(itemGuid, startTime)``. A key that is confirmed
(added by the user or by auto-add) or already present in the real schedule
is never offered again.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from bakehouse.config import SuggestionConfig
from bakehouse.scheduler import SessionScheduler
from bakehouse.services.simulation.exceptions import SimulationAPIError
from bakehouse.services.simulation.models import (
    BatchKey,
    BatchSpec,
    Simulation,
    SuggestedBatch,
)
from bakehouse.timeutils import parse_time_to_minutes

from .exceptions import MutationError

logger = logging.getLogger(__name__)

SuggestionFetcher = Callable[[str], Awaitable[list[SuggestedBatch]]]
BatchSubmitter = Callable[[BatchSpec], Awaitable[Any]]
StateReader = Callable[[], Simulation | None]


class SuggestionPoller:
    def __init__(
        self,
        session_id: str,
        config: SuggestionConfig,
        fetch: SuggestionFetcher,
        submit: BatchSubmitter,
        read_state: StateReader,
        scheduler: SessionScheduler,
        auto_add: bool = False,
    ):
        self.session_id = session_id
        self.config = config
        self._fetch = fetch
        self._submit = submit
        self._read_state = read_state
        self._scheduler = scheduler
        self.auto_add = auto_add

        self.confirmed: set[BatchKey] = set()
        self.visible: list[SuggestedBatch] = []
        self.last_checked_minutes: int | None = None
        self.enabled = False
        self.closed = False
        self.job_id = f"suggestion-clock-{session_id}"

        self._generation = 0
        self._in_flight = 0

    # Clock trigger

    def advance_clock(self, minutes: int) -> bool:
        """Feed one simulated-clock sample; True when a refresh is due.

        Several thresholds crossed within one sample still fire once, and the
        marker moves to the sampled minute. A clock that went backwards (a new
        simulation day, a restart) re-arms the marker without firing.
        """
        last = self.last_checked_minutes
        if last is None or minutes < last:
            self.last_checked_minutes = minutes
            return False
        if minutes - last >= self.config.threshold_minutes:
            self.last_checked_minutes = minutes
            return True
        return False

    async def tick(self) -> None:
        if not self.enabled or self.closed:
            return
        state = self._read_state()
        minutes = parse_time_to_minutes(state.current_time if state else None)
        if minutes is None:
            return
        if self.advance_clock(minutes):
            logger.debug(f"Simulated clock reached {state.current_time}, refreshing suggestions")
            await self.refresh()

    # Fetch and filter

    def _filter(self, suggestions: list[SuggestedBatch]) -> list[SuggestedBatch]:
        state = self._read_state()
        scheduled = {b.key for b in state.all_batches()} if state else set()

        kept: list[SuggestedBatch] = []
        seen: set[BatchKey] = set()
        for suggestion in suggestions:
            key = suggestion.key
            if key in self.confirmed or key in seen:
                continue
            if key in scheduled:
                self.confirmed.add(key)
                continue
            seen.add(key)
            kept.append(suggestion)
        return kept

    async def refresh(self, force: bool = False) -> list[SuggestedBatch]:
        """Fetch suggestions; concurrent calls are dropped unless forced."""
        if self.closed or not self.enabled:
            return []
        if self._in_flight and not force:
            return self.visible_suggestions()

        self._generation += 1
        generation = self._generation
        self._in_flight += 1
        try:
            suggestions = await self._fetch(self.config.mode)
        except SimulationAPIError as e:
            logger.error(f"Failed to fetch suggested batches: {e}")
            return self.visible_suggestions()
        finally:
            self._in_flight -= 1

        if generation != self._generation or self.closed or not self.enabled:
            logger.debug("Discarding stale suggestion response")
            return self.visible_suggestions()

        fresh = self._filter(suggestions)
        if self.auto_add and fresh:
            self.visible = []
            await self._auto_add(fresh)
        else:
            self.visible = fresh
        return self.visible_suggestions()

    def visible_suggestions(self) -> list[SuggestedBatch]:
        """Current list, re-checked against the live schedule."""
        self.visible = self._filter(self.visible)
        return list(self.visible)

    # Adding

    async def _auto_add(self, suggestions: list[SuggestedBatch]) -> None:
        logger.info(f"Auto-adding {len(suggestions)} suggested batch(es)")
        for suggestion in suggestions:
            self.confirmed.add(suggestion.key)
        results = await asyncio.gather(
            *(self._submit(s.to_spec()) for s in suggestions),
            return_exceptions=True,
        )
        unexpected: BaseException | None = None
        for suggestion, result in zip(suggestions, results):
            if not isinstance(result, BaseException):
                continue
            logger.warning(
                f"Auto-add of {suggestion.item_guid} at {suggestion.start_time} failed: {result}"
            )
            self._restore(suggestion)
            if not isinstance(result, (MutationError, SimulationAPIError)) and unexpected is None:
                unexpected = result
        if unexpected is not None:
            raise unexpected

    async def add(self, suggestion: SuggestedBatch) -> Any:
        """Commit one suggestion; on failure it goes back on the list."""
        self.confirmed.add(suggestion.key)
        self.visible = [s for s in self.visible if s.key != suggestion.key]
        try:
            return await self._submit(suggestion.to_spec())
        except (MutationError, SimulationAPIError):
            self._restore(suggestion)
            raise

    def _restore(self, suggestion: SuggestedBatch) -> None:
        self.confirmed.discard(suggestion.key)
        if self.closed or not self.enabled:
            return
        if all(s.key != suggestion.key for s in self.visible):
            self.visible.append(suggestion)

    # Lifecycle

    async def enable(self, auto_add: bool | None = None) -> list[SuggestedBatch]:
        if auto_add is not None:
            self.auto_add = auto_add
        if self.closed:
            return []
        self.enabled = True
        self._scheduler.add_interval(
            self.job_id,
            self.tick,
            self.config.sample_interval_seconds,
            name="Suggestion clock sampler",
        )
        return await self.refresh(force=True)

    def disable(self) -> None:
        self.enabled = False
        self._generation += 1
        self._scheduler.remove(self.job_id)
        self.visible = []
        self.last_checked_minutes = None

    def teardown(self) -> None:
        self.disable()
        self.confirmed.clear()
        self.closed = True
        logger.debug(f"Suggestion poller closed for session {self.session_id}")
