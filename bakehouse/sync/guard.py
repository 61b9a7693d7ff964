"""Mutation guard: keeps remote snapshots away from an in-flight local edit."""

from __future__ import annotations

import asyncio
import itertools
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 1.0


@dataclass(eq=False)
class GuardHold:
    """One mutation's claim on the guard.

    ``active`` turns False on release, on timeout or on guard reset. Only a
    reset or a newer hold on the same ``key`` makes the hold superseded; a
    timed-out hold still owns the outcome of its own round trip.
    """

    hold_id: int
    label: str
    key: str | None = None
    generation: int = 0
    active: bool = True
    expired: bool = False
    _timer: asyncio.TimerHandle | None = field(default=None, repr=False)


class MutationGuard:
    """Per-session exclusion flag with timeout-based auto-release.

    Holds are counted so concurrent mutations each keep the guard closed
    until their own round trip finishes. Each hold auto-releases after
    ``timeout_seconds`` so a lost response cannot freeze the view.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        self._holds: dict[int, GuardHold] = {}
        self._latest: dict[str, int] = {}
        self._generation = 0
        self._ids = itertools.count(1)

    @property
    def held(self) -> bool:
        return bool(self._holds)

    @property
    def hold_count(self) -> int:
        return len(self._holds)

    def acquire(self, label: str = "mutation", key: str | None = None) -> GuardHold:
        """Close the guard. Must be called from a running event loop.

        ``key`` names what the mutation edits (a batch id); a later hold on
        the same key supersedes this one.
        """
        hold = GuardHold(hold_id=next(self._ids), label=label, key=key, generation=self._generation)
        loop = asyncio.get_running_loop()
        hold._timer = loop.call_later(self.timeout_seconds, self._expire, hold)
        self._holds[hold.hold_id] = hold
        if key is not None:
            self._latest[key] = hold.hold_id
        logger.debug(f"Guard acquired by {label} (#{hold.hold_id}, holds={len(self._holds)})")
        return hold

    def release(self, hold: GuardHold) -> bool:
        """Release a hold. Returns False if it had already expired or been reset."""
        if hold.key is not None and self._latest.get(hold.key) == hold.hold_id:
            del self._latest[hold.key]
        if not hold.active:
            return False
        self._drop(hold)
        logger.debug(f"Guard released by {hold.label} (#{hold.hold_id}, holds={len(self._holds)})")
        return True

    def is_current(self, hold: GuardHold) -> bool:
        return hold.active and hold.hold_id in self._holds

    def is_superseded(self, hold: GuardHold) -> bool:
        """True after a reset or once a newer hold on the same key was acquired."""
        if hold.generation != self._generation:
            return True
        return hold.key is not None and self._latest.get(hold.key, hold.hold_id) != hold.hold_id

    def reset(self) -> None:
        """Invalidate every hold; used on session teardown."""
        self._generation += 1
        self._latest.clear()
        for hold in list(self._holds.values()):
            self._drop(hold)
            hold.expired = True

    @asynccontextmanager
    async def holding(self, label: str = "mutation", key: str | None = None) -> AsyncIterator[GuardHold]:
        hold = self.acquire(label, key)
        try:
            yield hold
        finally:
            self.release(hold)

    def _expire(self, hold: GuardHold) -> None:
        if not hold.active:
            return
        hold._timer = None
        self._drop(hold)
        hold.expired = True
        logger.warning(
            f"Guard auto-released after {self.timeout_seconds}s: "
            f"{hold.label} (#{hold.hold_id}) got no response in time"
        )

    def _drop(self, hold: GuardHold) -> None:
        hold.active = False
        if hold._timer is not None:
            hold._timer.cancel()
            hold._timer = None
        self._holds.pop(hold.hold_id, None)
