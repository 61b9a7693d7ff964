"""Single writer for the canonical per-session simulation state."""

from __future__ import annotations

import logging
from typing import Any, Callable

from bakehouse.services.simulation.models import (
    Batch,
    MutationResult,
    Simulation,
    SimulationSnapshot,
)
from bakehouse.timeutils import parse_time_to_minutes, shift_time

from .commands import (
    ApplyInventory,
    ApplyMutationResult,
    ApplySnapshot,
    Command,
    OptimisticAdd,
    OptimisticDelete,
    OptimisticMove,
    Rollback,
    Undo,
)
from .guard import GuardHold, MutationGuard

logger = logging.getLogger(__name__)


def _without_completed(state: Simulation) -> Simulation:
    """A batch lives in ``batches`` or ``completedBatches``, never both."""
    completed_ids = {b.batch_id for b in state.completed_batches}
    if not completed_ids:
        return state
    kept = [b for b in state.batches if b.batch_id not in completed_ids]
    if len(kept) == len(state.batches):
        return state
    return state.model_copy(update={"batches": kept})


def merge_snapshot(
    current: Simulation | None,
    incoming: SimulationSnapshot,
    fallback_id: str | None = None,
) -> Simulation:
    """Field-wise merge of a partial snapshot into the current state.

    Only fields present in the payload are taken. An empty ``currentTime``
    keeps the previous clock. Pure and idempotent.
    """
    update: dict[str, Any] = {
        name: getattr(incoming, name)
        for name in incoming.model_fields_set
        if name in Simulation.model_fields and getattr(incoming, name) is not None
    }
    if not incoming.current_time:
        update.pop("current_time", None)
    update.update(incoming.model_extra or {})

    if current is None:
        update.setdefault("id", fallback_id)
        if update["id"] is None:
            raise ValueError("First snapshot of a session must carry an id")
        return _without_completed(Simulation(**update))

    return _without_completed(current.model_copy(update=update))


class StateReconciler:
    """Owns the canonical :class:`Simulation` of one session.

    Remote snapshots are merged only while the mutation guard is open; when
    any mutation holds it the whole snapshot is dropped. Optimistic edits,
    authoritative mutation results and rollbacks come from the mutation flow
    that holds the guard and are applied unless a newer guard cycle on the same
    batch, or a reset, superseded that hold.
    """

    def __init__(self, guard: MutationGuard, session_id: str | None = None):
        self.guard = guard
        self.session_id = session_id
        self.state: Simulation | None = None
        self.closed = False
        self.skipped_snapshots = 0
        self._handlers: dict[type, Callable[[Any], Any]] = {
            ApplySnapshot: self._apply_snapshot,
            ApplyInventory: self._apply_inventory,
            OptimisticMove: self._optimistic_move,
            OptimisticDelete: self._optimistic_delete,
            OptimisticAdd: self._optimistic_add,
            ApplyMutationResult: self._apply_mutation_result,
            Rollback: self._rollback,
        }

    def bind(self, session_id: str, initial: Simulation | None = None) -> None:
        self.session_id = session_id
        self.state = initial
        self.closed = False

    def close(self) -> None:
        """Stop accepting commands; anything still in flight is discarded."""
        self.closed = True

    def handle(self, command: Command) -> Any:
        if not self._accepts(command.session_id):
            logger.debug(
                f"Discarding {type(command).__name__} for session {command.session_id} "
                f"(bound={self.session_id}, closed={self.closed})"
            )
            return None
        return self._handlers[type(command)](command)

    def _accepts(self, session_id: str) -> bool:
        return not self.closed and session_id == self.session_id

    def _hold_is_superseded(self, hold: GuardHold, what: str) -> bool:
        # A timed-out hold still settles its own edit; only a reset or a newer
        # guard cycle on the same batch makes the response stale.
        if not self.guard.is_superseded(hold):
            return False
        logger.info(f"Discarding stale {what} from {hold.label} (#{hold.hold_id})")
        return True

    def _apply_snapshot(self, command: ApplySnapshot) -> bool:
        snapshot = command.snapshot
        if snapshot.id is not None and snapshot.id != self.session_id:
            logger.debug(f"Ignoring {command.source} snapshot for foreign simulation {snapshot.id}")
            return False
        if self.guard.held:
            self.skipped_snapshots += 1
            logger.debug(
                f"Skipping {command.source} snapshot while {self.guard.hold_count} mutation(s) in flight"
            )
            return False

        self.state = merge_snapshot(self.state, snapshot, fallback_id=self.session_id)
        return True

    def _apply_inventory(self, command: ApplyInventory) -> bool:
        if self.state is None:
            return False
        update = command.update
        stats = dict(self.state.stats)
        if update.total_inventory is not None:
            stats["totalInventory"] = update.total_inventory
        self.state = self.state.model_copy(
            update={"inventory": dict(update.inventory), "stats": stats}
        )
        return True

    def _optimistic_move(self, command: OptimisticMove) -> Undo | None:
        if self.state is None:
            return None
        for index, batch in enumerate(self.state.batches):
            if batch.batch_id == command.batch_id:
                break
        else:
            return None

        old_start = parse_time_to_minutes(batch.start_time)
        new_start = parse_time_to_minutes(command.new_start_time)
        delta = new_start - old_start if old_start is not None and new_start is not None else 0
        moved = batch.model_copy(
            update={
                "start_time": command.new_start_time,
                "end_time": shift_time(batch.end_time, delta),
                "available_time": shift_time(batch.available_time, delta),
                "rack_position": command.new_rack,
                "oven": command.new_oven if command.new_oven is not None else batch.oven,
            }
        )
        batches = list(self.state.batches)
        batches[index] = moved
        self.state = self.state.model_copy(update={"batches": batches})
        return Undo(batch_id=batch.batch_id, original=batch, index=index)

    def _optimistic_delete(self, command: OptimisticDelete) -> Undo | None:
        if self.state is None:
            return None
        batches = list(self.state.batches)
        for index, batch in enumerate(batches):
            if batch.batch_id == command.batch_id:
                del batches[index]
                self.state = self.state.model_copy(update={"batches": batches})
                return Undo(batch_id=batch.batch_id, original=batch, index=index)
        return None

    def _optimistic_add(self, command: OptimisticAdd) -> Undo | None:
        if self.state is None:
            return None
        batches = [*self.state.batches, command.placeholder]
        self.state = self.state.model_copy(update={"batches": batches})
        return Undo(batch_id=command.placeholder.batch_id, original=None, index=len(batches) - 1)

    def _apply_mutation_result(self, command: ApplyMutationResult) -> bool:
        if self.state is None or self._hold_is_superseded(command.hold, "mutation result"):
            return False
        result: MutationResult = command.result
        update = {
            name: getattr(result, name)
            for name in ("batches", "completed_batches", "recent_events")
            if getattr(result, name) is not None
        }
        self.state = _without_completed(self.state.model_copy(update=update))
        return True

    def _rollback(self, command: Rollback) -> bool:
        if self.state is None or self._hold_is_superseded(command.hold, "rollback"):
            return False
        undo = command.undo
        batches: list[Batch] = [b for b in self.state.batches if b.batch_id != undo.batch_id]
        completed_ids = {b.batch_id for b in self.state.completed_batches}
        if undo.original is not None and undo.batch_id not in completed_ids:
            batches.insert(min(undo.index, len(batches)), undo.original)
        self.state = self.state.model_copy(update={"batches": batches})
        logger.info(f"Rolled back optimistic edit of {undo.batch_id}")
        return True
