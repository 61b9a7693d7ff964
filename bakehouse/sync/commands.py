"""Commands posted to the session owner.

Push handlers, poll jobs and mutation flows never touch the canonical state
directly; they build one of these and hand it to the reconciler, which is the
only writer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from bakehouse.services.simulation.models import (
    Batch,
    InventoryUpdate,
    MutationResult,
    SimulationSnapshot,
)

from .guard import GuardHold

SnapshotSource = Literal["push", "poll", "start", "refresh"]


@dataclass(frozen=True)
class ApplySnapshot:
    session_id: str
    snapshot: SimulationSnapshot
    source: SnapshotSource = "push"


@dataclass(frozen=True)
class ApplyInventory:
    session_id: str
    update: InventoryUpdate


@dataclass(frozen=True)
class Undo:
    """What a rollback needs to restore one optimistic edit."""

    batch_id: str
    original: Batch | None
    index: int


@dataclass(frozen=True)
class OptimisticMove:
    session_id: str
    hold: GuardHold
    batch_id: str
    new_start_time: str
    new_rack: int
    new_oven: int | None = None


@dataclass(frozen=True)
class OptimisticDelete:
    session_id: str
    hold: GuardHold
    batch_id: str


@dataclass(frozen=True)
class OptimisticAdd:
    session_id: str
    hold: GuardHold
    placeholder: Batch


@dataclass(frozen=True)
class ApplyMutationResult:
    session_id: str
    hold: GuardHold
    result: MutationResult


@dataclass(frozen=True)
class Rollback:
    session_id: str
    hold: GuardHold
    undo: Undo


Command = (
    ApplySnapshot
    | ApplyInventory
    | OptimisticMove
    | OptimisticDelete
    | OptimisticAdd
    | ApplyMutationResult
    | Rollback
)
