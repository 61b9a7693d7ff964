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
from .connection import ConnectionManager
from .exceptions import MutationError
from .guard import GuardHold, MutationGuard
from .reconciler import StateReconciler, merge_snapshot
from .session import LiveSession
from .suggestions import SuggestionPoller

__all__ = [
    "ApplyInventory",
    "ApplyMutationResult",
    "ApplySnapshot",
    "Command",
    "OptimisticAdd",
    "OptimisticDelete",
    "OptimisticMove",
    "Rollback",
    "Undo",
    "ConnectionManager",
    "MutationError",
    "GuardHold",
    "MutationGuard",
    "StateReconciler",
    "merge_snapshot",
    "LiveSession",
    "SuggestionPoller",
]
