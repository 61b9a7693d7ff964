"""Errors surfaced by the live session."""


class MutationError(Exception):
    """A schedule mutation failed and its optimistic change was rolled back.

    Attributes:
        action: "add", "move" or "delete"
        batch_id: Batch the mutation targeted
        cause: The underlying API error
    """

    def __init__(self, action: str, batch_id: str, cause: Exception):
        self.action = action
        self.batch_id = batch_id
        self.cause = cause
        super().__init__(f"Failed to {action} batch {batch_id}: {cause}")
