"""Track how far a file has been contiguously uploaded."""

from typing import Dict


class CompletionTracker:
    """Keep track of the offset up to which a file is completely uploaded.

    Blocks can finish uploading out of order, so the offset of a failed block is
    not necessarily a safe place to resume from: there may be gaps before it.
    Call ``complete_block`` with each finished block's absolute offset and length;
    ``complete_up_to`` only moves forward across contiguous runs.

    Not thread-safe on its own; the owning session serializes access.
    """

    def __init__(self, complete_up_to: int = 0) -> None:
        self._complete_up_to = complete_up_to
        self._pending: Dict[int, int] = {}

    @property
    def complete_up_to(self) -> int:
        return self._complete_up_to

    @property
    def pending_blocks(self) -> Dict[int, int]:
        return dict(self._pending)

    def complete_block(self, offset: int, length: int) -> None:
        """Mark a block as completely uploaded."""
        if offset == self._complete_up_to:
            self._complete_up_to += length
            # fold in any blocks that were waiting on this one
            while self._complete_up_to in self._pending:
                self._complete_up_to += self._pending.pop(self._complete_up_to)
        elif offset > self._complete_up_to:
            self._pending[offset] = length
