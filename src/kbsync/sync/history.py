"""Undo/redo history for asynchronous, remote-mutating actions.

An action performs its change (remote call plus local mirror update) and
returns its own inverse, computed after it has observed the pre-state.
Running an inverse returns the operation that re-applies the change, so
undo of undo is redo.  When an inverse returns nothing, the entry's own
``apply`` is reused as the way back.

History only ever reflects settled operations: an entry is pushed after
its awaited action completes, and a failed action never enters ``past``.
There is no internal lock; callers must not start a history operation
while another is still in flight.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

Inverse = Callable[[], Awaitable["Inverse | None"]]


@dataclass(frozen=True)
class CommandEntry:
    """A history entry: the operation that was run and the one that reverses it."""

    apply: Inverse
    invert: Inverse


def _settled(entry: CommandEntry, result: Inverse | None) -> CommandEntry:
    """Build the entry recorded after running ``entry.invert``."""
    return CommandEntry(apply=entry.invert, invert=result if result is not None else entry.apply)


class CommandStack:
    """Transactional do/undo/redo over :class:`CommandEntry` values.

    Parameters:
        max_depth: Keep at most this many undoable entries (oldest dropped
            first). None keeps everything.
    """

    def __init__(self, *, max_depth: int | None = None) -> None:
        self._past: list[CommandEntry] = []
        self._future: list[CommandEntry] = []
        self._max_depth = max_depth
        self._generation = 0
        self._tasks: set[asyncio.Task[bool]] = set()

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    @property
    def can_undo(self) -> bool:
        return bool(self._past)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    @property
    def undo_depth(self) -> int:
        return len(self._past)

    @property
    def redo_depth(self) -> int:
        return len(self._future)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def do_it(self, action: Inverse) -> asyncio.Task[bool]:
        """Run *action* in the background and record it once it succeeds.

        The returned task resolves to True if the action entered history.
        It never raises; failures are logged.
        """
        task = asyncio.ensure_future(self._do(action, self._generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def undo(self) -> bool:
        """Reverse the most recent entry. Returns False if nothing was undone."""
        if not self._past:
            return False
        entry = self._past.pop()
        generation = self._generation
        try:
            result = await entry.invert()
        except Exception:
            logger.error("Undo failed; entry dropped from history", exc_info=True)
            return False
        if generation != self._generation:
            return False
        self._future.append(_settled(entry, result))
        return True

    async def redo(self) -> bool:
        """Re-apply the most recently undone entry. Returns False if nothing was redone."""
        if not self._future:
            return False
        entry = self._future.pop()
        generation = self._generation
        try:
            result = await entry.invert()
        except Exception:
            logger.error("Redo failed; entry dropped from history", exc_info=True)
            return False
        if generation != self._generation:
            return False
        self._push_past(_settled(entry, result))
        return True

    def reset(self) -> None:
        """Forget all history without touching the device.

        Operations still in flight complete but are not recorded.
        """
        self._past.clear()
        self._future.clear()
        self._generation += 1

    async def settle(self) -> None:
        """Wait for every in-flight ``do_it`` task."""
        while self._tasks:
            await asyncio.gather(*tuple(self._tasks))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _do(self, action: Inverse, generation: int) -> bool:
        try:
            inverse = await action()
        except Exception:
            logger.error("Action failed; history unchanged", exc_info=True)
            return False

        if generation != self._generation:
            logger.debug("History was reset while an action was in flight; not recorded")
            return False

        self._future.clear()
        if inverse is None:
            logger.warning("Action returned no inverse; it cannot be undone")
            return False
        self._push_past(CommandEntry(apply=action, invert=inverse))
        return True

    def _push_past(self, entry: CommandEntry) -> None:
        self._past.append(entry)
        if self._max_depth is not None and len(self._past) > self._max_depth:
            del self._past[0]
