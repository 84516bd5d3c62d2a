"""
Progress events for refresh runs.

Events flow in phase order (planning, fetching, committing). Within a phase
and store, ``current`` only moves forward; the reporter drops regressions and
exact repeats of the previous message so a slow consumer is not flooded.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Optional, Tuple


class Phase(str, Enum):
    PLANNING = "planning"
    FETCHING = "fetching"
    COMMITTING = "committing"


@dataclass(frozen=True)
class Progress:
    phase: Phase
    current: int
    total: int
    message: str
    store_number: Optional[str] = None


ProgressCallback = Callable[[Progress], None]


class ProgressReporter:
    """Deduplicating front for a progress callback."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self._last_message: Optional[str] = None
        self._last_current: Dict[Tuple[Optional[str], Phase], int] = {}
        self._last_phase: Dict[Optional[str], Phase] = {}

    def emit(self, progress: Progress) -> bool:
        """Forward an event. Returns False when it was suppressed."""
        if self.callback is None:
            return False
        if progress.message == self._last_message:
            return False

        store = progress.store_number
        if self._last_phase.get(store) != progress.phase:
            # A new phase (or a retry back to planning) starts counting again
            self._last_phase[store] = progress.phase
            self._last_current[(store, progress.phase)] = progress.current
        else:
            key = (store, progress.phase)
            if progress.current < self._last_current.get(key, 0):
                return False
            self._last_current[key] = progress.current

        self._last_message = progress.message
        self.callback(progress)
        return True

    __call__ = emit


class ProgressStream:
    """Progress events as an async iterator.

    Pass ``stream.push`` as the progress callback, then ``async for`` over
    the stream. ``close()`` ends iteration once queued events are drained.
    """

    _DONE = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, progress: Progress) -> None:
        self._queue.put_nowait(progress)

    def close(self) -> None:
        self._queue.put_nowait(self._DONE)

    def __aiter__(self) -> AsyncIterator[Progress]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Progress]:
        while True:
            item = await self._queue.get()
            if item is self._DONE:
                return
            yield item
