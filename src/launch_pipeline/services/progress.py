"""Progress reporting for launch runs."""

import asyncio
from collections.abc import AsyncIterator
from typing import Protocol

from launch_pipeline.domain.models import PipelineSnapshot


class ProgressSink(Protocol):
    """Receives a snapshot after every state change, in mutation order.

    Sinks run inline on the controller's event loop and must not block.
    """

    def __call__(self, snapshot: PipelineSnapshot) -> None: ...


class SnapshotChannel:
    """Bounded buffer of snapshots for a consumer running in another task.

    Usable directly as a ``ProgressSink``. When the consumer falls behind, the oldest
    snapshot is dropped so the controller never waits; order is preserved.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue[PipelineSnapshot | None] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self._closed = False

    def __call__(self, snapshot: PipelineSnapshot) -> None:
        if self._closed:
            return
        self._put(snapshot)

    def _put(self, value: PipelineSnapshot | None) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(value)

    def close(self) -> None:
        """Signal the consumer that no more snapshots will arrive."""
        if not self._closed:
            self._closed = True
            self._put(None)

    async def __aiter__(self) -> AsyncIterator[PipelineSnapshot]:
        while True:
            snapshot = await self._queue.get()
            if snapshot is None:
                return
            yield snapshot
