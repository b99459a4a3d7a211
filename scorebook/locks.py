import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Dict, Iterable


class InningsLocks:
    """One asyncio.Lock per innings: recording and undo never interleave."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, innings_id: int):
        async with self._locks[innings_id]:
            yield

    def discard(self, innings_ids: Iterable[int]):
        """Forget the locks of finished innings. A lock somebody still holds is kept."""
        for innings_id in innings_ids:
            lock = self._locks.get(innings_id)
            if lock is not None and not lock.locked():
                del self._locks[innings_id]

    def __contains__(self, innings_id) -> bool:
        return innings_id in self._locks


innings_locks = InningsLocks()
