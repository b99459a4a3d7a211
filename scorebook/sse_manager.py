import asyncio
import json
import logging
from typing import Dict, List, Optional

from scorebook.store import Change, EntityStore, Subscription

logger = logging.getLogger("uvicorn.error")

# Tables a live scoreboard re-renders from
WATCHED_TABLES = ("innings", "deliveries", "batting_figures", "bowling_figures")


class SSEManager:
    """
    Manages active connections for Server-Sent Events (SSE).
    Listens to committed store changes and fans them out to every client
    watching the match the changed row belongs to.
    """
    def __init__(self):
        # Maps match_id -> List of client queues
        self.active_listeners: Dict[int, List[asyncio.Queue]] = {}
        self._subscriptions: List[Subscription] = []

    def attach(self, store: EntityStore):
        """Start listening to `store`. Replaces any previous store."""
        self.detach()
        for table in WATCHED_TABLES:
            self._subscriptions.append(store.subscribe(table, None, self.on_change))

    def detach(self):
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

    async def subscribe(self, match_id: int) -> asyncio.Queue:
        """Client connects: Give them a queue to listen to."""
        q = asyncio.Queue()
        self.active_listeners.setdefault(match_id, []).append(q)
        logger.info(f"🔌 SSE: Client joined Match {match_id}. Total: {len(self.active_listeners[match_id])}")
        return q

    async def unsubscribe(self, match_id: int, q: asyncio.Queue):
        """Client disconnects: Remove their queue."""
        if match_id in self.active_listeners:
            if q in self.active_listeners[match_id]:
                self.active_listeners[match_id].remove(q)

            if not self.active_listeners[match_id]:
                del self.active_listeners[match_id]

        logger.info(f"🔌 SSE: Client left Match {match_id}.")

    async def on_change(self, change: Change):
        match_id: Optional[int] = change.row.get("match_id")
        if match_id is None:
            return
        await self.broadcast(match_id, {"table": change.table, "op": change.op, "row": change.row})

    async def broadcast(self, match_id: int, data: dict):
        """Send data to everyone watching this match."""
        if match_id not in self.active_listeners:
            return

        # Serialize once, then push strings to queues
        # SSE format requires "data: <json>\n\n"
        message = f"data: {json.dumps(data, default=str)}\n\n"

        for q in self.active_listeners[match_id]:
            await q.put(message)


# Global Instance to be imported elsewhere
manager = SSEManager()
