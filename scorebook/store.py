"""
Entity store contract and the in-process implementation.

Rows are plain dicts keyed by column name. Filters are equality matches
(`{"innings_id": 4}`), a list/tuple value means "any of". Every write made
inside `transaction()` becomes visible, and is announced to subscribers, only
when the outermost transaction commits.
"""
import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Union

from scorebook.errors import ScorebookError, StoreUnavailable
from scorebook.settings import STORE_TIMEOUT

logger = logging.getLogger("uvicorn.error")

TABLES = (
    "teams", "players", "matches", "innings",
    "deliveries", "batting_figures", "bowling_figures",
)

INSERT, UPDATE, DELETE = "insert", "update", "delete"


@dataclass(frozen=True)
class Change:
    table: str
    op: str
    row: dict


ChangeCallback = Callable[[Change], Awaitable[None]]


@dataclass
class Subscription:
    table: str
    filters: dict
    callback: ChangeCallback
    store: "EntityStore" = field(repr=False)

    def matches(self, change: Change) -> bool:
        return change.table == self.table and row_matches(change.row, self.filters)

    def unsubscribe(self):
        self.store.unsubscribe(self)


def row_matches(row: dict, filters: Optional[dict]) -> bool:
    for column, expected in (filters or {}).items():
        value = row.get(column)
        if isinstance(expected, (list, tuple, set)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class EntityStore(ABC):
    def __init__(self, timeout: float = STORE_TIMEOUT):
        self.timeout = timeout
        self._subscriptions: List[Subscription] = []
        # Changes buffered by the transaction open in the current task, if any
        self._pending: ContextVar[Optional[list]] = ContextVar(f"pending_{id(self)}", default=None)

    # --- backend hooks ---

    @abstractmethod
    def _begin(self):
        """Async context manager wrapping one backend transaction."""

    @abstractmethod
    async def _insert(self, table: str, row: dict) -> dict: ...

    @abstractmethod
    async def _update(self, table: str, values: dict, filters: dict) -> List[dict]: ...

    @abstractmethod
    async def _delete(self, table: str, filters: dict) -> List[dict]: ...

    @abstractmethod
    async def _query(self, table, filters, order_by, descending, limit) -> List[dict]: ...

    @abstractmethod
    async def _upsert(self, table: str, row: dict, keys: Sequence[str]) -> (dict, bool): ...

    def _translate_error(self, exc: Exception) -> Optional[ScorebookError]:
        """Map a backend exception to a scorebook error, or None to let it through."""
        return None

    # --- public API ---

    async def insert(self, table: str, row: dict) -> int:
        async with self.transaction():
            stored = await self._run(self._insert(self._table(table), row))
            self._emit(Change(table, INSERT, stored))
        return stored["id"]

    async def update(self, table: str, values: dict, filters: dict) -> int:
        """Returns the number of rows changed. Callers use 0 to detect a lost race."""
        self._require_filters(filters)
        async with self.transaction():
            rows = await self._run(self._update(self._table(table), values, filters))
            for row in rows:
                self._emit(Change(table, UPDATE, row))
        return len(rows)

    async def delete(self, table: str, filters: dict) -> int:
        self._require_filters(filters)
        async with self.transaction():
            rows = await self._run(self._delete(self._table(table), filters))
            for row in rows:
                self._emit(Change(table, DELETE, row))
        return len(rows)

    async def upsert(self, table: str, row: dict, keys: Sequence[str]) -> int:
        """Insert, or update the row whose `keys` columns equal those in `row`."""
        async with self.transaction():
            stored, created = await self._run(self._upsert(self._table(table), row, keys))
            self._emit(Change(table, INSERT if created else UPDATE, stored))
        return stored["id"]

    async def query(self, table: str, filters: Optional[dict] = None,
                    order_by: Union[str, Sequence[str], None] = None,
                    descending: bool = False, limit: Optional[int] = None) -> List[dict]:
        if isinstance(order_by, str):
            order_by = [order_by]
        return await self._run(self._query(self._table(table), filters or {}, order_by or [], descending, limit))

    async def get(self, table: str, filters: dict) -> Optional[dict]:
        rows = await self.query(table, filters, order_by="id", limit=1)
        return rows[0] if rows else None

    @asynccontextmanager
    async def transaction(self):
        """
        All writes inside commit or roll back together. Nested calls join the
        outer transaction. Subscribers hear about changes only after commit.
        """
        if self._pending.get() is not None:
            yield
            return

        pending: list = []
        token = self._pending.set(pending)
        try:
            async with self._begin():
                yield
        finally:
            self._pending.reset(token)
        await self._dispatch(pending)

    # --- change notifications ---

    def subscribe(self, table: str, filters: Optional[dict], callback: ChangeCallback) -> Subscription:
        sub = Subscription(self._table(table), dict(filters or {}), callback, self)
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def _emit(self, change: Change):
        pending = self._pending.get()
        # Writes always run inside transaction(), so there is a buffer
        pending.append(change)

    async def _dispatch(self, changes: List[Change]):
        # One at a time, in commit order
        for change in changes:
            for sub in list(self._subscriptions):
                if not sub.matches(change):
                    continue
                try:
                    await sub.callback(change)
                except Exception:
                    # The write is committed; a broken listener must not undo that
                    logger.exception(f"Change listener failed for {change.table} {change.op}")

    # --- helpers ---

    def _require_filters(self, filters):
        if not filters:
            raise ValueError("Refusing to touch every row of a table")

    def _table(self, table: str) -> str:
        if table not in TABLES:
            raise ValueError(f"Unknown table '{table}'")
        return table

    async def _run(self, coro):
        try:
            return await asyncio.wait_for(coro, self.timeout)
        except ScorebookError:
            raise
        except asyncio.TimeoutError:
            raise StoreUnavailable(f"Store did not answer within {self.timeout}s")
        except Exception as e:
            translated = self._translate_error(e)
            if translated is None:
                raise
            raise translated from e


class MemoryStore(EntityStore):
    """
    In-process store. A transaction works on a private copy of the tables and
    swaps it in on commit, so readers only ever see committed rows.
    """

    def __init__(self, timeout: float = STORE_TIMEOUT):
        super().__init__(timeout)
        self._tables: Dict[str, Dict[int, dict]] = {t: {} for t in TABLES}
        self._ids = {t: itertools.count(1) for t in TABLES}
        self._lock = asyncio.Lock()
        self._working: ContextVar[Optional[dict]] = ContextVar(f"working_{id(self)}", default=None)

    @asynccontextmanager
    async def _begin(self):
        try:
            await asyncio.wait_for(self._lock.acquire(), self.timeout)
        except asyncio.TimeoutError:
            raise StoreUnavailable("Timed out waiting for the store lock")
        try:
            # Rows are replaced, never mutated, so a shallow copy per table is enough
            working = {t: dict(rows) for t, rows in self._tables.items()}
            token = self._working.set(working)
            try:
                yield
                self._tables = working
            finally:
                self._working.reset(token)
        finally:
            self._lock.release()

    def _view(self) -> Dict[str, Dict[int, dict]]:
        working = self._working.get()
        return working if working is not None else self._tables

    async def _insert(self, table, row):
        new_id = next(self._ids[table])
        stored = dict(row, id=new_id)
        self._view()[table][new_id] = stored
        return dict(stored)

    async def _update(self, table, values, filters):
        rows = self._view()[table]
        changed = []
        for row_id, row in list(rows.items()):
            if row_matches(row, filters):
                new_row = dict(row, **values)
                new_row["id"] = row_id
                rows[row_id] = new_row
                changed.append(dict(new_row))
        return changed

    async def _delete(self, table, filters):
        rows = self._view()[table]
        removed = []
        for row_id, row in list(rows.items()):
            if row_matches(row, filters):
                removed.append(dict(rows.pop(row_id)))
        return removed

    async def _query(self, table, filters, order_by, descending, limit):
        rows = [dict(r) for r in self._view()[table].values() if row_matches(r, filters)]
        keys = list(order_by) or ["id"]
        # Postgres default: NULLs last ascending, first descending
        rows.sort(key=lambda r: [(r.get(k) is None, r.get(k)) for k in keys], reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def _upsert(self, table, row, keys):
        key_filter = {k: row[k] for k in keys}
        existing = [r for r in self._view()[table].values() if row_matches(r, key_filter)]
        if existing:
            updated = await self._update(table, row, {"id": existing[0]["id"]})
            return updated[0], False
        return await self._insert(table, row), True
