import asyncio
import logging
import re
from contextlib import asynccontextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Optional

import asyncpg

from scorebook import settings
from scorebook.errors import ConflictError, StoreUnavailable, ValidationError
from scorebook.store import EntityStore, MemoryStore

logger = logging.getLogger("uvicorn.error")

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

db_pool: Optional[asyncpg.Pool] = None
store: Optional[EntityStore] = None

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


async def init_db():
    """Creates the process-wide store (and the asyncpg pool when backed by Postgres)."""
    global db_pool, store
    if settings.STORE_BACKEND == "memory":
        logger.info("Using in-memory store (no DATABASE_URL configured)")
        store = MemoryStore()
        return None

    try:
        db_pool = await asyncpg.create_pool(
            settings.DATABASE_URL,
            min_size=settings.DB_POOL_MIN_SIZE,
            max_size=settings.DB_POOL_MAX_SIZE,
            command_timeout=settings.STORE_TIMEOUT,
        )
    except (OSError, asyncpg.PostgresError) as e:
        logger.error(f"Could not connect to the database: {e}")
        raise StoreUnavailable("Database unreachable") from e

    store = PostgresStore(db_pool)
    logger.info("Database pool ready")
    return db_pool


async def close_db():
    global db_pool, store
    if db_pool is not None:
        await db_pool.close()
        logger.info("Database pool closed")
    db_pool = None
    store = None


def get_db_pool() -> Optional[asyncpg.Pool]:
    return db_pool


def get_store() -> EntityStore:
    """FastAPI dependency. Falls back to a memory store when nothing was initialised."""
    global store
    if store is None:
        store = MemoryStore()
    return store


async def apply_schema(pool: asyncpg.Pool):
    sql = SCHEMA_PATH.read_text()
    async with pool.acquire() as conn:
        await conn.execute(sql)


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Illegal column name '{name}'")
    return name


def _where(filters: dict, start: int = 1):
    """Builds `a = $1 AND b = ANY($2)` plus its arguments."""
    clauses, args = [], []
    idx = start
    for column, value in filters.items():
        column = _ident(column)
        if value is None:
            clauses.append(f"{column} IS NULL")
            continue
        if isinstance(value, (list, tuple, set)):
            clauses.append(f"{column} = ANY(${idx})")
            args.append(list(value))
        else:
            clauses.append(f"{column} = ${idx}")
            args.append(value)
        idx += 1
    return (" WHERE " + " AND ".join(clauses)) if clauses else "", args


class PostgresStore(EntityStore):
    def __init__(self, pool: asyncpg.Pool, timeout: float = settings.STORE_TIMEOUT):
        super().__init__(timeout)
        self.pool = pool
        self._conn: ContextVar[Optional[asyncpg.Connection]] = ContextVar(f"conn_{id(self)}", default=None)

    async def _acquire(self) -> asyncpg.Connection:
        try:
            return await self.pool.acquire(timeout=self.timeout)
        except asyncio.TimeoutError:
            raise StoreUnavailable("No database connection available")
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise self._translate_error(e) from e

    @asynccontextmanager
    async def _begin(self):
        conn = await self._acquire()
        try:
            async with conn.transaction():
                token = self._conn.set(conn)
                try:
                    yield
                finally:
                    self._conn.reset(token)
        finally:
            await self.pool.release(conn)

    @asynccontextmanager
    async def _connection(self):
        conn = self._conn.get()
        if conn is not None:
            yield conn
            return
        conn = await self._acquire()
        try:
            yield conn
        finally:
            await self.pool.release(conn)

    def _translate_error(self, exc):
        if isinstance(exc, asyncpg.exceptions.UniqueViolationError):
            return ConflictError("Row was written concurrently")
        if isinstance(exc, asyncpg.exceptions.ForeignKeyViolationError):
            return ValidationError("Refers to a row that does not exist")
        if isinstance(exc, (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, ConnectionError)):
            logger.exception("Database call failed")
            return StoreUnavailable("Database unavailable")
        return None

    async def _insert(self, table, row):
        columns = [_ident(c) for c in row]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *"
        async with self._connection() as conn:
            record = await conn.fetchrow(sql, *row.values())
        return dict(record)

    async def _update(self, table, values, filters):
        sets = [f"{_ident(c)} = ${i}" for i, c in enumerate(values, start=1)]
        where, args = _where(filters, start=len(values) + 1)
        sql = f"UPDATE {table} SET {', '.join(sets)}{where} RETURNING *"
        async with self._connection() as conn:
            records = await conn.fetch(sql, *values.values(), *args)
        return [dict(r) for r in records]

    async def _delete(self, table, filters):
        where, args = _where(filters)
        async with self._connection() as conn:
            records = await conn.fetch(f"DELETE FROM {table}{where} RETURNING *", *args)
        return [dict(r) for r in records]

    async def _query(self, table, filters, order_by, descending, limit):
        where, args = _where(filters)
        sql = f"SELECT * FROM {table}{where}"
        direction = " DESC" if descending else ""
        sql += " ORDER BY " + ", ".join(f"{_ident(c)}{direction}" for c in (order_by or ["id"]))
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        async with self._connection() as conn:
            records = await conn.fetch(sql, *args)
        return [dict(r) for r in records]

    async def _upsert(self, table, row, keys):
        columns = [_ident(c) for c in row]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns if c not in keys)
        # xmax = 0 only for a freshly inserted tuple
        sql = f"""
            INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})
            ON CONFLICT ({', '.join(_ident(k) for k in keys)})
            DO UPDATE SET {updates}
            RETURNING *, (xmax = 0) AS inserted
        """
        async with self._connection() as conn:
            record = await conn.fetchrow(sql, *row.values())
        stored = dict(record)
        created = stored.pop("inserted")
        return stored, created
