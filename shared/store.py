"""
PostgreSQL access for the layer relay, on top of an asyncpg pool.

The relay owns no data; it only reads layer tables for snapshots and listens
on NOTIFY channels. Two kinds of connections are handed out:

- Pooled connections, checked out for one query or transaction and always
  returned, even when the query fails
- Dedicated listen connections, opened outside the pool and held by one layer
  listener for as long as it lives

Design decisions:
- Bounded pool with a checkout timeout so a slow database can't pile up clients
- A failure to create the pool at startup is a ConfigError (fatal)
- Identifiers are double-quoted; values always go through query parameters
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

import asyncpg

from shared.config import RelaySettings
from shared.errors import ConfigError

logger = logging.getLogger("store")

# errors that mean "the connection is gone or could not be made"
CONNECTION_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)


def quote_identifier(name: str) -> str:
    """Quote a single SQL identifier."""
    return '"' + name.replace('"', '""') + '"'


def quote_table(table: str) -> str:
    """Quote a possibly schema-qualified table name part by part."""
    return ".".join(quote_identifier(part) for part in table.split("."))


class PgStore:
    """
    Connection pool plus listen-connection factory for one database.

    Example:
        store = PgStore(settings)
        await store.open()
        rows = await store.execute_sql("SELECT 1 AS one")
        await store.close()
    """

    def __init__(self, settings: RelaySettings):
        self.settings = settings
        self._pool: Optional[asyncpg.Pool] = None

    def _connect_kwargs(self) -> dict[str, Any]:
        return {
            "host": self.settings.pg_host,
            "port": self.settings.pg_port,
            "database": self.settings.pg_database,
            "user": self.settings.pg_user,
            "password": self.settings.pg_password,
        }

    @property
    def connection_parameters(self) -> dict[str, Any]:
        """The parameters this store connects with (password omitted)."""
        return self.settings.connection_parameters()

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Store not open. Call open() first.")
        return self._pool

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self) -> None:
        """
        Create the connection pool.

        Raises:
            ConfigError: if the database can't be reached with these settings
        """
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                min_size=self.settings.pool_min_size,
                max_size=self.settings.pool_max_size,
                timeout=self.settings.connect_timeout,
                **self._connect_kwargs(),
            )
        except CONNECTION_ERRORS as e:
            params = self.connection_parameters
            raise ConfigError(
                f"Cannot connect to {params['user']}@{params['host']}:{params['port']}"
                f"/{params['database']}: {e}"
            ) from e
        logger.info(
            f"Connection pool open for {self.settings.pg_host}:{self.settings.pg_port}"
            f"/{self.settings.pg_database} (max_size={self.settings.pool_max_size})"
        )

    async def close(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        logger.info("Connection pool closed")

    # =========================================================================
    # Pooled queries
    # =========================================================================

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Check out a pooled connection for the duration of the block.

        Raises:
            asyncio.TimeoutError: if no connection frees up within POOL_TIMEOUT
        """
        async with self.pool.acquire(timeout=self.settings.pool_timeout) as conn:
            yield conn

    async def execute_sql(self, sql: str, *params: Any) -> list[asyncpg.Record]:
        """Run one statement and return all rows."""
        async with self.connection() as conn:
            return await conn.fetch(sql, *params)

    async def execute_as_transaction(
        self,
        statements: Sequence[tuple[str, Sequence[Any]]],
    ) -> list[asyncpg.Record]:
        """
        Run statements in a single transaction.

        Args:
            statements: (sql, params) pairs, executed in order

        Returns:
            Rows of the last statement. The transaction is rolled back and the
            error re-raised if any statement fails.
        """
        result: list[asyncpg.Record] = []
        async with self.connection() as conn:
            async with conn.transaction():
                for sql, params in statements:
                    result = await conn.fetch(sql, *params)
        return result

    async def get_distinct_values(
        self,
        table: str,
        value_column: str,
        label_column: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        Distinct values of a column, each with a display label.

        The label comes from `label_column` when given (rows with a null label
        are skipped), otherwise it is the value itself as a string.
        """
        columns = quote_identifier(value_column)
        if label_column:
            columns += ", " + quote_identifier(label_column)
        sql = f"SELECT DISTINCT {columns} FROM {quote_table(table)}"
        if label_column:
            sql += f" WHERE {quote_identifier(label_column)} IS NOT NULL"

        rows = await self.execute_sql(sql)
        return [
            {
                "value": row[value_column],
                "label": str(row[label_column] if label_column else row[value_column]),
            }
            for row in rows
        ]

    # =========================================================================
    # Listen connections
    # =========================================================================

    async def connect_listener(self) -> asyncpg.Connection:
        """Open a dedicated connection for LISTEN. The caller must close it."""
        return await asyncpg.connect(timeout=self.settings.connect_timeout, **self._connect_kwargs())
